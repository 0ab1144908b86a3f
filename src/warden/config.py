"""Broker configuration loaded from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger("warden.config")

_TRUTHY = ("1", "true", "yes", "on")


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in _TRUTHY


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    if raw.lower() in ("none", "off"):
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class BrokerConfig:
    """Immutable broker configuration. Construct via ``from_env()`` or directly for tests."""

    warden_home: Path = field(default_factory=lambda: Path.home() / ".warden")
    project_dir: Path = field(default_factory=Path.cwd)
    bypass_permissions: bool = False
    headless: bool = False
    default_timeout: float | None = 120.0
    max_output_len: int = 50_000
    max_concurrency: int = 4
    prompt_timeout: float | None = None
    audit_enabled: bool = True
    inherit_env: bool = False

    @property
    def global_settings_path(self) -> Path:
        return self.warden_home / "settings.json"

    @property
    def project_settings_path(self) -> Path:
        return self.project_dir / ".warden" / "settings.json"

    @property
    def audit_db_path(self) -> Path:
        return self.warden_home / "db" / "audit.db"

    @classmethod
    def from_env(cls) -> BrokerConfig:
        """Build config from ``os.environ``. Raises ``ValueError`` on malformed numbers."""
        raw_home = os.environ.get("WARDEN_HOME", "").strip()
        warden_home = Path(raw_home).expanduser().resolve() if raw_home else Path.home() / ".warden"

        raw_project = os.environ.get("WARDEN_PROJECT_DIR", "").strip()
        project_dir = Path(raw_project).expanduser().resolve() if raw_project else Path.cwd()

        config = cls(
            warden_home=warden_home,
            project_dir=project_dir,
            bypass_permissions=_env_flag("WARDEN_BYPASS_PERMISSIONS"),
            headless=_env_flag("WARDEN_HEADLESS"),
            default_timeout=_env_float("WARDEN_DEFAULT_TIMEOUT", 120.0),
            max_output_len=_env_int("WARDEN_MAX_OUTPUT", 50_000),
            max_concurrency=_env_int("WARDEN_MAX_CONCURRENCY", 4),
            prompt_timeout=_env_float("WARDEN_PROMPT_TIMEOUT", None),
            audit_enabled=_env_flag("WARDEN_AUDIT", default=True),
            inherit_env=_env_flag("WARDEN_INHERIT_ENV"),
        )
        logger.info(
            "Config loaded — warden_home=%s, project_dir=%s, headless=%s",
            warden_home, project_dir, config.headless,
        )
        return config
