"""Error taxonomy shared by the decision engine, executor and session."""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Failure kinds surfaced to the agent loop as typed results."""

    AUTHORIZATION_DENIED = "authorization_denied"
    AUTHORIZATION_INDETERMINATE = "authorization_indeterminate"
    EXECUTION_FAILURE = "execution_failure"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    CONFIGURATION_CORRUPT = "configuration_corrupt"


class WardenError(Exception):
    """Base class for exceptions raised by warden."""


class InvalidRuleError(WardenError, ValueError):
    """Raised when a permission rule string cannot be parsed."""


class ConfigurationCorruptError(WardenError):
    """Raised when a permission settings file cannot be read or parsed."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}")
