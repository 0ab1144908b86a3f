"""Discord UI for permission prompts.

When the decision engine needs a human answer, this module provides the
Discord view (Allow once / Always allow / Deny / Always deny) that
suspends the prompt coroutine via ``view.wait()`` until the user responds
or the view times out.  :func:`discord_resolver` adapts it to the
resolver interface.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import discord

from warden.permissions.prompt import PromptResponse

if TYPE_CHECKING:
    from warden.permissions.prompt import PromptResolver
    from warden.permissions.rules import ActionRequest


class PermissionAskView(discord.ui.View):
    """A four-button view for permission prompts.

    Parameters
    ----------
    requester_id:
        The Discord user ID allowed to interact with the buttons.
    timeout:
        Seconds before the view auto-expires.  Timeout leaves
        :attr:`value` as ``None``.
    """

    def __init__(self, requester_id: int, timeout: float = 120) -> None:
        super().__init__(timeout=timeout)
        self.requester_id = requester_id
        self.value: PromptResponse | None = None  # None = timed out

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        """Only the user who started the session can respond."""
        return interaction.user.id == self.requester_id

    async def _answer(
        self, interaction: discord.Interaction, value: PromptResponse, message: str
    ) -> None:
        await interaction.response.send_message(message, ephemeral=True)
        self.value = value
        self.stop()

    @discord.ui.button(label="Allow once", style=discord.ButtonStyle.green)
    async def allow_once(
        self, interaction: discord.Interaction, button: discord.ui.Button[PermissionAskView]
    ) -> None:
        await self._answer(interaction, PromptResponse.ALLOW_ONCE, "Approved once.")

    @discord.ui.button(label="Always allow", style=discord.ButtonStyle.blurple)
    async def allow_always(
        self, interaction: discord.Interaction, button: discord.ui.Button[PermissionAskView]
    ) -> None:
        await self._answer(
            interaction, PromptResponse.ALLOW_ALWAYS, "Approved for the rest of this session."
        )

    @discord.ui.button(label="Deny", style=discord.ButtonStyle.red)
    async def deny(
        self, interaction: discord.Interaction, button: discord.ui.Button[PermissionAskView]
    ) -> None:
        await self._answer(interaction, PromptResponse.DENY, "Denied.")

    @discord.ui.button(label="Always deny", style=discord.ButtonStyle.grey)
    async def deny_always(
        self, interaction: discord.Interaction, button: discord.ui.Button[PermissionAskView]
    ) -> None:
        await self._answer(
            interaction, PromptResponse.DENY_ALWAYS, "Denied for the rest of this session."
        )

    async def on_timeout(self) -> None:
        """Disable buttons when the view times out."""
        for child in self.children:
            child.disabled = True  # type: ignore[attr-defined]


def build_prompt_embed(request: ActionRequest) -> discord.Embed:
    embed = discord.Embed(
        title="Permission Required",
        description=f"`{request.action_string}`",
        color=discord.Color.yellow(),
    )
    embed.add_field(name="Tool", value=request.category, inline=True)
    embed.add_field(name="Arguments", value=f"```\n{request.arguments[:1000]}\n```", inline=False)
    return embed


async def ask_user_permission(
    channel: discord.abc.Messageable,
    requester_id: int,
    request: ActionRequest,
    timeout: float = 120,
) -> PromptResponse | None:
    """Send a permission prompt to *channel* and wait for a response.

    Returns ``None`` if the view timed out without an answer.
    """
    view = PermissionAskView(requester_id=requester_id, timeout=timeout)
    msg = await channel.send(embed=build_prompt_embed(request), view=view)

    timed_out = await view.wait()

    # Disable buttons on the message after resolution
    for child in view.children:
        child.disabled = True  # type: ignore[attr-defined]
    await msg.edit(view=view)

    if timed_out:
        return None
    return view.value


def discord_resolver(
    channel: discord.abc.Messageable,
    requester_id: int,
    timeout: float = 120,
) -> PromptResolver:
    """Build a prompt resolver that asks *requester_id* in *channel*."""

    async def resolve(request: ActionRequest) -> PromptResponse | None:
        return await ask_user_permission(channel, requester_id, request, timeout=timeout)

    return resolve
