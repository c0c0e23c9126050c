"""Discord-facing side of the drop and countdown engine."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Final, Protocol

import discord
import discord.abc

from .claims import ClaimState, ClaimWindow
from .embeds import (
    build_claimed_embed,
    build_countdown_embed,
    build_drop_embed,
    build_expired_embed,
    build_failed_embed,
    build_receipt_embed,
    fallback_claim_notice,
    render_countdown,
)
from .errors import ChannelUnavailableError, MessagingError
from .models import Claim, CountdownEntry

log = logging.getLogger(__name__)

DEFAULT_TICKET_HINT: Final[str] = "#create-a-ticket"


class Messenger(Protocol):
    async def send_message(self, channel_id: int, content: str) -> int: ...

    async def open_claim_prompt(self, channel_id: int, window: ClaimWindow) -> int: ...

    async def close_claim_prompt(
        self, channel_id: int, message_id: int | None, window: ClaimWindow
    ) -> None: ...

    async def send_claim_receipt(self, claim: Claim) -> bool: ...

    async def post_countdown(
        self, channel_id: int, title: str, end_timestamp: int, now: int
    ) -> int: ...

    async def edit_countdown(self, entry: CountdownEntry, now: int) -> None: ...

    async def delete_message(self, channel_id: int, message_id: int) -> None: ...


@contextmanager
def _discord_errors(action: str) -> Iterator[None]:
    try:
        yield
    except (discord.NotFound, discord.Forbidden) as exc:
        raise ChannelUnavailableError(f"Failed to {action}: {exc}") from exc
    except discord.HTTPException as exc:
        raise MessagingError(f"Failed to {action}: {exc}") from exc


def _ensure_messageable_channel(channel: object) -> discord.abc.Messageable | None:
    """Return the channel if it can accept messages, otherwise ``None``."""

    if channel is None:
        return None

    if isinstance(channel, discord.TextChannel):
        return channel

    send = getattr(channel, "send", None)
    if callable(send):
        return channel  # type: ignore[return-value]

    return None


async def get_text_channel(
    client: discord.Client, channel_id: int
) -> discord.abc.Messageable | None:
    """Resolve a text-capable channel, fetching it if necessary.

    Returns ``None`` when the channel is gone or hidden from the bot; other
    HTTP failures raise :class:`MessagingError` so callers can retry later.
    """

    cached = _ensure_messageable_channel(client.get_channel(channel_id))
    if cached is not None:
        return cached

    try:
        fetched = await client.fetch_channel(channel_id)
    except (discord.NotFound, discord.Forbidden, discord.InvalidData) as exc:
        log.warning("Channel %s is unavailable: %s", channel_id, exc)
        return None
    except discord.HTTPException as exc:
        raise MessagingError(f"Failed to fetch channel {channel_id}: {exc}") from exc

    return _ensure_messageable_channel(fetched)


class ClaimView(discord.ui.View):
    """The single claim button attached to a mystery box drop."""

    def __init__(self, window: ClaimWindow, *, ticket_hint: str = DEFAULT_TICKET_HINT) -> None:
        super().__init__(timeout=None)
        self.window = window
        self.ticket_hint = ticket_hint

    def disable(self, label: str) -> None:
        for child in self.children:
            if isinstance(child, discord.ui.Button):
                child.disabled = True
                child.label = label

    @discord.ui.button(label="🎁 CLAIM ME!", style=discord.ButtonStyle.success)
    async def claim(
        self, interaction: discord.Interaction, _: discord.ui.Button
    ) -> None:  # pylint: disable=unused-argument
        if not self.window.accept(interaction.user.id):
            if self.window.state is ClaimState.EXPIRED:
                message = "This mystery box has expired."
            else:
                message = "Too slow! Someone already claimed this mystery box."
            await interaction.response.send_message(message, ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        state = await self.window.wait_settled()
        claim = self.window.claim
        if state is ClaimState.CLAIMED and claim is not None:
            if self.window.dm_delivered:
                content = "🎉 You claimed the mystery box! Check your DMs for your reward."
            else:
                content = fallback_claim_notice(claim, self.ticket_hint)
        elif state is ClaimState.EXPIRED:
            content = (
                "This mystery box was withdrawn by an admin before your claim "
                "was saved."
            )
        else:
            content = (
                "❌ A database error occurred while trying to save your claim. "
                "Please notify an admin."
            )
        try:
            await interaction.followup.send(content, ephemeral=True)
        except discord.HTTPException as exc:
            log.warning(
                "Failed to answer claim interaction for user %s: %s",
                interaction.user.id,
                exc,
            )


class DiscordMessenger:
    def __init__(
        self, client: discord.Client, *, ticket_hint: str = DEFAULT_TICKET_HINT
    ) -> None:
        self._client = client
        self.ticket_hint = ticket_hint
        self._prompts: dict[int, tuple[discord.Message, ClaimView]] = {}

    async def _channel(self, channel_id: int) -> discord.abc.Messageable:
        channel = await get_text_channel(self._client, channel_id)
        if channel is None:
            raise ChannelUnavailableError(f"Channel {channel_id} is unavailable")
        return channel

    async def _message(self, channel_id: int, message_id: int):
        channel = await self._channel(channel_id)
        partial = getattr(channel, "get_partial_message", None)
        if callable(partial):
            return partial(message_id)
        with _discord_errors(f"fetch message {message_id}"):
            return await channel.fetch_message(message_id)

    async def send_message(self, channel_id: int, content: str) -> int:
        channel = await self._channel(channel_id)
        with _discord_errors(f"send message to channel {channel_id}"):
            message = await channel.send(content)
        return message.id

    async def open_claim_prompt(self, channel_id: int, window: ClaimWindow) -> int:
        channel = await self._channel(channel_id)
        view = ClaimView(window, ticket_hint=self.ticket_hint)
        with _discord_errors(f"post mystery box in channel {channel_id}"):
            message = await channel.send(embed=build_drop_embed(window.timeout), view=view)
        self._prompts[message.id] = (message, view)
        return message.id

    async def close_claim_prompt(
        self, channel_id: int, message_id: int | None, window: ClaimWindow
    ) -> None:
        if message_id is None:
            return
        entry = self._prompts.pop(message_id, None)
        if entry is None:
            return
        message, view = entry
        if window.state is ClaimState.CLAIMED:
            embed = build_claimed_embed(f"<@{window.winner_id}>")
            view.disable("CLAIMED!")
        elif window.state is ClaimState.EXPIRED:
            embed = build_expired_embed()
            view.disable("EXPIRED")
        else:
            embed = build_failed_embed()
            view.disable("UNAVAILABLE")
        view.stop()
        with _discord_errors(f"update mystery box message {message_id}"):
            await message.edit(embed=embed, view=view)

    async def send_claim_receipt(self, claim: Claim) -> bool:
        guild = self._client.get_guild(claim.guild_id)
        guild_name = guild.name if guild is not None else "the server"
        try:
            user = self._client.get_user(claim.user_id)
            if user is None:
                user = await self._client.fetch_user(claim.user_id)
            await user.send(
                embed=build_receipt_embed(claim, guild_name, self.ticket_hint)
            )
        except discord.HTTPException as exc:
            log.warning("Failed to DM user %s: %s", claim.user_id, exc)
            return False
        return True

    async def post_countdown(
        self, channel_id: int, title: str, end_timestamp: int, now: int
    ) -> int:
        channel = await self._channel(channel_id)
        with _discord_errors(f"post countdown in channel {channel_id}"):
            message = await channel.send(embed=render_countdown(title, end_timestamp, now))
        return message.id

    async def edit_countdown(self, entry: CountdownEntry, now: int) -> None:
        message = await self._message(entry.channel_id, entry.message_id)
        with _discord_errors(f"edit countdown {entry.message_id}"):
            await message.edit(embed=build_countdown_embed(entry, now))

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        message = await self._message(channel_id, message_id)
        with _discord_errors(f"delete message {message_id}"):
            await message.delete()


__all__ = [
    "DEFAULT_TICKET_HINT",
    "ClaimView",
    "DiscordMessenger",
    "Messenger",
    "get_text_channel",
]
