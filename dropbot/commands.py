"""Slash commands for mystery boxes and countdowns."""

import logging
import re

import discord
from discord import app_commands

from .countdown import CountdownService
from .durations import humanize_duration, parse_drop_interval
from .embeds import build_claims_embed, build_rewards_embed
from .errors import DropBotError
from .scheduler import MysteryBoxService

log = logging.getLogger(__name__)

_REWARD_SPLIT = re.compile(r"[;\n]+")
ADMIN_PERMISSIONS = discord.Permissions(administrator=True)


def split_rewards(raw: str) -> list[str]:
    return [part.strip() for part in _REWARD_SPLIT.split(raw or "") if part.strip()]


def ensure_guild(interaction: discord.Interaction) -> discord.Guild:
    guild = interaction.guild
    if guild is None:
        raise RuntimeError("This command can only be used in a server")
    return guild


async def send_ephemeral(interaction: discord.Interaction, message: str) -> None:
    if interaction.response.is_done():
        await interaction.followup.send(message, ephemeral=True)
    else:
        await interaction.response.send_message(message, ephemeral=True)


async def report_failure(
    interaction: discord.Interaction, exc: Exception, action: str
) -> None:
    """Answer a failed command with a short message; log anything unexpected."""
    if isinstance(exc, DropBotError):
        await send_ephemeral(interaction, f"❌ {exc}")
        return
    if isinstance(exc, RuntimeError) and interaction.guild is None:
        await send_ephemeral(interaction, str(exc))
        return
    log.exception("Command failed while trying to %s", action)
    await send_ephemeral(interaction, f"❌ Something went wrong while trying to {action}.")


def build_mysterybox_group(service: MysteryBoxService) -> app_commands.Group:
    group = app_commands.Group(
        name="mysterybox",
        description="Mystery box drops",
        guild_only=True,
        default_permissions=ADMIN_PERMISSIONS,
    )

    @group.command(name="setup", description="Configure the drop channel, interval and rewards")
    @app_commands.describe(
        channel="Channel where mystery boxes drop",
        interval="Time between drops, e.g. 1d 5h (units: w, d, h, m, s)",
        rewards="Rewards separated by ; (e.g. Nitro; 500 coins; VIP role)",
    )
    async def setup(
        interaction: discord.Interaction,
        channel: discord.TextChannel,
        interval: str,
        rewards: str,
    ) -> None:
        try:
            guild = ensure_guild(interaction)
            interval_ms = parse_drop_interval(interval)
            reward_list = split_rewards(rewards)
            await service.configure(guild.id, channel.id, interval_ms, reward_list)
        except Exception as exc:  # pylint: disable=broad-except
            await report_failure(interaction, exc, "set up mystery boxes")
            return
        await send_ephemeral(
            interaction,
            f"🎉 Setup Complete! Channel: {channel.mention}, "
            f"Interval: {humanize_duration(interval_ms)}, "
            f"Rewards Added: {len(reward_list)}. Use `/mysterybox start` to begin.",
        )

    @group.command(name="start", description="Start the drop timer")
    async def start(interaction: discord.Interaction) -> None:
        try:
            guild = ensure_guild(interaction)
            config = await service.start(guild.id)
        except Exception as exc:  # pylint: disable=broad-except
            await report_failure(interaction, exc, "start mystery box drops")
            return
        await send_ephemeral(
            interaction,
            "✅ Mystery Box drops started! First drop in "
            f"{humanize_duration(config.interval_ms)} in <#{config.channel_id}>.",
        )

    @group.command(name="time", description="Show the time until the next drop")
    async def time(interaction: discord.Interaction) -> None:
        try:
            guild = ensure_guild(interaction)
            remaining = service.time_until_next_drop(guild.id)
        except Exception as exc:  # pylint: disable=broad-except
            await report_failure(interaction, exc, "read the drop timer")
            return
        await send_ephemeral(
            interaction, f"⏳ Next Mystery Box Drop in: **{humanize_duration(remaining)}**"
        )

    @group.command(name="rewards", description="List the configured rewards")
    async def rewards(interaction: discord.Interaction) -> None:
        try:
            guild = ensure_guild(interaction)
            reward_list = service.list_rewards(guild.id)
        except Exception as exc:  # pylint: disable=broad-except
            await report_failure(interaction, exc, "load rewards")
            return
        if not reward_list:
            await send_ephemeral(interaction, "ℹ️ No rewards configured yet.")
            return
        await interaction.response.send_message(
            embed=build_rewards_embed(reward_list), ephemeral=True
        )

    @group.command(name="check", description="View a member's mystery box claims")
    @app_commands.describe(user="Member whose claims to show")
    async def check(interaction: discord.Interaction, user: discord.Member) -> None:
        try:
            guild = ensure_guild(interaction)
            claims = service.list_claims(guild.id, user.id)
        except Exception as exc:  # pylint: disable=broad-except
            await report_failure(interaction, exc, "load claims")
            return
        if not claims:
            await send_ephemeral(interaction, f"ℹ️ {user.display_name} has no claims.")
            return
        await interaction.response.send_message(
            embed=build_claims_embed(user.display_name, claims), ephemeral=True
        )

    @group.command(name="use", description="Mark a member's claim as redeemed")
    @app_commands.describe(user="Member who owns the claim", claim_id="Claim ID, e.g. #AB12CD34EF")
    async def use(
        interaction: discord.Interaction, user: discord.Member, claim_id: str
    ) -> None:
        try:
            guild = ensure_guild(interaction)
            claim = service.mark_used(guild.id, user.id, claim_id)
        except Exception as exc:  # pylint: disable=broad-except
            await report_failure(interaction, exc, "redeem the claim")
            return
        log.info(
            "Claim %s of user %s redeemed by %s",
            claim.claim_id,
            user.id,
            interaction.user.id,
        )
        await send_ephemeral(
            interaction,
            f"✅ Claim ID **#{claim.claim_id}** ({claim.reward_description}) marked USED.",
        )

    @group.command(name="reset", description="Stop the timer and delete all rewards and claims")
    async def reset(interaction: discord.Interaction) -> None:
        try:
            guild = ensure_guild(interaction)
            await service.reset(guild.id)
        except Exception as exc:  # pylint: disable=broad-except
            await report_failure(interaction, exc, "reset mystery boxes")
            return
        await send_ephemeral(interaction, "✅ Mystery Boxes completely reset.")

    return group


def build_countdown_group(service: CountdownService) -> app_commands.Group:
    group = app_commands.Group(
        name="countdown",
        description="Self-updating countdowns",
        guild_only=True,
        default_permissions=ADMIN_PERMISSIONS,
    )

    @group.command(name="start", description="Start a self-updating countdown")
    @app_commands.describe(
        title="What the countdown is for",
        channel="Text channel for the countdown message",
        time="Duration, e.g. 1d 5h 30m (units: y, mo, d, h, m, s; min 1 minute)",
    )
    async def start(
        interaction: discord.Interaction,
        title: str,
        channel: discord.TextChannel,
        time: str,
    ) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            guild = ensure_guild(interaction)
            await service.create(guild.id, channel.id, title, time)
        except Exception as exc:  # pylint: disable=broad-except
            await report_failure(interaction, exc, "start the countdown")
            return
        await send_ephemeral(
            interaction,
            f"✅ Countdown **'{title.strip()}'** started in {channel.mention}! "
            "It will automatically update until completion.",
        )

    @group.command(name="cancel", description="Stop the countdown in a channel")
    @app_commands.describe(channel="Channel whose countdown should stop")
    async def cancel(interaction: discord.Interaction, channel: discord.TextChannel) -> None:
        try:
            ensure_guild(interaction)
            stopped = await service.cancel(channel.id)
        except Exception as exc:  # pylint: disable=broad-except
            await report_failure(interaction, exc, "cancel the countdown")
            return
        if not stopped:
            await send_ephemeral(interaction, f"ℹ️ No active countdown in {channel.mention}.")
            return
        await send_ephemeral(interaction, f"✅ Countdown in {channel.mention} cancelled.")

    return group


def register_commands(
    tree: app_commands.CommandTree,
    mystery_service: MysteryBoxService,
    countdown_service: CountdownService,
    *,
    guild: discord.abc.Snowflake | None = None,
) -> list[app_commands.Group]:
    groups = [
        build_mysterybox_group(mystery_service),
        build_countdown_group(countdown_service),
    ]
    for group in groups:
        tree.add_command(group, guild=guild)
    return groups


__all__ = [
    "build_countdown_group",
    "build_mysterybox_group",
    "ensure_guild",
    "register_commands",
    "report_failure",
    "send_ephemeral",
    "split_rewards",
]
