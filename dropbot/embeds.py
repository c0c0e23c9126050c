from __future__ import annotations

import discord

from .durations import humanize_duration
from .models import Claim, CountdownEntry, ms_to_datetime

DROP_COLOR = 0xFFA500
CLAIMED_COLOR = 0x00FF00
EXPIRED_COLOR = 0xFF0000
INFO_COLOR = 0x3498DB
COUNTDOWN_COLOR = 0x0099FF


def build_drop_embed(timeout_seconds: float) -> discord.Embed:
    embed = discord.Embed(
        title="🚨 MYSTERY BOX DROP! 🚨",
        description=(
            "A valuable Mystery Box has appeared! Click the button below "
            "**first** to claim your reward!"
        ),
        color=DROP_COLOR,
        timestamp=discord.utils.utcnow(),
    )
    embed.set_footer(text=f"Hurry! You have {int(timeout_seconds)} seconds to claim!")
    return embed


def build_claimed_embed(winner_mention: str) -> discord.Embed:
    embed = discord.Embed(
        title="✅ MYSTERY BOX CLAIMED!",
        description=(
            f"{winner_mention} was the fastest and won a reward! "
            "Check your DMs for details."
        ),
        color=CLAIMED_COLOR,
        timestamp=discord.utils.utcnow(),
    )
    embed.set_footer(text="The next drop is now counting down.")
    return embed


def build_expired_embed() -> discord.Embed:
    embed = discord.Embed(
        title="❌ MYSTERY BOX EXPIRED",
        description="No one claimed the box in time! Better luck next time.",
        color=EXPIRED_COLOR,
        timestamp=discord.utils.utcnow(),
    )
    embed.set_footer(text="The next drop is now counting down.")
    return embed


def build_failed_embed() -> discord.Embed:
    return discord.Embed(
        title="⚠️ MYSTERY BOX ERROR",
        description="The claim could not be saved. An admin has been notified in the logs.",
        color=EXPIRED_COLOR,
        timestamp=discord.utils.utcnow(),
    )


def build_receipt_embed(claim: Claim, guild_name: str, ticket_hint: str) -> discord.Embed:
    """DM sent to the winner with the reward and its claim ID."""
    embed = discord.Embed(
        title="🎉 Congratulations! You claimed a Mystery Box!",
        description=f"You successfully claimed a reward in **{guild_name}**!",
        color=CLAIMED_COLOR,
        timestamp=ms_to_datetime(claim.claimed_at),
    )
    embed.add_field(name="Your Reward", value=f"**{claim.reward_description}**", inline=False)
    embed.add_field(name="Claim ID", value=f"`#{claim.claim_id}`", inline=False)
    embed.add_field(
        name="How to Claim:",
        value=(
            "To redeem this reward, create a ticket using the instructions in "
            f"{ticket_hint}. In your ticket, provide the reward description and "
            f"your **Claim ID: `#{claim.claim_id}`**."
        ),
        inline=False,
    )
    embed.set_footer(text="Keep this DM safe!")
    return embed


def fallback_claim_notice(claim: Claim, ticket_hint: str) -> str:
    return (
        f"✅ You won **{claim.reward_description}**! **BUT I COULDN'T DM YOU!** "
        f"Your Claim ID is `#{claim.claim_id}`. Open a ticket in {ticket_hint} "
        "to redeem it."
    )


def build_countdown_embed(entry: CountdownEntry, now: int) -> discord.Embed:
    return render_countdown(entry.title, entry.end_timestamp, now)


def render_countdown(title: str, end_timestamp: int, now: int) -> discord.Embed:
    remaining = end_timestamp - now
    finished = remaining <= 0
    remaining_text = "TIME IS UP! 🚀" if finished else humanize_duration(remaining)
    end_at = ms_to_datetime(end_timestamp)
    embed = discord.Embed(
        title=f"⌛ COUNTDOWN: {title}",
        description=f"**Remaining Time:**\n# {remaining_text}",
        color=EXPIRED_COLOR if finished else COUNTDOWN_COLOR,
        timestamp=discord.utils.utcnow(),
    )
    embed.add_field(
        name="Target Date (UTC)",
        value=end_at.strftime("%a, %d %b %Y %H:%M:%S UTC"),
        inline=False,
    )
    embed.set_footer(text="Countdown finished!" if finished else "Updates automatically...")
    return embed


def build_rewards_embed(rewards: list[str]) -> discord.Embed:
    lines = "\n".join(f"**{idx}.** {reward}" for idx, reward in enumerate(rewards, start=1))
    embed = discord.Embed(
        title=f"🎁 Current Rewards ({len(rewards)})",
        description=lines[:4096],
        color=COUNTDOWN_COLOR,
        timestamp=discord.utils.utcnow(),
    )
    embed.set_footer(text="Randomly selected for drops.")
    return embed


def build_claims_embed(user_name: str, claims: list[Claim]) -> discord.Embed:
    unused = [claim for claim in claims if not claim.is_used]
    used = [claim for claim in claims if claim.is_used]

    def _lines(items: list[Claim], status: str) -> str:
        return "\n".join(
            f"`#{claim.claim_id}` | {claim.reward_description} ({status})"
            for claim in items
        )

    embed = discord.Embed(
        title=f"🎁 Claims for {user_name}",
        description=(
            f"Total Claims: {len(claims)} | Unused: {len(unused)} | Used: {len(used)}"
        ),
        color=INFO_COLOR,
        timestamp=discord.utils.utcnow(),
    )
    embed.add_field(
        name=f"Unused Claims ({len(unused)})",
        value=_lines(unused, "⚠️ UNUSED")[:1024] or "No unused claims found.",
        inline=False,
    )
    embed.add_field(
        name=f"Used/Redeemed Claims ({len(used)})",
        value=_lines(used, "✅ USED")[:1024] or "No redeemed claims found.",
        inline=False,
    )
    embed.set_footer(text="Use /mysterybox use to redeem a claim.")
    return embed


__all__ = [
    "build_claimed_embed",
    "build_claims_embed",
    "build_countdown_embed",
    "build_drop_embed",
    "build_expired_embed",
    "build_failed_embed",
    "build_receipt_embed",
    "build_rewards_embed",
    "fallback_claim_notice",
    "render_countdown",
]
