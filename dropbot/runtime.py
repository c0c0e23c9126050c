"""Discord runtime that wires storage, schedulers and commands together."""

from __future__ import annotations

import asyncio
import logging

import boto3
import discord
from discord import app_commands

from .claims import ClaimWindow
from .commands import register_commands
from .config import EnvironmentConfig
from .countdown import CountdownService
from .ledger import RewardLedger
from .messaging import DiscordMessenger
from .scheduler import MysteryBoxService
from .storage import DropStorage

log = logging.getLogger(__name__)


class DropBotRuntime:
    def __init__(self, config: EnvironmentConfig, *, table=None) -> None:
        intents = discord.Intents.default()
        intents.guilds = True

        self.config = config
        self.bot = discord.Client(intents=intents)
        self.tree = app_commands.CommandTree(self.bot)
        if table is None:
            dynamodb = boto3.resource("dynamodb", region_name=config.aws_region)
            table = dynamodb.Table(config.table_name)
        self.storage = DropStorage(table)
        self.ledger = RewardLedger(self.storage)
        self.messenger = DiscordMessenger(self.bot, ticket_hint=config.ticket_hint)
        self.mystery_boxes = MysteryBoxService(
            self.storage,
            self.ledger,
            self.messenger,
            claim_timeout=float(config.claim_timeout_seconds),
            window_factory=ClaimWindow,
        )
        self.countdowns = CountdownService(
            self.storage,
            self.messenger,
            update_interval_ms=config.countdown_update_seconds * 1000,
        )
        self.guild_object = (
            discord.Object(id=config.guild_id) if config.guild_id is not None else None
        )
        self._resumed = False

        register_commands(
            self.tree, self.mystery_boxes, self.countdowns, guild=self.guild_object
        )
        self.bot.event(self.on_ready)
        self.bot.event(self.on_raw_message_delete)

    async def on_ready(self) -> None:
        if self.guild_object is not None:
            await self.tree.sync(guild=self.guild_object)
            log.info("Commands synced to guild %s", self.config.guild_id)
        else:
            await self.tree.sync()
            log.info("Commands synced globally")

        # on_ready fires again after reconnects; timers must only be armed once.
        if not self._resumed:
            self._resumed = True
            schedules = await self.mystery_boxes.resume_all()
            countdowns = await self.countdowns.resume_all()
            log.info(
                "Resumed %s mystery box schedules and %s countdowns",
                schedules,
                countdowns,
            )
        log.info("Drop bot ready as %s", self.bot.user)

    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent) -> None:
        if self.countdowns.forget(payload.channel_id, payload.message_id):
            log.info("Countdown message %s deleted; stopped its updater", payload.message_id)

    async def run(self) -> None:
        try:
            async with self.bot:
                await self.bot.start(self.config.discord_token)
        finally:
            self.mystery_boxes.shutdown()
            self.countdowns.shutdown()

    @classmethod
    def create(cls) -> DropBotRuntime:
        return cls(EnvironmentConfig.load())


async def main() -> None:
    config = EnvironmentConfig.load()
    logging.basicConfig(level=config.log_level)
    runtime = DropBotRuntime(config)
    await runtime.run()


def run_cli() -> None:
    asyncio.run(main())


__all__ = ["DropBotRuntime", "main", "run_cli"]
