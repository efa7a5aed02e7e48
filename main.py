import asyncio
import logging
import signal
import sys
from datetime import time as dt_time, timezone
from typing import List, Optional

import discord
from discord import app_commands
from discord.ext import tasks

from commands import ALL_COMMANDS
from config import Settings
from database import Database
from keep_alive import keep_thread_alive
from keep_alive_runner import KeepAliveRunner, RunResult
from models import ThreadRef
from web_server import start_server_thread

logger = logging.getLogger("alivethread")


def _utc_times(hours) -> List[dt_time]:
    return [dt_time(hour=hour, tzinfo=timezone.utc) for hour in hours]


# --- Discord Bot Implementation ---

class ThreadKeeperBot(discord.Client):
    def __init__(self, settings: Settings, *, intents: discord.Intents):
        super().__init__(intents=intents)
        self.settings = settings
        self.tree = app_commands.CommandTree(self)
        for command in ALL_COMMANDS:
            self.tree.add_command(command)

        self.db = Database(settings.database_path)
        self.runner = KeepAliveRunner(
            self.db.subscriptions,
            self.db.cursor,
            self.ping_thread,
            config=settings.keep_alive_config(),
        )
        self._synced = False
        self._closing: Optional[asyncio.Task] = None

    async def ping_thread(self, thread: ThreadRef) -> bool:
        return await keep_thread_alive(self, thread.thread_id)

    async def setup_hook(self):
        """Runs once before connecting to the gateway."""
        await self.db.init()

        self.scheduled_keep_alive.change_interval(time=_utc_times(self.settings.keep_alive_hours))
        self.scheduled_keep_alive.start()
        hours = ", ".join(f"{hour:02d}:00" for hour in self.settings.keep_alive_hours)
        logger.info("Keep-alive job scheduled at %s UTC", hours)

        try:
            self.loop.add_signal_handler(signal.SIGTERM, self._on_sigterm)
        except NotImplementedError:
            pass  # Windows

    def _on_sigterm(self) -> None:
        logger.info("Received SIGTERM, shutting down")
        if self._closing is None:
            self._closing = asyncio.create_task(self.close())

    async def on_ready(self):
        """Called when the bot successfully connects to Discord."""
        # on_ready fires again after reconnects, commands only need one sync
        if not self._synced:
            await self.tree.sync()
            self._synced = True
        logger.info("Logged in as %s (ID: %s)", self.user, self.user.id)

    async def close(self):
        # stop() lets a scheduled run in progress reach its abort check instead of cancelling it
        self.scheduled_keep_alive.stop()
        if self.runner.running:
            self.runner.request_abort()
            stopped = await self.runner.wait_until_stopped(self.settings.shutdown_timeout)
            if not stopped:
                logger.warning(
                    "Keep-alive job did not stop within %.0fs, closing anyway",
                    self.settings.shutdown_timeout,
                )
        await super().close()

    # --- Scheduled Keep-Alive ---

    @tasks.loop(time=_utc_times((0, 12)))
    async def scheduled_keep_alive(self):
        """Periodic trigger; results only go to the log."""
        try:
            result: RunResult = await self.runner.run_now()
        except Exception as e:
            logger.error("Error running scheduled keep-alive: %s", e)
            return
        if result.skipped:
            logger.info("Scheduled keep-alive skipped, a run is already in progress")

    @scheduled_keep_alive.before_loop
    async def _before_scheduled_keep_alive(self):
        await self.wait_until_ready()


def main() -> None:
    settings = Settings.from_env()
    discord.utils.setup_logging(level=getattr(logging, settings.log_level, logging.INFO))

    if not settings.discord_token:
        logger.critical("DISCORD_BOT_TOKEN environment variable not set. Exiting.")
        sys.exit(1)

    bot = ThreadKeeperBot(settings, intents=discord.Intents.default())
    start_server_thread(bot, settings.port, version=settings.version)
    # Logging is already configured above
    bot.run(settings.discord_token, log_handler=None)


if __name__ == '__main__':
    main()
