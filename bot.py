# Copyright (C) 2026 grodz
#
# This file is part of Matinee.
#
# Matinee is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""
Matinee
========================================================
VERSION: 1.0.0
========================================================

Plays a shuffled local video library into one Discord voice channel for as
long as somebody is there to watch. Built on discord.py.
"""

import asyncio
import os
import signal
import sys
from pathlib import Path

import discord
from dotenv import load_dotenv
from loguru import logger

# Load environment variables before config is read
load_dotenv()

from core.occupancy import OccupancyChecker
from core.playback import PlaybackController
from core.playlist import ShufflePlaylistRunner
from core.session import SessionManager
from systems.monitor import MonitorLoop
from utils.config import ConfigManager, validate_configuration
from utils.library import MediaLibrary
from utils.log import setup_logging

CONFIG_PATH = Path(os.getenv("CONFIG_PATH") or Path(__file__).parent / "config")


class Matinee(discord.Client):
    """
    Discord client that owns the channel monitor.

    The monitor is built in setup_hook (before the gateway connects) and
    started on the first on_ready. Later on_ready events (gateway reconnects)
    leave the running monitor alone.
    """

    def __init__(self, config_manager: ConfigManager, library: MediaLibrary) -> None:
        intents = discord.Intents.default()
        intents.voice_states = True
        super().__init__(intents=intents)
        self.config_manager = config_manager
        self.library = library
        self.controller = PlaybackController()
        self.monitor: MonitorLoop | None = None

    async def setup_hook(self) -> None:
        checker = OccupancyChecker(self)
        sessions = SessionManager(self, join_timeout=self.config_manager.join_timeout)
        runner = ShufflePlaylistRunner(self.library.items, checker, self.controller)
        self.monitor = MonitorLoop(
            checker,
            sessions,
            runner,
            self.controller,
            guild_id=self.config_manager.guild_id,
            channel_id=self.config_manager.channel_id,
            options=self.config_manager.stream_options(),
            poll_interval=self.config_manager.poll_interval,
        )

    async def on_ready(self) -> None:
        if self.monitor.running:
            logger.info("gateway reconnected, monitor still running")
            return
        logger.log("NOTICE", f"connected as {self.user}")
        logger.debug(f"guild {self.config_manager.guild_id}, channel {self.config_manager.channel_id}")
        self.monitor.start()

    async def close(self) -> None:
        """Stop the monitor (leaving voice) before closing the connection."""
        if self.monitor is not None:
            await self.monitor.stop()
        await super().close()


async def main() -> None:
    config_manager = ConfigManager(CONFIG_PATH)
    await config_manager.load()
    setup_logging(config_manager.log_level)
    validate_configuration(config_manager)

    logger.log("NOTICE", "Matinee v1.0.0 - Copyright (C) 2026 grodz")
    logger.log("NOTICE", "Licensed under GPL 3.0")

    library = MediaLibrary(config_manager.media_path)
    try:
        library.ensure_directory()
        library.scan()
    except OSError as e:
        logger.critical(f"cannot read media directory {config_manager.media_path}: {e}")
        sys.exit(1)

    names = library.names()
    if names:
        logger.log("NOTICE", "available videos:\n" + "\n".join(names))
    else:
        logger.error(f"no videos found in {config_manager.media_path}")

    bot = Matinee(config_manager, library)

    # SIGINT = Ctrl+C, SIGTERM = systemd stop / docker stop
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda s=sig: _handle_shutdown_signal(bot, s))
        except NotImplementedError:
            pass  # Windows: KeyboardInterrupt handles Ctrl+C

    try:
        async with bot:
            await bot.start(os.environ["DISCORD_TOKEN"].strip())
    except discord.LoginFailure:
        logger.critical("login failed - check DISCORD_TOKEN")
        sys.exit(1)


def _handle_shutdown_signal(bot: Matinee, sig: signal.Signals) -> None:
    logger.info(f"received {sig.name}, shutting down...")
    asyncio.get_running_loop().create_task(bot.close())


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("stopped by user (Ctrl+C)")


if __name__ == '__main__':
    run()
