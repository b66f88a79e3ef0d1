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
Channel Monitor

Background task that polls the watched channel and runs a session whenever
someone is listening:

    idle --(occupied)--> join + stream --> shuffle pass --> leave --> idle

Leaving only ever happens from inside a session (when the pass ends); an
idle iteration that finds the channel empty does nothing.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from loguru import logger

from core.occupancy import OccupancyChecker
from core.playback import PlaybackController
from core.playlist import PassResult, ShufflePlaylistRunner
from core.session import SessionManager
from utils.config import StreamOptions


class MonitorLoop:
    """
    Polls occupancy every poll_interval seconds and drives sessions.

    Stopping the monitor (stop()) is separate from cancelling one playback
    (PlaybackController.cancel()): the first ends the whole loop and leaves
    voice, the second only ends the current pass.

    Attributes:
        poll_interval: Seconds to wait between idle checks
        sleep: Awaitable sleep, swapped out in tests
    """

    def __init__(
        self,
        checker: OccupancyChecker,
        sessions: SessionManager,
        runner: ShufflePlaylistRunner,
        controller: PlaybackController,
        guild_id: int,
        channel_id: int,
        options: StreamOptions,
        poll_interval: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.checker = checker
        self.sessions = sessions
        self.runner = runner
        self.controller = controller
        self.guild_id = guild_id
        self.channel_id = channel_id
        self.options = options
        self.poll_interval = poll_interval
        self.sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Schedule run() on the current loop. Calling again while running is a no-op."""
        if not self.running:
            self._task = asyncio.create_task(self.run(), name="channel-monitor")
        return self._task

    async def stop(self) -> None:
        """Cancel the loop and wait for it to leave voice."""
        if not self.running:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def run(self) -> None:
        """Loop until cancelled. Iteration errors are logged and the loop carries on."""
        logger.info(f"monitoring channel {self.channel_id} in guild {self.guild_id} every {self.poll_interval:g}s")

        while True:
            try:
                recheck_now = await self.run_once()
                if not recheck_now:
                    await self.sleep(self.poll_interval)

            except asyncio.CancelledError:
                logger.debug("channel monitor cancelled, shutting down")
                break
            except Exception:
                logger.opt(exception=True).error("channel monitor error")
                try:
                    await self.sleep(self.poll_interval)
                except asyncio.CancelledError:
                    logger.debug("channel monitor cancelled, shutting down")
                    break

    async def run_once(self) -> bool:
        """
        One monitor iteration.

        Returns:
            True if the channel should be re-checked right away (a pass just
            finished normally and played something), False to wait for the
            next poll
        """
        logger.debug(f"checking voice channel {self.channel_id}")
        if await self.checker.is_empty(self.guild_id, self.channel_id):
            return False

        logger.info("listeners detected, starting session")
        async with self.sessions.session(self.guild_id, self.channel_id, self.options) as transport:
            if transport is None:
                logger.error(f"failed to create stream, retrying in {self.poll_interval:g}s")
                return False

            self.controller.reset()
            result = await self.runner.run(transport, self.guild_id, self.channel_id)

        return result is PassResult.COMPLETED and self.runner.played > 0
