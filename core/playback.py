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
Single-Item Playback

Plays one MediaItem over a transport as a cancelable unit of work.

Per item: Idle -> Playing -> {Completed | Canceled | Errored} -> Idle.
The speaking and video signals are raised on entry to Playing and lowered on
every way out of it.
"""

import asyncio
from contextlib import asynccontextmanager
from enum import Enum
from typing import Optional

from loguru import logger

from core.transport import MediaTransport
from utils.library import MediaItem


class PlaybackOutcome(Enum):
    """How a single playback ended."""
    COMPLETED = "completed"
    CANCELED = "canceled"
    ERRORED = "errored"


class PlaybackBusyError(RuntimeError):
    """Raised when play() is called while another item is still in flight."""


async def _reset_presence(transport: MediaTransport) -> None:
    """Lower both signals, attempting each even if the other fails."""
    for setter in (transport.set_speaking, transport.set_video):
        try:
            await setter(False)
        except Exception:
            logger.opt(exception=True).warning("failed to reset presence signal")


@asynccontextmanager
async def presence(transport: MediaTransport):
    """
    Hold speaking + video on for the duration of the block.

    Usage:
        async with presence(transport):
            await transport.stream(path)

    Both signals are reset on normal exit, cancellation and error.
    """
    try:
        await transport.set_speaking(True)
        await transport.set_video(True)
        yield
    finally:
        await _reset_presence(transport)


class PlaybackHandle:
    """
    One in-flight playback.

    cancel() is cooperative: it stops the stream if one is running, or stops
    it from starting if it hasn't yet. The surrounding task is never
    cancelled by cancel(), so presence cleanup always runs to completion.

    Attributes:
        item: The item being played
    """

    def __init__(self, item: MediaItem, transport: MediaTransport) -> None:
        self.item = item
        self._transport = transport
        self._cancel_requested = False
        self._stream_task: Optional[asyncio.Task] = None
        self._task = asyncio.create_task(self._run(), name=f"playback:{item.display_name}")

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    @property
    def outcome(self) -> Optional[PlaybackOutcome]:
        """Final outcome, or None while still playing."""
        if not self._task.done():
            return None
        if self._task.cancelled():
            return PlaybackOutcome.CANCELED
        return self._task.result()

    def cancel(self) -> bool:
        """Request cancellation. Returns False if playback already ended."""
        if self._task.done():
            return False
        self._cancel_requested = True
        if self._stream_task is not None:
            self._stream_task.cancel()
        return True

    async def wait(self) -> PlaybackOutcome:
        """
        Wait for the playback to end.

        If the waiter itself is cancelled (monitor shutdown), the playback is
        cancelled too and fully cleaned up before CancelledError propagates.
        """
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._task.cancelled():
                return PlaybackOutcome.CANCELED
            self.cancel()
            await asyncio.wait({self._task})
            raise

    async def _run(self) -> PlaybackOutcome:
        name = self.item.display_name
        logger.info(f"playing: {name}")
        try:
            async with presence(self._transport):
                if self._cancel_requested:
                    logger.info(f"playback cancelled before start: {name}")
                    return PlaybackOutcome.CANCELED
                self._stream_task = asyncio.create_task(self._transport.stream(self.item.path))
                await self._stream_task
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            logger.info(f"playback cancelled: {name}")
            return PlaybackOutcome.CANCELED
        except Exception:
            logger.opt(exception=True).error(f"playback failed: {name}")
            return PlaybackOutcome.ERRORED
        logger.info(f"finished: {name}")
        return PlaybackOutcome.COMPLETED


class PlaybackController:
    """
    Owns the single playback slot for a session.

    At most one PlaybackHandle is in flight; starting another while it runs
    raises PlaybackBusyError.
    """

    def __init__(self) -> None:
        self._current: Optional[PlaybackHandle] = None

    @property
    def current(self) -> Optional[PlaybackHandle]:
        """The in-flight handle, or None when idle."""
        if self._current is not None and not self._current.done:
            return self._current
        return None

    @property
    def is_canceled(self) -> bool:
        """True if the most recent playback was cancelled (requested or resulting)."""
        if self._current is None:
            return False
        return self._current.cancel_requested or self._current.outcome is PlaybackOutcome.CANCELED

    def play(self, item: MediaItem, transport: MediaTransport) -> PlaybackHandle:
        """Start playing item. Must be called from the event loop."""
        if self.current is not None:
            raise PlaybackBusyError(f"already playing {self._current.item.display_name}")
        self._current = PlaybackHandle(item, transport)
        return self._current

    def cancel(self) -> bool:
        """Cancel the in-flight playback, if any."""
        handle = self.current
        if handle is None:
            return False
        return handle.cancel()

    def reset(self) -> None:
        """Forget the last playback (new session starts with a clean slate)."""
        if self.current is None:
            self._current = None
