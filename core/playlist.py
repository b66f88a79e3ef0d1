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

"""Shuffled passes over the video library."""

import random
from enum import Enum
from typing import Callable, Iterable, Optional, TypeVar

from loguru import logger

from core.occupancy import OccupancyChecker
from core.playback import PlaybackController, PlaybackOutcome
from core.transport import MediaTransport
from utils.library import MediaItem

T = TypeVar("T")


class PassResult(Enum):
    """Why a pass stopped."""
    COMPLETED = "completed"          # Every item played
    CHANNEL_EMPTY = "channel_empty"  # Listeners left at an item boundary
    CANCELED = "canceled"            # Playback was cancelled from outside
    DISCONNECTED = "disconnected"    # Voice connection dropped mid-pass
    NO_MEDIA = "no_media"            # Nothing to play

    @property
    def ends_session(self) -> bool:
        return self in (PassResult.CHANNEL_EMPTY, PassResult.DISCONNECTED)


def shuffle(items: Iterable[T], rng: Optional[random.Random] = None) -> list[T]:
    """Fisher-Yates shuffle into a new list. The input is not modified."""
    rng = rng or random
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


class ShufflePlaylistRunner:
    """
    Plays one pass over a fresh permutation of the library.

    Occupancy is re-checked before and after every item, so a pass never
    plays into an empty channel for longer than one item.

    Attributes:
        catalog: Items to play (the whole library, every pass)
        checker: Occupancy source
        controller: Single-slot playback controller
        rng: Random source (seeded in tests)
    """

    def __init__(
        self,
        catalog: frozenset[MediaItem],
        checker: OccupancyChecker,
        controller: PlaybackController,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.catalog = catalog
        self.checker = checker
        self.controller = controller
        self.rng = rng or random.Random()
        self.played = 0  # Items that finished normally in the last pass

    async def run(
        self,
        transport: MediaTransport,
        guild_id: int,
        channel_id: int,
        is_canceled: Optional[Callable[[], bool]] = None,
    ) -> PassResult:
        """Play a pass. Returns why it stopped."""
        is_canceled = is_canceled or (lambda: self.controller.is_canceled)
        self.played = 0

        if not self.catalog:
            logger.error("no videos to play")
            return PassResult.NO_MEDIA

        order = shuffle(self.catalog, self.rng)
        logger.info(f"starting pass over {len(order)} video(s)")

        for item in order:
            if await self.checker.is_empty(guild_id, channel_id):
                logger.info("channel empty before playback, ending session")
                return PassResult.CHANNEL_EMPTY

            handle = self.controller.play(item, transport)
            if await handle.wait() is PlaybackOutcome.COMPLETED:
                self.played += 1

            if await self.checker.is_empty(guild_id, channel_id):
                logger.info("channel empty after playback, ending session")
                return PassResult.CHANNEL_EMPTY

            if not transport.is_connected():
                logger.warning("voice connection lost, ending session")
                return PassResult.DISCONNECTED

            if is_canceled():
                logger.info("pass cancelled")
                return PassResult.CANCELED

        logger.info("pass complete")
        return PassResult.COMPLETED
