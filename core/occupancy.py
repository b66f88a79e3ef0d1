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
Channel Occupancy

Decides whether the watched voice channel has anyone worth streaming to.
"""

from enum import Enum

import discord
from loguru import logger

from utils.discord_helpers import is_voice_channel, resolve_channel, resolve_guild


class Occupancy(Enum):
    """
    Live state of the watched channel.

    OCCUPIED: At least one human (not a bot, not us) is in the channel
    EMPTY: The channel resolved and nobody qualifying is in it
    UNKNOWN: Guild or channel could not be resolved, or it isn't a voice channel

    UNKNOWN is treated as empty by is_empty(): a lookup hiccup must never
    start or prolong a session.
    """
    OCCUPIED = "occupied"
    EMPTY = "empty"
    UNKNOWN = "unknown"


class OccupancyChecker:
    """
    Counts qualifying listeners in a voice channel.

    Nothing is cached: every call reads the client's current view of the
    channel, so each item boundary sees fresh membership.
    """

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    def _is_listener(self, member) -> bool:
        own_id = self.client.user.id if self.client.user else None
        return not member.bot and member.id != own_id

    async def check(self, guild_id: int, channel_id: int) -> Occupancy:
        """Resolve the channel and classify it."""
        guild = await resolve_guild(self.client, guild_id)
        if guild is None:
            logger.info(f"guild {guild_id} not found")
            return Occupancy.UNKNOWN

        channel = await resolve_channel(guild, channel_id)
        if not is_voice_channel(channel):
            logger.info(f"channel {channel_id} not found or not a voice channel")
            return Occupancy.UNKNOWN

        listeners = sum(1 for member in channel.members if self._is_listener(member))
        logger.debug(f"{listeners} listener(s) in #{channel.name}")
        return Occupancy.OCCUPIED if listeners else Occupancy.EMPTY

    async def is_empty(self, guild_id: int, channel_id: int) -> bool:
        """True unless the channel is positively occupied (UNKNOWN counts as empty)."""
        return await self.check(guild_id, channel_id) is not Occupancy.OCCUPIED
