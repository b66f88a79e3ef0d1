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
Voice Session Management

Owns the "joined + streaming" pair: joining the watched channel, binding a
transport to the connection, and leaving again.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

import discord
from loguru import logger

from core.transport import MediaTransport, VoiceTransport
from utils.config import StreamOptions
from utils.discord_helpers import (
    can_stream_in_channel,
    is_voice_channel,
    resolve_channel,
    resolve_guild,
    safe_disconnect,
)


class SessionManager:
    """
    Joins, streams into and leaves one voice channel.

    join(), create_stream() and leave() share one lock, so there is never
    more than one connection attempt or teardown in progress.

    Attributes:
        client: Discord client used for lookups and voice connections
        join_timeout: Seconds to wait for a voice connection
        transport_factory: Builds a MediaTransport for a connected voice client
    """

    def __init__(
        self,
        client: discord.Client,
        join_timeout: float = 30.0,
        transport_factory: Callable[[discord.VoiceClient, StreamOptions], MediaTransport] = VoiceTransport,
    ) -> None:
        self.client = client
        self.join_timeout = join_timeout
        self.transport_factory = transport_factory
        self._voice_client: Optional[discord.VoiceClient] = None
        self._guild_id: Optional[int] = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._voice_client is not None and self._voice_client.is_connected()

    async def join(self, guild_id: int, channel_id: int, options: StreamOptions) -> bool:
        """
        Join the channel after checking it exists, is voice, and is usable.

        Never raises. Every failure is logged and reported as False, which
        just means no session this cycle.
        """
        async with self._lock:
            try:
                return await self._join(guild_id, channel_id)
            except asyncio.TimeoutError:
                logger.error(f"timed out joining voice channel {channel_id} after {self.join_timeout:.0f}s")
            except Exception as e:
                logger.opt(exception=True).error(f"error joining voice channel: {e}")
            return False

    async def _join(self, guild_id: int, channel_id: int) -> bool:
        guild = await resolve_guild(self.client, guild_id)
        if guild is None:
            logger.error(f"guild not found: guild_id={guild_id}")
            return False
        self._guild_id = guild.id
        logger.debug(f"fetched guild: {guild.name}")

        channel = await resolve_channel(guild, channel_id)
        if channel is None:
            logger.error(f"channel not found: channel_id={channel_id}")
            return False
        if not is_voice_channel(channel):
            logger.error(f"not a voice channel: channel_id={channel_id}, type={channel.type}")
            return False
        if not can_stream_in_channel(channel, guild.me):
            logger.error(f"missing permissions to join #{channel.name} (need view, connect, speak)")
            return False

        voice_client = guild.voice_client
        if voice_client is not None and voice_client.is_connected():
            if voice_client.channel and voice_client.channel.id == channel.id:
                logger.debug(f"already in #{channel.name}")
                self._voice_client = voice_client
                return True
            logger.info(f"moving to #{channel.name}")
            await asyncio.wait_for(voice_client.move_to(channel), timeout=self.join_timeout)
            self._voice_client = voice_client
            return True

        if voice_client is not None:
            # Stale client left over from a dropped connection
            await safe_disconnect(voice_client, force=True)

        logger.info(f"joining #{channel.name}")
        self._voice_client = await channel.connect(timeout=self.join_timeout, reconnect=True, self_deaf=True)
        logger.info(f"joined #{channel.name}")
        return True

    async def create_stream(self, options: StreamOptions) -> Optional[MediaTransport]:
        """Bind a transport to the current connection. None means "not connected, retry later"."""
        async with self._lock:
            if not self.connected:
                return None
            return self.transport_factory(self._voice_client, options)

    async def leave(self) -> None:
        """Disconnect from voice. Safe to call when not connected."""
        async with self._lock:
            voice_client = self._voice_client or self._guild_voice_client()
            self._voice_client = None
            if voice_client is not None:
                await safe_disconnect(voice_client, force=True)
            logger.info("left voice channel")

    def _guild_voice_client(self) -> Optional[discord.VoiceProtocol]:
        if self._guild_id is None:
            return None
        guild = self.client.get_guild(self._guild_id)
        return guild.voice_client if guild is not None else None

    @asynccontextmanager
    async def session(
        self, guild_id: int, channel_id: int, options: StreamOptions
    ) -> AsyncIterator[Optional[MediaTransport]]:
        """
        Join, yield a transport (None if the stream couldn't be created), leave.

        Usage:
            async with sessions.session(guild_id, channel_id, options) as transport:
                if transport:
                    await runner.run(transport, guild_id, channel_id)

        leave() runs exactly once however the block exits, including
        cancellation.
        """
        try:
            transport = None
            if await self.join(guild_id, channel_id, options):
                transport = await self.create_stream(options)
            yield transport
        finally:
            # Shield so a second cancel can't interrupt the disconnect half-way
            await asyncio.shield(self.leave())
