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
Discord API Helper Functions

Safe wrappers around the guild/channel lookups and voice operations the
monitor needs. All functions handle None values and Discord API errors and
never raise for "not found" style failures.

- resolve_guild(): Cached guild, falling back to an API fetch
- resolve_channel(): Cached channel, falling back to an API fetch
- is_voice_channel(): Voice or stage channel check
- can_stream_in_channel(): View + connect + speak permission check
- safe_disconnect(): Idempotent voice disconnect
"""

from typing import Optional

import discord
from loguru import logger


VOICE_CHANNEL_TYPES = (discord.ChannelType.voice, discord.ChannelType.stage_voice)


async def resolve_guild(client: discord.Client, guild_id: int) -> Optional[discord.Guild]:
    """
    Get a guild from cache, or fetch it from the API.

    Returns:
        Guild, or None if it doesn't exist or the bot can't see it
    """
    guild = client.get_guild(guild_id)
    if guild is not None:
        return guild
    try:
        return await client.fetch_guild(guild_id)
    except discord.HTTPException as e:
        logger.debug(f"guild {guild_id} fetch failed: {e}")
        return None


async def resolve_channel(guild: discord.Guild, channel_id: int) -> Optional[discord.abc.GuildChannel]:
    """
    Get a channel from the guild cache, or fetch it from the API.

    Returns:
        Channel, or None if it doesn't exist or the bot can't see it
    """
    channel = guild.get_channel(channel_id)
    if channel is not None:
        return channel
    try:
        return await guild.fetch_channel(channel_id)
    except (discord.HTTPException, discord.InvalidData) as e:
        logger.debug(f"channel {channel_id} fetch failed: {e}")
        return None


def is_voice_channel(channel) -> bool:
    """True for channels a voice connection can join (voice and stage)."""
    return channel is not None and getattr(channel, "type", None) in VOICE_CHANNEL_TYPES


def can_stream_in_channel(channel, member: Optional[discord.Member]) -> bool:
    """
    Check that member can see, join and talk in a voice channel.

    Note:
        Falls back to False if guild.me is None (rare startup race).
    """
    if channel is None or member is None:
        return False
    perms = channel.permissions_for(member)
    return bool(perms and perms.view_channel and perms.connect and perms.speak)


async def safe_disconnect(voice_client: Optional[discord.VoiceProtocol], force: bool = True) -> bool:
    """
    Disconnect from voice with error handling.

    Returns:
        True if disconnected or there was nothing to disconnect, False on error
    """
    if not voice_client:
        return True  # No-op success for idempotency
    try:
        await voice_client.disconnect(force=force)
        return True
    except (discord.ClientException, discord.HTTPException) as e:
        logger.debug(f"disconnect failed (non-critical): {e}")
        return False
    except OSError as e:
        # Transport errors while the socket is already closing
        logger.debug(f"disconnect failed with transport error (non-critical): {e}")
        return False
