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
Media Transport

Turns a local file into an outbound stream over an established voice
connection, and exposes the two presence signals (speaking, video) that
clients show while something is playing.
"""

import asyncio
from pathlib import Path
from typing import Callable, Protocol

import discord
from discord.enums import SpeakingState
from loguru import logger

from utils.config import StreamOptions


class MediaTransport(Protocol):
    """What the playback controller needs from a stream."""

    def is_connected(self) -> bool: ...

    async def set_speaking(self, speaking: bool) -> None: ...

    async def set_video(self, active: bool) -> None: ...

    async def stream(self, path: Path) -> None:
        """Play path to the end. Raises on failure; stops the player if cancelled."""
        ...


def make_video_source(path: Path, options: StreamOptions) -> discord.AudioSource:
    """
    Create an FFmpeg source for one file.

    Sources are single-use, so a fresh one is built per playback.

    Note:
        Bot accounts can only send voice audio, so the video track is dropped
        (-vn) and the file's audio is transcoded to opus. Resolution, fps,
        bitrate and codec in StreamOptions are carried for transports that
        can send video; this one only honors the input-side flags.
    """
    before_options = []
    if options.hardware_acceleration:
        before_options.append("-hwaccel auto")
    if options.read_at_native_fps:
        before_options.append("-re")

    logger.debug(f"creating source for: {path.name}")
    return discord.FFmpegOpusAudio(
        str(path),
        before_options=" ".join(before_options) or None,
        options="-vn -loglevel error",
    )


class VoiceTransport:
    """
    MediaTransport backed by a discord.py VoiceClient.

    Attributes:
        voice_client: Connected voice client (owned by the session, not by us)
        options: Stream options the session was opened with
        self_deaf: Deafen flag re-sent with every video state update
    """

    def __init__(
        self,
        voice_client: discord.VoiceClient,
        options: StreamOptions,
        source_factory: Callable[[Path, StreamOptions], discord.AudioSource] = make_video_source,
        self_deaf: bool = True,
    ) -> None:
        self.voice_client = voice_client
        self.options = options
        self.source_factory = source_factory
        self.self_deaf = self_deaf

    def is_connected(self) -> bool:
        return self.voice_client.is_connected()

    async def set_speaking(self, speaking: bool) -> None:
        if not self.voice_client.is_connected():
            return
        state = SpeakingState.voice if speaking else SpeakingState.none
        await self.voice_client.ws.speak(state)

    async def set_video(self, active: bool) -> None:
        """Toggle the camera/stream indicator via a gateway voice state update."""
        if not self.voice_client.is_connected():
            return
        gateway = self.voice_client.client.ws
        await gateway.send_as_json({
            "op": gateway.VOICE_STATE,
            "d": {
                "guild_id": str(self.voice_client.guild.id),
                "channel_id": str(self.voice_client.channel.id),
                "self_mute": False,
                "self_deaf": self.self_deaf,
                "self_video": active,
            },
        })

    async def stream(self, path: Path) -> None:
        """
        Play one file and wait for it to end.

        The voice player runs in its own thread; its `after` callback is
        bounced back onto the event loop to resolve the wait.

        Raises:
            Exception: Whatever the player reported as the playback error
            asyncio.CancelledError: After stopping the player, if cancelled
        """
        loop = asyncio.get_running_loop()
        finished: asyncio.Future = loop.create_future()

        def _resolve(error: Exception | None) -> None:
            if finished.done():
                return  # Cancelled while the player was winding down
            if error is not None:
                finished.set_exception(error)
            else:
                finished.set_result(None)

        def _after(error: Exception | None) -> None:
            loop.call_soon_threadsafe(_resolve, error)

        source = self.source_factory(path, self.options)
        try:
            self.voice_client.play(source, after=_after)
        except BaseException:
            # The player never took ownership, so the FFmpeg process is ours to kill
            try:
                source.cleanup()
            except (OSError, RuntimeError, AttributeError) as e:
                logger.debug(f"source cleanup after failed play() failed: {e}")
            raise
        try:
            await finished
        except asyncio.CancelledError:
            self.voice_client.stop()
            raise
