import asyncio
import threading
from pathlib import Path
from types import SimpleNamespace

import discord
import pytest
from discord.enums import SpeakingState

from core.transport import VoiceTransport, make_video_source
from utils.config import StreamOptions


class _VoiceClient:
    """Voice client whose player thread finishes immediately with `error`."""

    def __init__(self, error=None, finish=True, connected=True) -> None:
        self.error = error
        self.finish = finish
        self.connected = connected
        self.played = []
        self.stopped = False
        self.spoken = []
        self.sent = []
        self.ws = SimpleNamespace(speak=self._speak)
        self.client = SimpleNamespace(ws=SimpleNamespace(VOICE_STATE=4, send_as_json=self._send))
        self.guild = SimpleNamespace(id=100)
        self.channel = SimpleNamespace(id=200)

    def is_connected(self):
        return self.connected

    async def _speak(self, state):
        self.spoken.append(state)

    async def _send(self, payload):
        self.sent.append(payload)

    def play(self, source, after):
        self.played.append(source)
        if self.finish:
            threading.Thread(target=after, args=(self.error,)).start()

    def stop(self):
        self.stopped = True


def _transport(voice_client):
    return VoiceTransport(voice_client, StreamOptions(), source_factory=lambda path, options: f"source:{path.name}")


def test_stream_waits_for_player_to_finish():
    voice_client = _VoiceClient()

    asyncio.run(_transport(voice_client).stream(Path("/v/a.mp4")))

    assert voice_client.played == ["source:a.mp4"]


def test_stream_raises_player_error():
    voice_client = _VoiceClient(error=RuntimeError("ffmpeg died"))

    with pytest.raises(RuntimeError, match="ffmpeg died"):
        asyncio.run(_transport(voice_client).stream(Path("/v/a.mp4")))


def test_source_is_cleaned_up_when_play_fails():
    class _Source:
        cleanups = 0

        def cleanup(self):
            self.cleanups += 1

    class _DroppedVoiceClient(_VoiceClient):
        def play(self, source, after):
            raise discord.ClientException("Not connected to voice.")

    source = _Source()
    transport = VoiceTransport(_DroppedVoiceClient(), StreamOptions(), source_factory=lambda path, options: source)

    with pytest.raises(discord.ClientException):
        asyncio.run(transport.stream(Path("/v/a.mp4")))

    assert source.cleanups == 1


def test_is_connected_follows_voice_client():
    voice_client = _VoiceClient()
    transport = _transport(voice_client)

    assert transport.is_connected()
    voice_client.connected = False
    assert not transport.is_connected()


def test_cancelled_stream_stops_player():
    voice_client = _VoiceClient(finish=False)

    async def scenario():
        task = asyncio.create_task(_transport(voice_client).stream(Path("/v/a.mp4")))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert voice_client.stopped


def test_presence_signals():
    voice_client = _VoiceClient()
    transport = _transport(voice_client)

    async def scenario():
        await transport.set_speaking(True)
        await transport.set_video(True)
        await transport.set_speaking(False)

    asyncio.run(scenario())

    assert voice_client.spoken == [SpeakingState.voice, SpeakingState.none]
    assert voice_client.sent == [{
        "op": 4,
        "d": {
            "guild_id": "100",
            "channel_id": "200",
            "self_mute": False,
            "self_deaf": True,
            "self_video": True,
        },
    }]


def test_presence_is_skipped_when_disconnected():
    voice_client = _VoiceClient(connected=False)
    transport = _transport(voice_client)

    async def scenario():
        await transport.set_speaking(False)
        await transport.set_video(False)

    asyncio.run(scenario())

    assert voice_client.spoken == [] and voice_client.sent == []


def test_make_video_source_options(monkeypatch):
    calls = []
    monkeypatch.setattr(discord, "FFmpegOpusAudio", lambda source, **kwargs: calls.append((source, kwargs)))

    make_video_source(Path("/v/a.mp4"), StreamOptions())
    make_video_source(Path("/v/b.mp4"), StreamOptions(hardware_acceleration=True, read_at_native_fps=True))

    assert calls[0] == ("/v/a.mp4", {"before_options": None, "options": "-vn -loglevel error"})
    assert calls[1][1]["before_options"] == "-hwaccel auto -re"
