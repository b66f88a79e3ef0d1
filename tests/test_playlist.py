import asyncio
import random

from core.playback import PlaybackController
from core.playlist import PassResult, ShufflePlaylistRunner, shuffle
from fakes import FakeTransport, ScriptedChecker, catalog


def _run(runner, transport, **kwargs):
    return asyncio.run(runner.run(transport, 100, 200, **kwargs))


def test_shuffle_is_a_permutation():
    items = list(range(20))

    shuffled = shuffle(items, random.Random(7))

    assert sorted(shuffled) == items
    assert items == list(range(20))


def test_shuffle_is_reproducible_with_a_seed():
    assert shuffle("abcdef", random.Random(3)) == shuffle("abcdef", random.Random(3))


def test_shuffle_handles_tiny_inputs():
    assert shuffle([]) == []
    assert shuffle(["only"]) == ["only"]


def test_pass_plays_every_item_once():
    videos = catalog(5)
    transport = FakeTransport()
    runner = ShufflePlaylistRunner(videos, ScriptedChecker([False]), PlaybackController(), random.Random(1))

    result = _run(runner, transport)

    assert result is PassResult.COMPLETED
    assert len(transport.streamed) == 5
    assert set(transport.streamed) == {v.path for v in videos}
    assert runner.played == 5


def test_empty_catalog_plays_nothing():
    checker = ScriptedChecker([False])
    transport = FakeTransport()
    runner = ShufflePlaylistRunner(frozenset(), checker, PlaybackController())

    assert _run(runner, transport) is PassResult.NO_MEDIA
    assert transport.streamed == []
    assert checker.calls == 0


def test_empty_before_first_item_streams_nothing():
    transport = FakeTransport()
    runner = ShufflePlaylistRunner(catalog(3), ScriptedChecker([True]), PlaybackController())

    result = _run(runner, transport)

    assert result is PassResult.CHANNEL_EMPTY
    assert result.ends_session
    assert transport.streamed == []


def test_pass_stops_at_the_boundary_where_channel_empties():
    # before 1, after 1, before 2, after 2 -> empty
    checker = ScriptedChecker([False, False, False, True])
    transport = FakeTransport()
    runner = ShufflePlaylistRunner(catalog(5), checker, PlaybackController())

    assert _run(runner, transport) is PassResult.CHANNEL_EMPTY
    assert len(transport.streamed) == 2
    assert checker.calls == 4


def test_failed_item_is_skipped():
    videos = catalog(3)
    bad = next(iter(videos))
    transport = FakeTransport(fail={bad.path})
    runner = ShufflePlaylistRunner(videos, ScriptedChecker([False]), PlaybackController())

    assert _run(runner, transport) is PassResult.COMPLETED
    assert len(transport.streamed) == 3
    assert runner.played == 2


def test_dropped_connection_ends_the_session():
    class _DroppingTransport(FakeTransport):
        async def stream(self, path):
            self.streamed.append(path)
            self.connected = False
            raise RuntimeError("Not connected to voice.")

    transport = _DroppingTransport()
    runner = ShufflePlaylistRunner(catalog(5), ScriptedChecker([False]), PlaybackController())

    result = _run(runner, transport)

    assert result is PassResult.DISCONNECTED
    assert result.ends_session
    assert len(transport.streamed) == 1
    assert runner.played == 0


def test_cancel_ends_the_pass_and_resets_presence():
    transport = FakeTransport(block=True)
    controller = PlaybackController()
    runner = ShufflePlaylistRunner(catalog(3), ScriptedChecker([False]), controller)

    async def scenario():
        task = asyncio.create_task(runner.run(transport, 100, 200))
        while not transport.streamed:
            await asyncio.sleep(0)
        controller.cancel()
        return await task

    assert asyncio.run(scenario()) is PassResult.CANCELED
    assert len(transport.streamed) == 1
    assert not transport.speaking and not transport.video


def test_external_cancel_predicate():
    transport = FakeTransport()
    runner = ShufflePlaylistRunner(catalog(4), ScriptedChecker([False]), PlaybackController())

    result = _run(runner, transport, is_canceled=lambda: True)

    assert result is PassResult.CANCELED
    assert len(transport.streamed) == 1
