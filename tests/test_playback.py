import asyncio

import pytest

from core.playback import PlaybackBusyError, PlaybackController, PlaybackOutcome
from fakes import FakeTransport, item


async def _until_streaming(transport: FakeTransport) -> None:
    while not transport.streamed:
        await asyncio.sleep(0)


def test_completed_playback_raises_then_lowers_presence():
    transport = FakeTransport()

    async def scenario():
        return await PlaybackController().play(item("a"), transport).wait()

    assert asyncio.run(scenario()) is PlaybackOutcome.COMPLETED
    assert transport.events == [
        ("speaking", True), ("video", True), ("speaking", False), ("video", False),
    ]
    assert len(transport.streamed) == 1


def test_cancel_mid_stream_resets_presence():
    transport = FakeTransport(block=True)

    async def scenario():
        controller = PlaybackController()
        handle = controller.play(item("a"), transport)
        await _until_streaming(transport)
        assert transport.speaking and transport.video
        assert controller.cancel() is True
        outcome = await handle.wait()
        return controller, outcome

    controller, outcome = asyncio.run(scenario())

    assert outcome is PlaybackOutcome.CANCELED
    assert controller.is_canceled
    assert controller.current is None
    assert not transport.speaking and not transport.video


def test_cancel_before_stream_starts_never_streams():
    transport = FakeTransport(block=True)

    async def scenario():
        handle = PlaybackController().play(item("a"), transport)
        handle.cancel()
        return await handle.wait()

    assert asyncio.run(scenario()) is PlaybackOutcome.CANCELED
    assert transport.streamed == []
    assert not transport.speaking and not transport.video


def test_cancel_after_completion_is_a_no_op():
    transport = FakeTransport()

    async def scenario():
        controller = PlaybackController()
        handle = controller.play(item("a"), transport)
        outcome = await handle.wait()
        return controller, handle, outcome

    controller, handle, outcome = asyncio.run(scenario())

    assert outcome is PlaybackOutcome.COMPLETED
    assert handle.cancel() is False
    assert controller.cancel() is False
    assert not controller.is_canceled
    assert handle.outcome is PlaybackOutcome.COMPLETED


def test_cancel_racing_completion_during_cleanup():
    class _RacingTransport(FakeTransport):
        handle = None

        async def set_speaking(self, speaking):
            if not speaking:
                # Stream already ended; the handle is still settling
                self.cancel_result = self.handle.cancel()
            await super().set_speaking(speaking)

    transport = _RacingTransport()

    async def scenario():
        controller = PlaybackController()
        transport.handle = controller.play(item("a"), transport)
        outcome = await transport.handle.wait()
        return controller, outcome

    controller, outcome = asyncio.run(scenario())

    assert transport.cancel_result is True
    assert outcome is PlaybackOutcome.COMPLETED
    assert controller.is_canceled
    assert not transport.speaking and not transport.video


def test_cancel_racing_completion_inside_stream():
    class _RacingTransport(FakeTransport):
        handle = None

        async def stream(self, path):
            self.streamed.append(path)
            # Cancel lands in the same step the stream returns
            self.handle.cancel()

    transport = _RacingTransport()

    async def scenario():
        controller = PlaybackController()
        transport.handle = controller.play(item("a"), transport)
        return controller, await transport.handle.wait()

    controller, outcome = asyncio.run(scenario())

    assert outcome in (PlaybackOutcome.COMPLETED, PlaybackOutcome.CANCELED)
    assert controller.is_canceled
    assert not transport.speaking and not transport.video


def test_stream_error_is_contained_and_presence_reset():
    a = item("a")
    transport = FakeTransport(fail={a.path})

    async def scenario():
        return await PlaybackController().play(a, transport).wait()

    assert asyncio.run(scenario()) is PlaybackOutcome.ERRORED
    assert not transport.speaking and not transport.video


def test_presence_reset_attempts_both_signals():
    class _FlakyTransport(FakeTransport):
        async def set_speaking(self, speaking):
            await super().set_speaking(speaking)
            if not speaking:
                raise ConnectionError("voice socket closed")

    transport = _FlakyTransport()

    async def scenario():
        return await PlaybackController().play(item("a"), transport).wait()

    assert asyncio.run(scenario()) is PlaybackOutcome.COMPLETED
    assert transport.events[-1] == ("video", False)


def test_second_play_while_busy_raises():
    transport = FakeTransport(block=True)

    async def scenario():
        controller = PlaybackController()
        handle = controller.play(item("a"), transport)
        with pytest.raises(PlaybackBusyError):
            controller.play(item("b"), transport)
        handle.cancel()
        await handle.wait()
        # Slot is free again once the first one ended
        return await controller.play(item("c"), FakeTransport()).wait()

    assert asyncio.run(scenario()) is PlaybackOutcome.COMPLETED


def test_cancelled_waiter_cleans_up_playback_first():
    transport = FakeTransport(block=True)

    async def scenario():
        handle = PlaybackController().play(item("a"), transport)
        waiter = asyncio.create_task(handle.wait())
        await _until_streaming(transport)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        return handle

    handle = asyncio.run(scenario())

    assert handle.done
    assert handle.outcome is PlaybackOutcome.CANCELED
    assert not transport.speaking and not transport.video


def test_reset_clears_finished_cancel_state():
    transport = FakeTransport(block=True)

    async def scenario():
        controller = PlaybackController()
        handle = controller.play(item("a"), transport)
        handle.cancel()
        await handle.wait()
        assert controller.is_canceled
        controller.reset()
        return controller

    assert asyncio.run(scenario()).is_canceled is False
