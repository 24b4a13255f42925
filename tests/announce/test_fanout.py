import asyncio

import pytest

from conftest import FakeGateway
from herald.announce import FanOut


class TestCompose:
    def test_appends_source_url(self):
        assert FanOut.compose("Hello", "https://x.com/1") == "Hello\n\nhttps://x.com/1"

    def test_url_already_present(self):
        text = "Hello\nThread: https://x.com/1"
        assert FanOut.compose(text, "https://x.com/1") == text

    def test_no_url(self):
        assert FanOut.compose("Hello") == "Hello"


class TestPublish:
    @pytest.mark.asyncio
    async def test_posts_to_every_destination(self):
        gateway = FakeGateway()
        fanout = FanOut((-1001, "@news"), gateway)

        posted = await fanout.publish("Hello", "https://x.com/1")

        assert posted == 2
        assert [dest for dest, _, _ in gateway.sent] == [-1001, "@news"]
        assert all(text == "Hello\n\nhttps://x.com/1" for _, text, _ in gateway.sent)

    @pytest.mark.asyncio
    async def test_partial_failure_is_counted(self):
        gateway = FakeGateway(failing=(-1002,))
        fanout = FanOut((-1001, -1002, -1003), gateway)

        assert await fanout.publish("Hello") == 2
        assert [dest for dest, _, _ in gateway.sent] == [-1001, -1003]

    @pytest.mark.asyncio
    async def test_all_failing(self):
        fanout = FanOut((-1001,), FakeGateway(failing=(-1001,)))
        assert await fanout.publish("Hello") == 0

    @pytest.mark.asyncio
    async def test_no_gateway(self):
        assert await FanOut((-1001,), None).publish("Hello") == 0

    @pytest.mark.asyncio
    async def test_no_destinations(self):
        gateway = FakeGateway()
        assert await FanOut((), gateway).publish("Hello") == 0
        assert gateway.sent == []


class TestRetract:
    @pytest.mark.asyncio
    async def test_deletes_most_recent_first(self):
        gateway = FakeGateway()
        fanout = FanOut((-1001,), gateway)
        await fanout.publish("one")
        await fanout.publish("two")
        await fanout.publish("three")

        assert await fanout.retract(2) == 2
        assert gateway.deleted == [(-1001, 103), (-1001, 102)]

        assert await fanout.retract(5) == 1
        assert gateway.deleted[-1] == (-1001, 101)
        assert await fanout.retract(1) == 0

    @pytest.mark.asyncio
    async def test_failed_destination_has_nothing_to_delete(self):
        gateway = FakeGateway(failing=(-1002,))
        fanout = FanOut((-1001, -1002), gateway)
        await fanout.publish("one")

        assert await fanout.retract(1) == 1
        assert gateway.deleted == [(-1001, 101)]


class SlowGateway(FakeGateway):
    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def send(self, destination, text) -> int:
        await asyncio.sleep(self.delay)
        return await super().send(destination, text)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_stop_delivery(self):
        gateway = SlowGateway(0.05)
        fanout = FanOut((-1, -2, -3), gateway)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(fanout.publish("Hello"), timeout=0.07)
        await fanout.drain()

        assert [dest for dest, _, _ in gateway.sent] == [-1, -2, -3]

    @pytest.mark.asyncio
    async def test_drain_without_deliveries(self):
        await FanOut((-1,), FakeGateway()).drain()
