import asyncio

import pytest

from conftest import OPERATOR_ID, STRANGER_ID, FakeClock, FakeGateway, FakeNotifier
from herald.announce import (
    ApprovalLedger,
    FanOut,
    NotFound,
    Origin,
    ResolveAction,
    Unauthorized,
)


def make_ledger(gateway=None, notifier=None, ttl=0.0, clock=None) -> ApprovalLedger:
    return ApprovalLedger(
        {OPERATOR_ID},
        FanOut((-1001, -1002), gateway or FakeGateway()),
        notifier=notifier,
        ttl=ttl,
        clock=clock or FakeClock(),
    )


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_notifies_and_stores(self):
        notifier = FakeNotifier()
        ledger = make_ledger(notifier=notifier)

        entry = await ledger.create("source", "generated", "https://x.com/1")

        assert entry.id in ledger
        assert len(ledger) == 1
        assert notifier.entries == [entry]
        assert entry.origin is Origin.WEBHOOK
        assert entry.id.startswith("w-")

    @pytest.mark.asyncio
    async def test_ids_are_unique_with_origin_prefix(self):
        ledger = make_ledger()
        first = await ledger.create("a", "A", origin=Origin.SCHEDULER)
        second = await ledger.create("b", "B", origin=Origin.OPERATOR)

        assert first.id != second.id
        assert first.id.startswith("s-")
        assert second.id.startswith("a-")

    @pytest.mark.asyncio
    async def test_notifier_failure_keeps_entry(self):
        async def broken(entry):
            raise RuntimeError("telegram down")

        ledger = make_ledger(notifier=broken)
        entry = await ledger.create("source", "generated")

        assert entry.id in ledger

    @pytest.mark.asyncio
    async def test_pending_sorted_by_creation(self):
        clock = FakeClock()
        ledger = make_ledger(clock=clock)
        first = await ledger.create("a", "A")
        clock.advance(1)
        second = await ledger.create("b", "B")

        assert [entry.id for entry in ledger.pending()] == [first.id, second.id]


class TestResolve:
    @pytest.mark.asyncio
    async def test_publish(self):
        gateway = FakeGateway()
        ledger = make_ledger(gateway=gateway)
        entry = await ledger.create("source", "generated", "https://x.com/1")

        resolution = await ledger.resolve(entry.id, ResolveAction.PUBLISH, OPERATOR_ID)

        assert resolution.ok
        assert resolution.channels_posted == 2
        assert resolution.approval == entry
        assert entry.id not in ledger
        assert [text for _, text, _ in gateway.sent] == ["generated\n\nhttps://x.com/1"] * 2

    @pytest.mark.asyncio
    async def test_discard_posts_nothing(self):
        gateway = FakeGateway()
        ledger = make_ledger(gateway=gateway)
        entry = await ledger.create("source", "generated")

        resolution = await ledger.resolve(entry.id, ResolveAction.DISCARD, OPERATOR_ID)

        assert resolution.channels_posted is None
        assert gateway.sent == []
        assert len(ledger) == 0

    @pytest.mark.asyncio
    async def test_second_resolve_is_not_found(self):
        ledger = make_ledger()
        entry = await ledger.create("source", "generated")
        await ledger.resolve(entry.id, ResolveAction.DISCARD, OPERATOR_ID)

        with pytest.raises(NotFound):
            await ledger.resolve(entry.id, ResolveAction.PUBLISH, OPERATOR_ID)

    @pytest.mark.asyncio
    async def test_unknown_id(self):
        with pytest.raises(NotFound) as exc_info:
            await make_ledger().resolve("w-1-1", ResolveAction.PUBLISH, OPERATOR_ID)
        assert exc_info.value.http_status == 404

    @pytest.mark.asyncio
    async def test_non_operator_is_rejected_and_entry_kept(self):
        gateway = FakeGateway()
        ledger = make_ledger(gateway=gateway)
        entry = await ledger.create("source", "generated")

        for actor in (STRANGER_ID, None):
            with pytest.raises(Unauthorized):
                await ledger.resolve(entry.id, ResolveAction.PUBLISH, actor)

        assert entry.id in ledger
        assert gateway.sent == []

    @pytest.mark.asyncio
    async def test_concurrent_publish_posts_once(self):
        gateway = FakeGateway()
        ledger = make_ledger(gateway=gateway)
        entry = await ledger.create("source", "generated")

        results = await asyncio.gather(
            ledger.resolve(entry.id, ResolveAction.PUBLISH, OPERATOR_ID),
            ledger.resolve(entry.id, ResolveAction.PUBLISH, OPERATOR_ID),
            return_exceptions=True,
        )

        assert sum(isinstance(result, NotFound) for result in results) == 1
        assert len(gateway.sent) == 2

    @pytest.mark.asyncio
    async def test_dispatch_error_is_reported_not_requeued(self):
        ledger = make_ledger()

        async def exploding(text, source_url=None):
            raise RuntimeError("boom")

        ledger.fanout.publish = exploding
        entry = await ledger.create("source", "generated")

        resolution = await ledger.resolve(entry.id, ResolveAction.PUBLISH, OPERATOR_ID)

        assert not resolution.ok
        assert resolution.error == "boom"
        assert entry.id not in ledger


class TestExpiry:
    @pytest.mark.asyncio
    async def test_zero_ttl_never_expires(self):
        clock = FakeClock()
        ledger = make_ledger(clock=clock)
        entry = await ledger.create("source", "generated")
        clock.advance(10 * 24 * 3600)

        assert entry.id in ledger

    @pytest.mark.asyncio
    async def test_expired_entry_is_not_found(self):
        clock = FakeClock()
        ledger = make_ledger(ttl=60, clock=clock)
        entry = await ledger.create("source", "generated")
        clock.advance(60)

        with pytest.raises(NotFound):
            await ledger.resolve(entry.id, ResolveAction.PUBLISH, OPERATOR_ID)
        assert len(ledger) == 0


class TestResolveCancellation:
    @pytest.mark.asyncio
    async def test_timed_out_resolve_still_reaches_every_channel(self):
        class SlowGateway(FakeGateway):
            async def send(self, destination, text):
                await asyncio.sleep(0.05)
                return await super().send(destination, text)

        gateway = SlowGateway()
        ledger = ApprovalLedger(
            {OPERATOR_ID}, FanOut((-1, -2, -3), gateway), clock=FakeClock()
        )
        entry = await ledger.create("source", "generated")

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                ledger.resolve(entry.id, ResolveAction.PUBLISH, OPERATOR_ID), timeout=0.07
            )
        await ledger.fanout.drain()

        assert [dest for dest, _, _ in gateway.sent] == [-1, -2, -3]
        assert entry.id not in ledger
