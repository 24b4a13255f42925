from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from aiohttp import test_utils

from conftest import (
    SOURCE_TEXT,
    FakeGateway,
    FakeGenerator,
    make_coordinator,
    make_settings,
)
from herald.server import create_app, extract_bearer_token

AUTH = {"Authorization": "Bearer secret"}


async def make_client(coordinator) -> test_utils.TestClient:
    app = create_app(coordinator, start_background=False)
    client = test_utils.TestClient(test_utils.TestServer(app))
    await client.start_server()
    return client


@pytest_asyncio.fixture
async def client(coordinator):
    client = await make_client(coordinator)
    yield client
    await client.close()


def test_extract_bearer_token():
    assert extract_bearer_token("Bearer abc") == "abc"
    assert extract_bearer_token("abc") == "abc"
    assert extract_bearer_token("") == ""


class TestWebhook:
    @pytest.mark.asyncio
    async def test_pending_review(self, client, coordinator):
        resp = await client.post("/webhook", json={"text": SOURCE_TEXT}, headers=AUTH)

        assert resp.status == 200
        body = await resp.json()
        assert body["status"] == "pending_review"
        assert body["approval_id"] in coordinator.ledger
        assert body["preview"]

    @pytest.mark.asyncio
    async def test_bare_token_accepted(self, client):
        resp = await client.post(
            "/webhook", json={"text": SOURCE_TEXT}, headers={"Authorization": "secret"}
        )
        assert resp.status == 200

    @pytest.mark.asyncio
    async def test_wrong_secret(self, client, coordinator):
        resp = await client.post(
            "/webhook", json={"text": SOURCE_TEXT}, headers={"Authorization": "Bearer nope"}
        )

        assert resp.status == 401
        assert (await resp.json())["error"] == "unauthorized"
        assert coordinator.admission.throttle.last_accepted_at is None

    @pytest.mark.asyncio
    async def test_missing_secret_configuration(self):
        client = await make_client(make_coordinator(make_settings(webhook_auth_token="")))
        try:
            resp = await client.post("/webhook", json={"text": SOURCE_TEXT}, headers=AUTH)
        finally:
            await client.close()

        assert resp.status == 503

    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        resp = await client.post("/webhook", data="not json", headers=AUTH)

        assert resp.status == 400
        assert (await resp.json())["error"] == "invalid_payload"

    @pytest.mark.asyncio
    async def test_short_text(self, client):
        resp = await client.post("/webhook", json={"text": "hi"}, headers=AUTH)

        assert resp.status == 400
        assert (await resp.json())["error"] == "invalid_payload"

    @pytest.mark.asyncio
    async def test_posted_then_duplicate(self):
        gateway = FakeGateway()
        client = await make_client(
            make_coordinator(
                make_settings(review_required=False, min_text_length=10), gateway=gateway
            )
        )
        payload = {"text": "Protocol X launched", "url": "https://x.com/a/1"}
        try:
            first = await client.post("/webhook", json=payload, headers=AUTH)
            second = await client.post("/webhook", json=payload, headers=AUTH)
            first_body, second_body = await first.json(), await second.json()
        finally:
            await client.close()

        assert first.status == 200
        assert first_body["status"] == "posted"
        assert first_body["channels_posted"] == 2
        assert second.status == 429
        assert second_body["error"] == "duplicate"
        assert len(gateway.sent) == 2

    @pytest.mark.asyncio
    async def test_throttled_has_retry_after(self, client):
        await client.post("/webhook", json={"text": SOURCE_TEXT}, headers=AUTH)
        resp = await client.post(
            "/webhook", json={"text": "Another unrelated post about staking"}, headers=AUTH
        )

        assert resp.status == 429
        body = await resp.json()
        assert body["error"] == "throttled"
        assert body["retry_after"] == 30.0

    @pytest.mark.asyncio
    async def test_meta_response_is_422(self):
        client = await make_client(
            make_coordinator(generator=FakeGenerator("Please provide the post text"))
        )
        try:
            resp = await client.post("/webhook", json={"text": SOURCE_TEXT}, headers=AUTH)
            body = await resp.json()
        finally:
            await client.close()

        assert resp.status == 422
        assert body == {
            "error": "meta_response_detected",
            "message": "AI did not produce a valid announcement from the input",
        }

    @pytest.mark.asyncio
    async def test_generation_failure_is_500(self):
        generator = FakeGenerator()
        generator.error = RuntimeError("upstream down")
        client = await make_client(make_coordinator(generator=generator))
        try:
            resp = await client.post("/webhook", json={"text": SOURCE_TEXT}, headers=AUTH)
            body = await resp.json()
        finally:
            await client.close()

        assert resp.status == 500
        assert body["error"] == "generation_failed"

    @pytest.mark.asyncio
    async def test_shadow_mode(self):
        client = await make_client(make_coordinator(make_settings(shadow_mode=True)))
        try:
            resp = await client.post("/webhook", json={"text": SOURCE_TEXT}, headers=AUTH)
            body = await resp.json()
        finally:
            await client.close()

        assert body == {"status": "stored"}


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client, monkeypatch):
        monkeypatch.delenv("AI_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        resp = await client.get("/health")

        assert resp.status == 200
        body = await resp.json()
        assert body["status"] == "ok"
        assert body["ai_key_set"] is False
        assert body["webhook_configured"] is True
        assert body["redis"] == "disabled"
        assert body["pipeline"]["review_required"] is True
        assert body["pipeline"]["destinations"] == 2


class TestTelegramUpdates:
    @pytest.mark.asyncio
    async def test_invalid_update(self, client):
        resp = await client.post("/telegram", json={"foo": "bar"})
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_non_json_update(self, client):
        resp = await client.post("/telegram", data="not json")

        assert resp.status == 400
        assert (await resp.json())["error"] == "Invalid JSON body"

    @pytest.mark.asyncio
    async def test_update_is_fed_to_dispatcher(self, client, coordinator):
        update = {"update_id": 1, "message": {"message_id": 1}}
        with (
            patch("herald.server.get_bot") as get_bot,
            patch(
                "herald.server.dp.feed_raw_update",
                new=AsyncMock(return_value="command_ping_sent"),
            ) as feed,
        ):
            resp = await client.post("/telegram", json=update)

        assert resp.status == 200
        feed.assert_awaited_once_with(get_bot.return_value, update, coordinator=coordinator)

    @pytest.mark.asyncio
    async def test_dispatcher_errors_are_acknowledged(self, client):
        with (
            patch("herald.server.get_bot"),
            patch(
                "herald.server.dp.feed_raw_update",
                new=AsyncMock(side_effect=RuntimeError("boom")),
            ),
        ):
            resp = await client.post("/telegram", json={"update_id": 2})

        assert resp.status == 200


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_startup_loads_style_and_shutdown_closes(self, coordinator):
        coordinator.style.load = AsyncMock(return_value="Saved tone")
        coordinator.style.close = AsyncMock()
        with patch("herald.server.close_bot", new=AsyncMock()) as close_bot:
            client = await make_client(coordinator)
            await client.close()

        coordinator.style.load.assert_awaited_once()
        coordinator.style.close.assert_awaited_once()
        close_bot.assert_awaited_once()
