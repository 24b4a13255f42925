import pytest
from pytest_asyncio import is_async_test


def pytest_collection_modifyitems(items: list[pytest.Item]):
    for test in items:
        if is_async_test(test):
            # Mark async tests with session scope
            test.add_marker(pytest.mark.asyncio(loop_scope="session"), append=False)


# Mute logfire and the Telegram log handler
from herald.logging_setup import mute_logging_for_tests

mute_logging_for_tests()

# Mute mp for tests
from herald.common.mp import mute_mp_for_tests

mute_mp_for_tests()

from typing import Optional

from herald.announce import FanOut, PipelineCoordinator
from herald.common.settings import Settings
from herald.common.style_store import StyleStore

OPERATOR_ID = 111
STRANGER_ID = 999

SOURCE_TEXT = "We just shipped v2 of the bridge with 40% lower fees"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    """Records every post; destinations listed in `failing` raise."""

    def __init__(self, failing: tuple = ()):
        self.failing = set(failing)
        self.sent: list[tuple] = []
        self.deleted: list[tuple] = []
        self._next_id = 100

    async def send(self, destination, text) -> int:
        if destination in self.failing:
            raise RuntimeError(f"channel {destination} unavailable")
        self._next_id += 1
        self.sent.append((destination, text, self._next_id))
        return self._next_id

    async def delete(self, destination, message_id) -> None:
        self.deleted.append((destination, message_id))


class FakeGenerator:
    def __init__(self, reply: str = "Bridge v2 is live: 40% lower fees."):
        self.reply = reply
        self.prompts: list[tuple[str, str]] = []
        self.error: Optional[Exception] = None

    async def __call__(self, prompt: str, style: str) -> str:
        self.prompts.append((prompt, style))
        if self.error is not None:
            raise self.error
        return self.reply


class FakeNotifier:
    def __init__(self):
        self.entries = []

    async def __call__(self, entry) -> None:
        self.entries.append(entry)


def make_settings(**overrides) -> Settings:
    values = dict(
        webhook_auth_token="secret",
        admin_ids=frozenset({OPERATOR_ID}),
        announce_chat_ids=(-1001, -1002),
        review_chat_id=OPERATOR_ID,
        autopost_topics=("Weekly recap", "Security reminder"),
    )
    values.update(overrides)
    return Settings(**values)


def make_coordinator(
    settings: Optional[Settings] = None,
    *,
    gateway=None,
    generator=None,
    notifier=None,
    clock=None,
) -> PipelineCoordinator:
    settings = settings or make_settings()
    gateway = gateway if gateway is not None else FakeGateway()
    return PipelineCoordinator(
        settings,
        generator=generator or FakeGenerator(),
        fanout=FanOut(settings.announce_chat_ids, gateway),
        style=StyleStore(settings.default_style),
        notifier=notifier,
        clock=clock or FakeClock(),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def coordinator(gateway, generator, notifier, clock):
    return make_coordinator(
        gateway=gateway, generator=generator, notifier=notifier, clock=clock
    )
