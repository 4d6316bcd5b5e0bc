from __future__ import annotations

import pytest

from devtrack.ai.messages import UserMessage
from devtrack.ai.rate_limit import MAX_WAIT_SECONDS, TokenRateTracker, estimate_tokens


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


def _tracker(clock: FakeClock, limit: int = 1000) -> TokenRateTracker:
    return TokenRateTracker({"anthropic": limit}, clock=clock, sleep=clock.sleep)


def test_estimate_tokens_rounds_up_per_message():
    assert estimate_tokens([UserMessage(content="abcde"), UserMessage(content="")]) == 2


@pytest.mark.asyncio
async def test_under_limit_does_not_wait(clock):
    tracker = _tracker(clock)
    tracker.record_usage("anthropic", 400)
    assert await tracker.wait_if_needed("anthropic", 500) == 0.0
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_waits_until_oldest_entry_leaves_window(clock):
    tracker = _tracker(clock)
    tracker.record_usage("anthropic", 600)
    clock.now += 45
    tracker.record_usage("anthropic", 300)

    waited = await tracker.wait_if_needed("anthropic", 200)

    assert waited == pytest.approx(16.0)
    assert clock.sleeps == [pytest.approx(16.0)]
    assert tracker.recent_tokens("anthropic") == 300


@pytest.mark.asyncio
async def test_wait_is_capped(clock):
    tracker = _tracker(clock)
    tracker.record_usage("anthropic", 1000)
    assert await tracker.wait_if_needed("anthropic", 1) == MAX_WAIT_SECONDS


@pytest.mark.asyncio
async def test_entries_older_than_a_minute_expire(clock):
    tracker = _tracker(clock)
    tracker.record_usage("anthropic", 900)
    clock.now += 61
    assert tracker.recent_tokens("anthropic") == 0
    assert await tracker.wait_if_needed("anthropic", 900) == 0.0


@pytest.mark.asyncio
async def test_provider_without_limit_never_waits(clock):
    tracker = _tracker(clock)
    tracker.record_usage("openai", 10_000_000)
    assert await tracker.wait_if_needed("openai", 10_000_000) == 0.0
    assert clock.sleeps == []
