"""Per-provider input-token pacing over a sliding one-minute window."""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping, Sequence

from devtrack.ai.messages import Message
from devtrack.log import get_logger

logger = get_logger(__name__)

WINDOW_SECONDS = 60.0
MAX_WAIT_SECONDS = 30.0
# Fallback delay when the window is empty but one request alone exceeds the limit
EMPTY_WINDOW_WAIT_SECONDS = 10.0


def estimate_tokens(messages: Sequence[Message]) -> int:
    """Rough input size: four characters per token."""
    return sum(math.ceil(len(m.content or "") / 4) for m in messages)


class TokenRateTracker:
    """Delays a request when recent input tokens plus its estimate would pass the limit.

    Limits are input tokens per minute, keyed by provider. A provider without
    a positive limit is never delayed.
    """

    def __init__(
        self,
        limits: Mapping[str, int],
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._limits = dict(limits)
        self._clock = clock
        self._sleep = sleep
        self._windows: dict[str, deque[tuple[float, int]]] = {}

    def _prune(self, provider: str, now: float) -> deque[tuple[float, int]]:
        window = self._windows.setdefault(provider, deque())
        cutoff = now - WINDOW_SECONDS
        while window and window[0][0] < cutoff:
            window.popleft()
        return window

    def recent_tokens(self, provider: str) -> int:
        return sum(tokens for _, tokens in self._prune(provider, self._clock()))

    def record_usage(self, provider: str, input_tokens: int) -> None:
        now = self._clock()
        self._prune(provider, now).append((now, input_tokens))

    async def wait_if_needed(self, provider: str, estimated_tokens: int) -> float:
        """Sleep when the window is nearly full. Returns the seconds waited."""
        limit = self._limits.get(provider, 0)
        if limit <= 0:
            return 0.0

        now = self._clock()
        window = self._prune(provider, now)
        recent = sum(tokens for _, tokens in window)
        if recent + estimated_tokens <= limit:
            return 0.0

        if window:
            wait = window[0][0] + WINDOW_SECONDS - now + 1.0
        else:
            wait = EMPTY_WINDOW_WAIT_SECONDS
        wait = min(max(wait, 0.0), MAX_WAIT_SECONDS)
        logger.warning(
            "token_rate_limit_wait",
            provider=provider,
            recent_tokens=recent,
            estimated_tokens=estimated_tokens,
            limit=limit,
            wait_seconds=round(wait, 1),
        )
        await self._sleep(wait)
        return wait
