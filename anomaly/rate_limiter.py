"""
Per-subject attempt throttling for check-in and check-out.
"""
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional

from utils.config import GuardConfig, config
from utils.logger import logger

REASON_TOO_MANY_ATTEMPTS = "too many attempts"
REASON_TOO_SOON = "too soon"


def system_clock_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimiterState:
    """Counter/timestamp pair for one subject. No blocked state is stored."""
    attempt_count: int = 0
    last_attempt_at_ms: Optional[int] = None


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    reason: Optional[str] = None
    retry_after_ms: int = 0
    attempt_count: int = 0

    def to_dict(self) -> Dict:
        return {
            'allowed': self.allowed,
            'reason': self.reason,
            'retry_after_ms': self.retry_after_ms,
            'attempt_count': self.attempt_count
        }


def evaluate_attempt(state: RateLimiterState, now_ms: int, settings: GuardConfig) -> RateLimitDecision:
    """
    Apply one attempt to a state. Blocking is recomputed from the pair each call.

    The counter resets once more than rate_window_ms has passed since the last
    accepted attempt; only accepted attempts move the timestamp.
    """
    if state.last_attempt_at_ms is None:
        elapsed = float('inf')
    else:
        elapsed = now_ms - state.last_attempt_at_ms

    if elapsed > settings.rate_window_ms:
        state.attempt_count = 0

    if state.attempt_count >= settings.max_attempts:
        return RateLimitDecision(
            allowed=False,
            reason=REASON_TOO_MANY_ATTEMPTS,
            retry_after_ms=int(settings.rate_window_ms - elapsed + 1),
            attempt_count=state.attempt_count
        )

    if elapsed < settings.min_interval_ms:
        return RateLimitDecision(
            allowed=False,
            reason=REASON_TOO_SOON,
            retry_after_ms=int(settings.min_interval_ms - elapsed),
            attempt_count=state.attempt_count
        )

    state.last_attempt_at_ms = now_ms
    state.attempt_count += 1
    return RateLimitDecision(allowed=True, attempt_count=state.attempt_count)


class RateLimiter:
    """Keyed store of RateLimiterState, one entry per subject."""

    def __init__(self, settings: GuardConfig = None, clock: Callable[[], int] = None):
        self.settings = settings or config.guard
        self.clock = clock or system_clock_ms
        self._states: Dict[str, RateLimiterState] = {}
        self._lock = threading.Lock()

    def check(self, subject_id: str, now_ms: Optional[int] = None) -> RateLimitDecision:
        now_ms = self.clock() if now_ms is None else now_ms
        with self._lock:
            state = self._states.setdefault(subject_id, RateLimiterState())
            decision = evaluate_attempt(state, now_ms, self.settings)

        if not decision.allowed:
            logger.info(f"Rate limited {subject_id}: {decision.reason} "
                        f"(retry after {decision.retry_after_ms} ms)")
        return decision

    def get_state(self, subject_id: str) -> RateLimiterState:
        with self._lock:
            return replace(self._states.get(subject_id, RateLimiterState()))

    def reset(self, subject_id: str):
        with self._lock:
            self._states.pop(subject_id, None)

    def __len__(self):
        return len(self._states)
