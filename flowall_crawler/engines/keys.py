from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from ..errors import FailureKind
from ..utils.logging import mask_key

logger = logging.getLogger(__name__)


@dataclass
class ApiKeyState:
    key: str
    position: int
    unavailable_until: Optional[float] = None

    @property
    def masked(self) -> str:
        return mask_key(self.key)


class KeyRotation:
    """
    Round-robin over enrichment credentials with a per-key circuit breaker.

    State is a fixed list indexed by position plus one shared cursor. Every
    next()/mark_failed() call is a single critical section.
    """

    def __init__(
        self,
        keys: Iterable[str],
        *,
        cooldown: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._states: List[ApiKeyState] = [
            ApiKeyState(key=k, position=i) for i, k in enumerate(dict.fromkeys(k for k in keys if k))
        ]
        self.cooldown = cooldown
        self._clock = clock
        self._cursor = 0
        self._exhausted = False
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._states)

    @property
    def states(self) -> List[ApiKeyState]:
        return list(self._states)

    def next(self) -> Optional[ApiKeyState]:
        """
        Next credential whose breaker has elapsed, or None when every key is
        tripped. The cursor advances on every lookup, skipped keys included.
        The all-tripped condition is logged once per occurrence.
        """
        with self._lock:
            now = self._clock()
            for _ in range(len(self._states)):
                state = self._states[self._cursor]
                self._cursor = (self._cursor + 1) % len(self._states)
                if state.unavailable_until is None:
                    self._exhausted = False
                    return state
                if now >= state.unavailable_until:
                    state.unavailable_until = None
                    self._exhausted = False
                    logger.info("Key %s back in rotation", state.masked)
                    return state
            newly_exhausted = bool(self._states) and not self._exhausted
            self._exhausted = bool(self._states)
        if newly_exhausted:
            logger.warning("All %s enrichment keys are tripped", len(self._states))
        return None

    def mark_failed(self, state: ApiKeyState, kind: FailureKind) -> bool:
        """Trip the breaker for quota/credential failures. Returns True if tripped."""
        if not kind.trips_breaker:
            return False
        with self._lock:
            state.unavailable_until = self._clock() + self.cooldown
        logger.warning("Key %s tripped (%s) for %.0fs", state.masked, kind.value, self.cooldown)
        return True

    def available_count(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(
                1 for s in self._states if s.unavailable_until is None or now >= s.unavailable_until
            )
