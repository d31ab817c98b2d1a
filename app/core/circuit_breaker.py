"""Time-boxed gate that suppresses new AI enrichment runs after sustained overload."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.core.logging import get_logger

log = get_logger("circuit_breaker")


class CircuitBreaker:
    """Trips after ``threshold`` consecutive overload signals.

    Only consulted when an enrichment run is about to start; a run already in
    flight is never interrupted. The gate reopens on its own once ``until``
    has passed.
    """

    def __init__(self, threshold: int = 3, cooldown_seconds: float = 600.0):
        self.threshold = max(1, threshold)
        self.cooldown_seconds = cooldown_seconds
        self.blocked = False
        self.until: float = 0.0
        self._consecutive_overloads = 0

    def should_block(self, overloaded: bool, now: float) -> Optional[float]:
        """Feed one failure signal; returns the block deadline if the breaker trips."""
        if not overloaded:
            return None

        self._consecutive_overloads += 1
        if self._consecutive_overloads < self.threshold:
            return None

        until = now + self.cooldown_seconds
        self.trip(until)
        return until

    def record_success(self) -> None:
        self._consecutive_overloads = 0

    def trip(self, until: float) -> None:
        self.blocked = True
        self.until = until
        self._consecutive_overloads = 0
        log.warning(
            f"AI circuit breaker open until {datetime.fromtimestamp(until, tz=timezone.utc).isoformat()}"
        )

    def is_blocked(self, now: float) -> bool:
        return self.blocked and now < self.until

    def clear(self, now: float) -> bool:
        """Reset the gate. Returns True if it was open or counting overloads."""
        had_state = self.is_blocked(now) or self._consecutive_overloads > 0
        self.blocked = False
        self.until = 0.0
        self._consecutive_overloads = 0
        return had_state

    def snapshot(self, now: float) -> Dict[str, Any]:
        active = self.is_blocked(now)
        return {
            "circuitBreakerActive": active,
            "circuitBreakerUntil": (
                datetime.fromtimestamp(self.until, tz=timezone.utc).isoformat() if active else None
            ),
        }
