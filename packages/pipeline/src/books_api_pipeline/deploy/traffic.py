from __future__ import annotations

import random
import threading
from dataclasses import dataclass
from enum import StrEnum

from books_api_pipeline.core import ConfigurationError

from .models import Verdict


class TrafficShiftType(StrEnum):
    ALL_AT_ONCE = "AllAtOnce"
    CANARY = "Canary"
    LINEAR = "Linear"


class TrafficDecision(StrEnum):
    SHIFT = "shift"
    ROLLBACK = "rollback"


def decide(verdict: Verdict) -> TrafficDecision:
    """Only a Succeeded verdict lets traffic reach the candidate."""
    return TrafficDecision.SHIFT if verdict == Verdict.SUCCEEDED else TrafficDecision.ROLLBACK


@dataclass(frozen=True, slots=True)
class TrafficShiftPolicy:
    name: str
    type: TrafficShiftType
    percentage: int = 100
    interval_s: float = 0.0

    def __post_init__(self) -> None:
        if self.type != TrafficShiftType.ALL_AT_ONCE and not 0 < self.percentage < 100:
            raise ConfigurationError(
                f"{self.name}: percentage must be in (0, 100), got {self.percentage}"
            )
        if self.interval_s < 0:
            raise ConfigurationError(f"{self.name}: interval_s must be >= 0")

    def steps(self) -> list[int]:
        """Cumulative candidate weights, ending at 100."""
        if self.type == TrafficShiftType.ALL_AT_ONCE:
            return [100]
        if self.type == TrafficShiftType.CANARY:
            return [self.percentage, 100]
        out = list(range(self.percentage, 100, self.percentage))
        out.append(100)
        return out


ALL_AT_ONCE = TrafficShiftPolicy("AllAtOnce", TrafficShiftType.ALL_AT_ONCE)
CANARY_10_PERCENT_5_MINUTES = TrafficShiftPolicy(
    "Canary10Percent5Minutes", TrafficShiftType.CANARY, 10, 300.0
)
LINEAR_10_PERCENT_EVERY_1_MINUTE = TrafficShiftPolicy(
    "Linear10PercentEvery1Minute", TrafficShiftType.LINEAR, 10, 60.0
)

POLICIES: dict[str, TrafficShiftPolicy] = {
    p.name: p
    for p in (ALL_AT_ONCE, CANARY_10_PERCENT_5_MINUTES, LINEAR_10_PERCENT_EVERY_1_MINUTE)
}


def policy_by_name(name: str) -> TrafficShiftPolicy:
    try:
        return POLICIES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown traffic shift policy {name}; expected one of {sorted(POLICIES)}"
        ) from None


class WeightedAlias:
    """
    Routes requests between the live version and, while a shift is under way,
    the candidate. The candidate gets no traffic until a weight is set.
    """

    def __init__(self, live: str | None = None, *, rng: random.Random | None = None) -> None:
        self._lock = threading.Lock()
        self._live = live
        self._candidate: str | None = None
        self._weight = 0
        self._rng = rng or random.Random()

    @property
    def live(self) -> str | None:
        with self._lock:
            return self._live

    @property
    def candidate(self) -> tuple[str | None, int]:
        with self._lock:
            return self._candidate, self._weight

    def shift(self, version: str, percent: int) -> None:
        if not 0 <= percent <= 100:
            raise ValueError(f"percent must be in [0, 100], got {percent}")
        with self._lock:
            if percent == 100 or self._live is None:
                self._live = version
                self._candidate = None
                self._weight = 0
            else:
                self._candidate = version
                self._weight = percent

    def discard(self, version: str) -> None:
        with self._lock:
            if self._candidate == version:
                self._candidate = None
                self._weight = 0

    def route(self) -> str | None:
        with self._lock:
            if self._candidate is not None and self._rng.randrange(100) < self._weight:
                return self._candidate
            return self._live
