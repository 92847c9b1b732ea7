"""Score accumulation: sum contributions, clamp only once at the end."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Literal

from process_orchestrator.core.errors import ScoreNotFinal

ScorePolicy = Literal["normalized", "fixed"]

SCORE_MIN = 0
SCORE_MAX = 100


def clamp_score(value: float) -> int:
    """Round half up (50.5 -> 51), then clamp to the score range."""
    return min(SCORE_MAX, max(SCORE_MIN, math.floor(value + 0.5)))


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    raw: float
    declared_weight: float
    active_weight: float
    skipped: tuple[str, ...]
    final: int


class ScoreLedger:
    """Additive, order-independent score accumulator.

    Steps may be declared with a weight. With the ``normalized`` policy the
    raw sum is rescaled by ``declared / active`` weight so skipped steps do not
    drag the score down; ``fixed`` keeps the raw sum. Either way the final
    value is clamped to [0, 100] and can only be computed after every declared
    step has contributed or been skipped.
    """

    def __init__(self, policy: ScorePolicy = "normalized") -> None:
        self.policy = policy
        self._lock = threading.Lock()
        self._raw = 0.0
        self._weights: dict[str, float] = {}
        self._contributed: set[str] = set()
        self._skipped: set[str] = set()

    def declare(self, step: str, weight: float) -> None:
        if weight < 0:
            raise ValueError("weight must be >= 0")
        with self._lock:
            self._weights[step] = weight

    def add(self, delta: float, *, step: str | None = None) -> None:
        with self._lock:
            if step is not None and step in self._skipped:
                raise ValueError(f"Step {step!r} was skipped and cannot contribute")
            self._raw += delta
            if step is not None:
                self._contributed.add(step)

    def skip(self, step: str) -> None:
        with self._lock:
            if step in self._contributed:
                raise ValueError(f"Step {step!r} already contributed and cannot be skipped")
            self._skipped.add(step)

    @property
    def raw(self) -> float:
        return self._raw

    def outstanding(self) -> list[str]:
        with self._lock:
            return sorted(
                s for s in self._weights if s not in self._contributed and s not in self._skipped
            )

    def breakdown(self) -> ScoreBreakdown:
        missing = self.outstanding()
        if missing:
            raise ScoreNotFinal(f"Steps have not reported a score yet: {missing}")
        with self._lock:
            declared = sum(self._weights.values())
            active = sum(w for s, w in self._weights.items() if s not in self._skipped)
            value = self._raw
            if self.policy == "normalized" and declared > 0:
                value = self._raw * (declared / active) if active > 0 else 0.0
            return ScoreBreakdown(
                raw=self._raw,
                declared_weight=declared,
                active_weight=active,
                skipped=tuple(sorted(self._skipped)),
                final=clamp_score(value),
            )

    def final(self) -> int:
        return self.breakdown().final
