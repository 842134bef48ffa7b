"""
Ordered relaxation profiles for the rebuild retry loop.

Attempt N uses RELAXATION_PROFILES[N - 1]. Each profile scales the soft
weights that make the search landscape rugged (anti-fragmentation,
single-lesson, large-gap, morning) and never touches the primary gap
weight, so later attempts still produce compact teacher days.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Sequence, Tuple

from timetable_app.models import Weights


@dataclass(frozen=True)
class RelaxationProfile:
    name:          str
    fragmentation: float = 1.0
    single_lesson: float = 1.0
    large_gap:     float = 1.0
    morning:       float = 1.0

    def apply(self, w: Weights) -> Weights:
        return replace(
            w,
            fragmentation = _scaled(w.fragmentation, self.fragmentation),
            single_lesson = _scaled(w.single_lesson, self.single_lesson),
            large_gap     = _scaled(w.large_gap, self.large_gap),
            morning       = _scaled(w.morning, self.morning),
        )


def _scaled(value: int, factor: float) -> int:
    if not value:
        return 0
    # never round a live weight down to zero
    return max(1, int(round(value * factor)))


RELAXATION_PROFILES: Tuple[RelaxationProfile, ...] = (
    RelaxationProfile("strict"),
    RelaxationProfile("relaxed",   fragmentation=0.1,   single_lesson=0.5,
                      morning=0.5),
    RelaxationProfile("desperate", fragmentation=0.001, single_lesson=0.025,
                      large_gap=0.01, morning=0.5),
)


def schedule_for(max_attempts: int,
                 profiles: Sequence[RelaxationProfile] = RELAXATION_PROFILES
                 ) -> List[RelaxationProfile]:
    """
    Profiles for attempts 1..max_attempts. If more attempts are asked for
    than there are profiles, the last profile repeats.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    out = list(profiles[:max_attempts])
    while len(out) < max_attempts:
        out.append(profiles[-1])
    return out
