"""
Sampling decision for page-view collection.

With rate N, one in N views is recorded and the recorded view carries
weight N, so summing weights gives an unbiased estimate of the true count.
"""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class SampleDecision:
    accepted: bool
    weight: int


def decide(rate: int, rng: random.Random | None = None) -> SampleDecision:
    """
    Decide whether to record this view.

    Args:
        rate: Sampling rate N (values below 1 are treated as 1)
        rng: Random source (module-level random when omitted)

    Returns:
        SampleDecision with weight N (not the draw) when accepted
    """
    rate = max(1, int(rate))
    if rate == 1:
        return SampleDecision(accepted=True, weight=1)

    draw = (rng or random).randint(1, rate)
    if draw != 1:
        return SampleDecision(accepted=False, weight=0)
    return SampleDecision(accepted=True, weight=rate)
