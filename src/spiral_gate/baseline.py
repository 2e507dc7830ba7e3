"""
Running baselines for the probe signals.

Each signal keeps an exponential moving mean and variance. A fresh observation
is first scored against the baseline as it stood before the turn, then folded
into it. Signals missing this turn leave their baseline untouched.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

from .probe import ProbeMetrics
from .state import VARIANCE_FLOOR, GateState, RunningStats

LOGGER = logging.getLogger(__name__)

NOTE_SURPRISAL_MISSING = "logprobs missing → surprisal unavailable"
NOTE_ENTROPY_MISSING = "top_logprobs missing → entropy unavailable"


def ema_update(stats: RunningStats, value: float, eta: float) -> RunningStats:
    mean = (1 - eta) * stats.mean + eta * value
    diff = value - mean
    variance = (1 - eta) * stats.variance + eta * diff * diff
    return RunningStats(mean=mean, variance=max(variance, VARIANCE_FLOOR))


def z_score(stats: RunningStats, value: float) -> float:
    return (value - stats.mean) / math.sqrt(stats.variance + VARIANCE_FLOOR)


@dataclass(slots=True)
class BaselineObservation:
    z_surprisal: Optional[float]
    z_entropy: Optional[float]
    notes: List[str] = field(default_factory=list)

    @property
    def has_signal(self) -> bool:
        return self.z_surprisal is not None or self.z_entropy is not None


class BaselineTracker:
    """Scores probe metrics against a session's baselines and updates them."""

    def __init__(self, eta: float = 0.06) -> None:
        self.eta = eta

    def observe(self, gate: GateState, metrics: ProbeMetrics) -> BaselineObservation:
        observation = BaselineObservation(z_surprisal=None, z_entropy=None)

        if metrics.surprisal is not None:
            observation.z_surprisal = z_score(gate.surprisal, metrics.surprisal)
            gate.surprisal = ema_update(gate.surprisal, metrics.surprisal, self.eta)
        else:
            observation.notes.append(NOTE_SURPRISAL_MISSING)

        if metrics.entropy is not None:
            observation.z_entropy = z_score(gate.entropy, metrics.entropy)
            gate.entropy = ema_update(gate.entropy, metrics.entropy, self.eta)
        else:
            observation.notes.append(NOTE_ENTROPY_MISSING)

        LOGGER.debug(
            "Baseline z-scores surprisal=%s entropy=%s",
            observation.z_surprisal,
            observation.z_entropy,
        )
        return observation
