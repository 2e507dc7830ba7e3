"""
This module resolves the per-turn compute-state from the probe signals.

Resolution runs in a fixed order:

1. Blend the surprisal and entropy z-scores into one score and squash it into
   ``[0, 1]`` with a tempered logistic.
2. Weight the squashed value by the winning attention dimension. ``RISK``
   receives an additive boost that is largest when the state is low; ``META``
   is capped by the staged governor (0.55, then 0.65, then uncapped).
3. Smooth with a hysteresis band so estimator noise around the decision
   boundary does not make the state oscillate.
4. Append the effective dimension, focus and new state to the stagnation
   buffers, then let the governor decide whether the META cap relaxes.

When neither signal is available the state is held at its previous value;
buffers and governance still advance so the turn is counted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .baseline import BaselineObservation
from .config import GateConfig
from .easing import clamp01, lerp, sigmoid
from .state import Dimension, GateState

LOGGER = logging.getLogger(__name__)

META_CAP_BY_STAGE: Dict[int, Optional[float]] = {0: 0.55, 1: 0.65, 2: None}
GOVERNANCE_WINDOW = 12
# stage -> (minimum turns since last change, maximum META share)
RELAXATION_RULES: Dict[int, tuple[int, float]] = {0: (12, 0.25), 1: (18, 0.17)}

NOTE_NO_SIGNAL = "no probe signal → state held"


def blend_score(
    z_surprisal: Optional[float],
    z_entropy: Optional[float],
    surprisal_weight: float = 0.7,
    entropy_weight: float = 0.3,
) -> Optional[float]:
    if z_surprisal is None and z_entropy is None:
        return None
    return surprisal_weight * (z_surprisal or 0.0) + entropy_weight * (z_entropy or 0.0)


def squash(score: float, temperature: float = 1.2) -> float:
    return sigmoid(score / temperature)


def meta_cap_value(stage: int) -> Optional[float]:
    return META_CAP_BY_STAGE.get(stage)


def recent_meta_share(gate: GateState, window: int = GOVERNANCE_WINDOW) -> Optional[float]:
    dims = list(gate.last_dims)[-window:]
    if len(dims) < window:
        return None
    return sum(1 for dim in dims if dim == Dimension.META) / len(dims)


@dataclass(slots=True)
class GovernanceResult:
    changed: bool
    meta_share: Optional[float]
    stage: int


def maybe_relax_meta_cap(gate: GateState, turn: int) -> GovernanceResult:
    """
    Advance the META-cap stage one step when META has stopped dominating.

    Stage 0 relaxes to 1 when the share over the last 12 dimensions is at most
    0.25 and 12 turns have passed since the last change; stage 1 relaxes to 2
    at a share of at most 0.17 after 18 turns. The stage never decreases.
    """
    share = recent_meta_share(gate)
    stage = gate.meta_cap_stage
    if share is None or stage not in RELAXATION_RULES:
        return GovernanceResult(changed=False, meta_share=share, stage=stage)

    min_interval, share_max = RELAXATION_RULES[stage]
    if turn - gate.meta_cap_last_change_turn < min_interval or share > share_max:
        return GovernanceResult(changed=False, meta_share=share, stage=stage)

    gate.meta_cap_stage = stage + 1
    gate.meta_cap_last_change_turn = turn
    LOGGER.info("META cap relaxed to stage %d at turn %d (share=%.2f)", gate.meta_cap_stage, turn, share)
    return GovernanceResult(changed=True, meta_share=share, stage=gate.meta_cap_stage)


@dataclass(slots=True)
class WeightedState:
    raw: float
    meta_cap: Optional[float] = None
    notes: List[str] = field(default_factory=list)


def apply_dimension_weight(raw: float, dim: Optional[str], gate: GateState) -> WeightedState:
    value = raw
    notes: List[str] = []
    cap: Optional[float] = None

    if dim == Dimension.RISK:
        boost = lerp(0.22, 0.08, clamp01(value))
        value = clamp01(value + boost)
        notes.append(f"DIM=RISK → state +{boost:.2f} (state-dependent)")

    if dim == Dimension.META:
        cap = meta_cap_value(gate.meta_cap_stage)
        if cap is None:
            notes.append("DIM=META → cap unlocked")
        else:
            if value > cap:
                notes.append(f"DIM=META → state cap {cap} (stage {gate.meta_cap_stage})")
            value = min(value, cap)

    return WeightedState(raw=value, meta_cap=cap, notes=notes)


def hysteresis_update(
    previous: float,
    raw: float,
    high: float = 0.62,
    low: float = 0.48,
    inertia: float = 0.6,
) -> float:
    """Move toward ``raw`` only when it leaves the ``(low, high)`` band."""
    target = raw if (raw >= high or raw <= low) else previous
    return clamp01(inertia * previous + (1 - inertia) * target)


def update_stagnation_buffers(
    gate: GateState,
    dim: Optional[str],
    focus: Optional[str],
    state: float,
) -> None:
    if dim:
        gate.last_dims.append(dim)
    if focus:
        gate.last_focus.append(focus)
    gate.last_states.append(state)


@dataclass(slots=True)
class Resolution:
    """Outcome of one state resolution, kept for diagnostics."""

    score: Optional[float]
    raw: float
    weighted: float
    state: float
    governance: GovernanceResult
    meta_cap: Optional[float] = None
    notes: List[str] = field(default_factory=list)


class StateResolver:
    """Applies blend, squash, weighting, hysteresis and governance to a gate."""

    def __init__(self, config: GateConfig | None = None) -> None:
        self.config = config or GateConfig()

    def score(self, observation: BaselineObservation) -> tuple[Optional[float], Optional[float]]:
        """Return ``(score, raw)``; both are `None` when no signal is present."""
        score = blend_score(
            observation.z_surprisal,
            observation.z_entropy,
            self.config.surprisal_weight,
            self.config.entropy_weight,
        )
        if score is None:
            return None, None
        return score, squash(score, self.config.squash_temperature)

    def resolve(
        self,
        gate: GateState,
        *,
        observation: BaselineObservation,
        dim: Optional[str],
        focus: Optional[str],
        turn: int,
    ) -> Resolution:
        score, raw = self.score(observation)
        previous = gate.last_state
        notes: List[str] = []
        meta_cap: Optional[float] = None

        if raw is None:
            raw = weighted = state = previous
            notes.append(NOTE_NO_SIGNAL)
        else:
            weighting = apply_dimension_weight(raw, dim, gate)
            notes.extend(weighting.notes)
            meta_cap = weighting.meta_cap
            weighted = weighting.raw
            state = hysteresis_update(
                previous,
                weighted,
                self.config.hysteresis_high,
                self.config.hysteresis_low,
                self.config.hysteresis_inertia,
            )

        gate.last_state = state
        update_stagnation_buffers(gate, dim, focus, state)

        governance = maybe_relax_meta_cap(gate, turn)
        if governance.changed:
            cap_now = meta_cap_value(gate.meta_cap_stage)
            cap_label = "unlocked" if cap_now is None else str(cap_now)
            note = f"META cap relaxed → stage {gate.meta_cap_stage} (cap {cap_label})"
            if governance.meta_share is not None:
                note += f", recent META share={governance.meta_share:.2f}"
            notes.append(note)

        LOGGER.debug(
            "Resolved state turn=%d score=%s raw=%.3f weighted=%.3f state=%.3f",
            turn,
            score,
            raw,
            weighted,
            state,
        )
        return Resolution(
            score=score,
            raw=raw,
            weighted=weighted,
            state=state,
            governance=governance,
            meta_cap=meta_cap,
            notes=notes,
        )
