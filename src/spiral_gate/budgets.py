"""
Gradient budget mapping: continuous functions from the compute-state to every
resource the next completion request consumes.

There are no discrete tiers. Each budget follows a smooth curve (linear,
power-law or smoothstep) so that a low state is cheap and a high state is
expressive. Inputs are clamped to ``[0, 1]`` and integer budgets round half up.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Tuple

from .easing import clamp, clamp01, lerp, pow_ease, round_half_up, smoothstep

PULSE_OUTPUT_FLOOR = 120
SALIENT_FRAGMENT_THRESHOLD = 0.9


def context_keep_messages(state: float) -> int:
    return int(clamp(4, 18, round_half_up(lerp(4, 18, pow_ease(state, 1.25)))))


def summary_chars(state: float) -> int:
    return round_half_up(lerp(0, 220, smoothstep(0.22, 0.62, clamp01(state))))


def attention_items(state: float) -> int:
    return int(clamp(0, 10, round_half_up(lerp(0, 10, smoothstep(0.35, 0.85, clamp01(state))))))


def fragment_items(state: float, top_salience: float = 0.0) -> int:
    """Fragments to inject; at least one when some fragment is very salient."""
    items = int(clamp(0, 10, round_half_up(lerp(0, 10, smoothstep(0.20, 0.86, clamp01(state))))))
    if items == 0 and top_salience > SALIENT_FRAGMENT_THRESHOLD:
        return 1
    return items


def summary_update_interval(state: float) -> int:
    return int(clamp(1, 18, round_half_up(lerp(18, 1, pow_ease(state, 1.4)))))


def summary_update_max_tokens(state: float) -> int:
    return int(clamp(20, 120, round_half_up(lerp(25, 90, pow_ease(state, 1.2)))))


def max_output_tokens(state: float) -> int:
    return round_half_up(lerp(60, 520, clamp01(state)))


def sampling_temperature(state: float) -> float:
    return clamp(0.0, 1.2, lerp(0.05, 0.7, clamp01(state)))


@dataclass(slots=True)
class MemoryBudget:
    ctx_keep_msgs: int
    summary_chars: int
    attn_items: int
    frag_items: int
    summary_update_interval: int
    summary_update_max_tokens: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class GenerationParams:
    max_output_tokens: int
    temperature: float
    context_keep_msgs: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def map_memory_budget(state: float, top_salience: float = 0.0) -> MemoryBudget:
    return MemoryBudget(
        ctx_keep_msgs=context_keep_messages(state),
        summary_chars=summary_chars(state),
        attn_items=attention_items(state),
        frag_items=fragment_items(state, top_salience),
        summary_update_interval=summary_update_interval(state),
        summary_update_max_tokens=summary_update_max_tokens(state),
    )


def map_generation_params(
    state: float,
    *,
    context_keep_msgs: int,
    pulse_triggered: bool = False,
    pulse_floor: int = PULSE_OUTPUT_FLOOR,
) -> Tuple[GenerationParams, List[str]]:
    """
    Map the state to main-call generation parameters.

    A pulse that changed the frame this turn guarantees the response at least
    ``pulse_floor`` output tokens.

    Returns:
        The parameters and any notes describing adjustments.
    """
    notes: List[str] = []
    tokens = max_output_tokens(state)
    if pulse_triggered:
        if tokens < pulse_floor:
            notes.append(f"pulse → max_output_tokens floor {pulse_floor}")
        tokens = max(tokens, pulse_floor)
    params = GenerationParams(
        max_output_tokens=tokens,
        temperature=sampling_temperature(state),
        context_keep_msgs=context_keep_msgs,
    )
    return params, notes
