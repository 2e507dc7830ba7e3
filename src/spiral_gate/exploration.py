"""
This module provides the `ExplorationPulseController`, which breaks repetitive
attention framing without outside intervention.

A pulse is considered only when the recent history is flat: at least eight
buffered turns, near-constant state, a single repeating dimension and at most
two distinct focus phrases. It additionally requires the cooldown since the
last pulse to have elapsed, the repeating dimension not to be ``RISK`` (risk
loops are intentional) and the previous state to be below the ceiling (an
already expensive turn is not interrupted).

A triggered pulse asks the completion service for three alternative probes at
high temperature, keeps the candidates that parse, and, when at least two
survive, asks a deterministic verifier to pick one. The chosen candidate
becomes the turn's effective probe. Any completion failure during the pulse is
logged and recorded as a note; the turn then proceeds with the original probe.
"""

from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .completion import ChatMessage, CompletionClient, CompletionRequest
from .config import GateConfig, PromptTemplates
from .easing import clamp
from .errors import CompletionError
from .probe import ParsedProbe, parse_candidates, parse_pick
from .state import Dimension, GateState

LOGGER = logging.getLogger(__name__)

NOTE_PULSE_SELECTED = "exploration pulse → selected alternate DIM"


def sample_variance(values: Sequence[float]) -> float:
    if len(values) <= 1:
        return 0.0
    return statistics.variance(values)


def detect_stagnation(gate: GateState, window: int = 8, variance_max: float = 0.002) -> bool:
    """True when the last ``window`` turns are flat in state, dimension and focus."""
    if len(gate.last_states) < window or len(gate.last_dims) < window or len(gate.last_focus) < window:
        return False
    states = list(gate.last_states)[-window:]
    dims = list(gate.last_dims)[-window:]
    foci = list(gate.last_focus)[-window:]
    return (
        sample_variance(states) < variance_max
        and len(set(dims)) <= 1
        and len(set(foci)) <= 2
    )


@dataclass(slots=True)
class PulseOutcome:
    """
    Diagnostic record of one pulse check.

    ``selected`` holds the winning candidate when the pulse fired; it is not
    part of the serialized form.
    """

    triggered: bool = False
    stagnation_detected: bool = False
    repeating_dim: Optional[str] = None
    candidates_text: Optional[str] = None
    picked: Optional[int] = None
    selected_probe: Optional[str] = None
    selected: Optional[ParsedProbe] = None
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "triggered": self.triggered,
            "stagnation_detected": self.stagnation_detected,
            "repeating_dim": self.repeating_dim,
            "candidates_text": self.candidates_text,
            "picked": self.picked,
            "selected_probe": self.selected_probe,
        }


class ExplorationPulseController:
    """Decides whether to pulse and runs the generate-then-verify exchange."""

    def __init__(
        self,
        client: CompletionClient,
        config: GateConfig | None = None,
        prompts: PromptTemplates | None = None,
    ) -> None:
        self.client = client
        self.config = config or GateConfig()
        self.prompts = prompts or PromptTemplates()

    def check(self, gate: GateState) -> PulseOutcome:
        """Evaluate the trigger against the gate state as left by the previous turn."""
        stagnation = detect_stagnation(gate, self.config.pulse_window, self.config.pulse_variance_max)
        repeating_dim = gate.last_dims[-1] if gate.last_dims else None
        return PulseOutcome(stagnation_detected=stagnation, repeating_dim=repeating_dim)

    def is_eligible(self, gate: GateState, turn: int, outcome: PulseOutcome) -> bool:
        return (
            outcome.stagnation_detected
            and turn - gate.last_pulse_turn >= self.config.pulse_cooldown_turns
            and outcome.repeating_dim != Dimension.RISK
            and gate.last_state < self.config.pulse_state_ceiling
        )

    async def run(
        self,
        gate: GateState,
        *,
        turn: int,
        user_text: str,
        original: ParsedProbe,
    ) -> PulseOutcome:
        outcome = self.check(gate)
        if not self.is_eligible(gate, turn, outcome):
            return outcome

        LOGGER.info("Stagnation on %s at turn %d; requesting exploration candidates", outcome.repeating_dim, turn)
        try:
            explore = await self.client.complete(
                CompletionRequest(
                    model=self.config.model,
                    messages=[
                        ChatMessage(
                            "system",
                            self.prompts.get_prompt(
                                "exploration_system_prompt",
                                current_dim=outcome.repeating_dim or "(unknown)",
                            ),
                        ),
                        ChatMessage(
                            "user",
                            self.prompts.get_prompt(
                                "exploration_request",
                                user_text=user_text,
                                original_probe=original.raw,
                            ),
                        ),
                    ],
                    temperature=self.config.pulse_temperature,
                    max_tokens=self.config.pulse_max_tokens,
                )
            )
            outcome.candidates_text = explore.text or None

            candidates = parse_candidates(explore.text or "", self.config.pulse_candidates)
            if len(candidates) < 2:
                LOGGER.info("Exploration pulse abandoned: %d candidate(s) parsed", len(candidates))
                return outcome

            listing = "\n\n".join(
                f"Candidate {index}:\n{candidate.raw}" for index, candidate in enumerate(candidates, start=1)
            )
            verdict = await self.client.complete(
                CompletionRequest(
                    model=self.config.model,
                    messages=[
                        ChatMessage("system", self.prompts.verifier_system_prompt),
                        ChatMessage(
                            "user",
                            self.prompts.get_prompt(
                                "verifier_request",
                                user_text=user_text,
                                original_probe=original.raw,
                                candidates=listing,
                            ),
                        ),
                    ],
                    temperature=0.0,
                    max_tokens=self.config.verify_max_tokens,
                )
            )
        except CompletionError as exc:
            LOGGER.warning("Exploration pulse failed at turn %d: %s", turn, exc)
            outcome.notes.append(f"exploration pulse failed: {exc}")
            return outcome

        pick = parse_pick(verdict.text) or 1
        index = int(clamp(1, len(candidates), pick))
        selected = candidates[index - 1]

        outcome.triggered = True
        outcome.picked = index
        outcome.selected_probe = selected.raw
        outcome.selected = selected
        outcome.notes.append(NOTE_PULSE_SELECTED)
        gate.last_pulse_turn = turn
        LOGGER.info("Exploration pulse picked candidate %d (DIM=%s) at turn %d", index, selected.dim, turn)
        return outcome
