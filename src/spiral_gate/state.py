"""
This module defines the per-session state carried by the gated turn engine.

A `Session` aggregates the gate state (running baselines, stagnation buffers,
META-cap governance stage, pulse cooldown), the memory state (running summary,
attention log, fragment bank), the conversation history and the turn counter.
Bounded FIFOs are `collections.deque` instances with a fixed ``maxlen``, so
their capacity invariants are held by the container itself.

Turns never mutate a stored session directly. They operate on a
`TurnWorkspace`, a deep copy that is written back only once the main completion
call has succeeded, so a failed turn leaves the session exactly as it was.
"""

from __future__ import annotations

import copy
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from .completion import ChatMessage
from .config import GateConfig
from .fragments import FragmentBank

VARIANCE_FLOOR = 1e-8


class Dimension(str, Enum):
    """The six attention dimensions a probe can commit to."""

    RISK = "RISK"
    NOVELTY = "NOVELTY"
    GOAL = "GOAL"
    UNCERTAINTY = "UNCERTAINTY"
    OPPORTUNITY = "OPPORTUNITY"
    META = "META"


@dataclass(slots=True)
class RunningStats:
    """Exponential moving mean/variance of one probe signal."""

    mean: float
    variance: float

    def __post_init__(self) -> None:
        self.variance = max(self.variance, VARIANCE_FLOOR)


@dataclass(slots=True)
class GateState:
    surprisal: RunningStats
    entropy: RunningStats
    last_state: float = 0.3
    meta_cap_stage: int = 0
    meta_cap_last_change_turn: int = -999
    last_dims: Deque[str] = field(default_factory=lambda: deque(maxlen=12))
    last_focus: Deque[str] = field(default_factory=lambda: deque(maxlen=12))
    last_states: Deque[float] = field(default_factory=lambda: deque(maxlen=12))
    last_pulse_turn: int = -999


@dataclass(slots=True)
class AttentionLogEntry:
    turn: int
    dim: str
    focus: str
    next: Optional[str] = None


@dataclass(slots=True)
class MemoryState:
    summary: str = ""
    summary_updated_turn: int = -1
    attn_log: Deque[AttentionLogEntry] = field(default_factory=lambda: deque(maxlen=30))
    fragments: FragmentBank = field(default_factory=FragmentBank)


@dataclass(slots=True)
class Session:
    """
    One conversation's complete state.

    Attributes:
        id: Caller-supplied session identifier.
        gate: Compute-state estimation and governance state.
        memory: Summary, attention log and fragment bank.
        history: Ordered user/assistant messages.
        turn: Number of completed turns.
    """

    id: str
    gate: GateState
    memory: MemoryState
    history: List[ChatMessage] = field(default_factory=list)
    turn: int = 0

    def describe(self) -> Dict[str, Any]:
        return {
            "sessionId": self.id,
            "turn": self.turn,
            "state": self.gate.last_state,
            "meta_cap_stage": self.gate.meta_cap_stage,
            "last_pulse_turn": self.gate.last_pulse_turn if self.gate.last_pulse_turn >= 0 else None,
            "fragments": len(self.memory.fragments),
            "attention_log": len(self.memory.attn_log),
            "summary": self.memory.summary or None,
            "history_messages": len(self.history),
        }


def make_initial_gate_state(config: GateConfig | None = None) -> GateState:
    config = config or GateConfig()
    capacity = config.stagnation_capacity
    return GateState(
        surprisal=RunningStats(config.surprisal_initial_mean, config.surprisal_initial_variance),
        entropy=RunningStats(config.entropy_initial_mean, config.entropy_initial_variance),
        last_state=config.initial_state,
        last_dims=deque(maxlen=capacity),
        last_focus=deque(maxlen=capacity),
        last_states=deque(maxlen=capacity),
    )


def make_session(session_id: str, config: GateConfig | None = None) -> Session:
    config = config or GateConfig()
    return Session(
        id=session_id,
        gate=make_initial_gate_state(config),
        memory=MemoryState(
            attn_log=deque(maxlen=config.attention_log_capacity),
            fragments=FragmentBank(capacity=config.fragment_capacity),
        ),
    )


class TurnWorkspace:
    """
    Working copy of a session for the duration of one turn.

    The copy already carries the incremented turn counter. `commit` writes the
    working gate, memory, history and turn back onto the stored session; if the
    turn is abandoned the copy is simply discarded.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self.working = copy.deepcopy(session)
        self.working.turn += 1
        self.committed = False

    @property
    def turn(self) -> int:
        return self.working.turn

    @property
    def gate(self) -> GateState:
        return self.working.gate

    @property
    def memory(self) -> MemoryState:
        return self.working.memory

    @property
    def history(self) -> List[ChatMessage]:
        return self.working.history

    def commit(self) -> Session:
        if self.committed:
            raise RuntimeError("TurnWorkspace already committed")
        self._session.gate = self.working.gate
        self._session.memory = self.working.memory
        self._session.history = self.working.history
        self._session.turn = self.working.turn
        self.committed = True
        return self._session
