"""
This module implements the salience fragment memory, a bounded store of short
notes that the agent "remembers" between turns.

Each turn the attention frame (dimension, focus, next step) is condensed into a
one-line fragment and merged into the bank under a normalized key. Fragments
carry a salience score that decays every turn at a rate driven by the current
compute-state (low state forgets quickly, high state preserves), is reinforced
when the same key recurs, and is bumped when the fragment is injected into a
prompt. Ranking is by salience only, never by recency, so an old but important
note can outlive many newer ones.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional

from .easing import clamp, lerp, pow_ease

LOGGER = logging.getLogger(__name__)

SALIENCE_MAX = 1.2
FRAGMENT_TEXT_MAX = 160
MERGE_BONUS = 0.08
REHEARSAL_BONUS = 0.05
PRUNE_SALIENCE_FLOOR = 0.06
PRUNE_MIN_AGE = 8
NEVER_USED = -999

DIMENSION_BONUS: Dict[str, float] = {
    "RISK": 0.22,
    "GOAL": 0.16,
    "NOVELTY": 0.12,
    "OPPORTUNITY": 0.10,
    "UNCERTAINTY": 0.08,
    "META": 0.04,
}

_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True)
class MemoryFragment:
    """
    A single remembered note.

    Attributes:
        id: Display identifier, unique within the session.
        key: Normalized ``DIM|focus|next`` composite; unique within the bank.
        turn: Turn at which the fragment was created or last merged.
        dim: Attention dimension label, if any.
        focus: Focus phrase, if any.
        text: Canonical one-line rendering, at most 160 characters.
        salience: Importance score in ``[0, 1.2]``.
        last_used_turn: Turn of the most recent injection into a prompt.
    """

    id: str
    key: str
    turn: int
    dim: Optional[str]
    focus: Optional[str]
    text: str
    salience: float
    last_used_turn: int = NEVER_USED

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "turn": self.turn,
            "dim": self.dim,
            "salience": self.salience,
            "text": self.text,
        }


@dataclass(slots=True)
class UpsertResult:
    added: bool
    merged: bool
    id: str
    salience: float
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": self.added,
            "merged": self.merged,
            "id": self.id,
            "salience": self.salience,
            "text": self.text,
        }


def make_fragment_id(turn: int) -> str:
    return f"f_{turn}_{uuid.uuid4().hex}"


def make_fragment_key(dim: Optional[str], focus: Optional[str], next: Optional[str] = None) -> str:
    return "|".join(
        [
            (dim or "").upper(),
            (focus or "").strip().lower(),
            (next or "").strip().lower(),
        ]
    )


def dimension_bonus(dim: Optional[str]) -> float:
    return DIMENSION_BONUS.get((dim or "").upper(), 0.0)


def salience_decay_factor(state: float) -> float:
    """Per-turn multiplier: 0.55 at state 0, rising to 0.93 at state 1."""
    return lerp(0.55, 0.93, pow_ease(state, 0.9))


def initial_salience(state: float, dim: Optional[str]) -> float:
    return clamp(0.0, SALIENCE_MAX, 0.25 + 0.55 * state + dimension_bonus(dim))


def collapse_whitespace(value: Optional[str]) -> str:
    return _WHITESPACE.sub(" ", value or "").strip()


def fragment_text(dim: Optional[str], focus: Optional[str], next: Optional[str] = None) -> str:
    """
    Render the canonical fragment text ``"(DIM) focus → next"``.

    Missing parts are omitted; the result is whitespace-collapsed and cut to
    160 characters. An empty string means there is nothing worth storing.
    """
    head = f"({dim.upper()}) " if dim else ""
    focus_text = collapse_whitespace(focus)
    next_text = collapse_whitespace(next)
    body = ""
    if focus_text or next_text:
        body = focus_text + (f" → {next_text}" if next_text else "")
    text = (head + body).strip()
    return text[:FRAGMENT_TEXT_MAX]


class FragmentBank:
    """
    Keyed, capacity-bounded collection of `MemoryFragment` objects.

    At most one fragment exists per key. The capacity is enforced by `prune`,
    which also drops notes that are both faint and old.
    """

    def __init__(self, capacity: int = 40) -> None:
        self.capacity = capacity
        self._fragments: Dict[str, MemoryFragment] = {}

    def __len__(self) -> int:
        return len(self._fragments)

    def __iter__(self) -> Iterator[MemoryFragment]:
        return iter(list(self._fragments.values()))

    def __contains__(self, key: object) -> bool:
        return key in self._fragments

    def get(self, key: str) -> Optional[MemoryFragment]:
        return self._fragments.get(key)

    def decay(self, state: float) -> float:
        """Scale every salience by the state-driven factor; returns the factor."""
        factor = salience_decay_factor(state)
        for fragment in self._fragments.values():
            fragment.salience = clamp(0.0, SALIENCE_MAX, fragment.salience * factor)
        return factor

    def upsert(
        self,
        *,
        key: str,
        turn: int,
        dim: Optional[str],
        focus: Optional[str],
        text: str,
        salience: float,
    ) -> UpsertResult:
        existing = self._fragments.get(key)
        if existing is not None:
            existing.text = text
            existing.dim = dim
            existing.focus = focus
            existing.turn = turn
            existing.salience = clamp(0.0, SALIENCE_MAX, max(existing.salience, salience) + MERGE_BONUS)
            return UpsertResult(added=False, merged=True, id=existing.id, salience=salience, text=text)

        fragment = MemoryFragment(
            id=make_fragment_id(turn),
            key=key,
            turn=turn,
            dim=dim,
            focus=focus,
            text=text,
            salience=clamp(0.0, SALIENCE_MAX, salience),
        )
        self._fragments[key] = fragment
        return UpsertResult(added=True, merged=False, id=fragment.id, salience=salience, text=text)

    def remember(
        self,
        *,
        dim: Optional[str],
        focus: Optional[str],
        next: Optional[str],
        state: float,
        turn: int,
    ) -> Optional[UpsertResult]:
        """Condense an attention frame into a fragment; `None` when it renders empty."""
        text = fragment_text(dim, focus, next)
        if not text:
            return None
        return self.upsert(
            key=make_fragment_key(dim, focus, next),
            turn=turn,
            dim=dim,
            focus=focus,
            text=text,
            salience=initial_salience(state, dim),
        )

    def prune(self, turn: int) -> List[str]:
        """
        Drop faint-and-old fragments, then keep the top `capacity` by salience.

        Returns:
            The ids of the removed fragments.
        """
        survivors = [
            fragment
            for fragment in self._fragments.values()
            if not (fragment.salience < PRUNE_SALIENCE_FLOOR and turn - fragment.turn > PRUNE_MIN_AGE)
        ]
        survivors.sort(key=lambda fragment: fragment.salience, reverse=True)
        kept = survivors[: max(0, self.capacity)]
        kept_keys = {fragment.key for fragment in kept}
        removed = [fragment.id for key, fragment in self._fragments.items() if key not in kept_keys]
        self._fragments = {fragment.key: fragment for fragment in kept}
        if removed:
            LOGGER.debug("Pruned %d fragment(s) at turn %d", len(removed), turn)
        return removed

    def top(self, k: int) -> List[MemoryFragment]:
        if k <= 0:
            return []
        ranked = sorted(self._fragments.values(), key=lambda fragment: fragment.salience, reverse=True)
        return ranked[:k]

    def rehearse(self, picked: Iterable[MemoryFragment], turn: int) -> None:
        picked_ids = {fragment.id for fragment in picked}
        for fragment in self._fragments.values():
            if fragment.id not in picked_ids:
                continue
            fragment.last_used_turn = turn
            fragment.salience = clamp(0.0, SALIENCE_MAX, fragment.salience + REHEARSAL_BONUS)

    def max_salience(self) -> float:
        return max((fragment.salience for fragment in self._fragments.values()), default=0.0)
