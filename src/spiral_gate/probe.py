"""
This module turns the attention probe into the two signals that drive the
compute-state, and parses the probe's line grammar.

The probe is a short, constrained model output (``DIM:``, ``FOCUS:``, ``NEXT:``
and ``WHY:`` lines) that is never shown to the user. Its token statistics are
measured on the first line only, so a verbose continuation cannot skew the
estimate:

* surprisal is the mean negative log-probability of the sliced tokens;
* entropy is estimated per token from the top-k alternatives plus the residual
  probability mass outside them, then averaged.

Both estimators return `None` when the provider sent no usable data; absence of
a signal is a normal outcome, never an exception. The same line-grammar parser
serves the probe and the exploration candidates, and it never raises: text that
carries neither a ``DIM`` nor a ``FOCUS`` line comes back as `Unparsed`.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from .completion import TokenLogprob

EPSILON = 1e-8

_FIELD_LINE = re.compile(r"^\s*(DIM|FOCUS|NEXT|WHY)\s*:\s*(.*?)\s*$", re.IGNORECASE)
_DIM_LABEL = re.compile(r"[A-Za-z_]+")
_BLOCK_SEPARATOR = re.compile(r"\n\s*\n")
_PICK = re.compile(r"\bPICK\s*:\s*([123])\b", re.IGNORECASE)


@dataclass(slots=True)
class ProbeMetrics:
    surprisal: Optional[float]
    entropy: Optional[float]
    tokens_used: int = 0


def slice_first_line(tokens: Sequence[TokenLogprob], max_tokens: int = 30) -> List[TokenLogprob]:
    """
    Keep tokens up to and including the first one containing a newline, or
    the first ``max_tokens`` tokens, whichever comes first.
    """
    sliced: List[TokenLogprob] = []
    for token in tokens:
        sliced.append(token)
        if len(sliced) >= max_tokens:
            break
        if "\n" in token.token:
            break
    return sliced


def mean_surprisal(tokens: Sequence[TokenLogprob]) -> Optional[float]:
    if not tokens:
        return None
    return sum(-token.logprob for token in tokens) / len(tokens)


def approx_entropy(tokens: Sequence[TokenLogprob]) -> Optional[float]:
    """Mean top-k entropy with the residual mass treated as one extra outcome."""
    entropies: List[float] = []
    for token in tokens:
        if not token.top_logprobs:
            continue
        probabilities = [math.exp(alt.logprob) for alt in token.top_logprobs]
        residual = max(0.0, 1.0 - sum(probabilities))
        entropy = 0.0
        for p in probabilities:
            if p > 0:
                entropy -= p * math.log(p + EPSILON)
        if residual > 0:
            entropy -= residual * math.log(residual + EPSILON)
        entropies.append(entropy)
    if not entropies:
        return None
    return sum(entropies) / len(entropies)


def estimate_probe_metrics(tokens: Sequence[TokenLogprob], max_tokens: int = 30) -> ProbeMetrics:
    first_line = slice_first_line(tokens, max_tokens)
    return ProbeMetrics(
        surprisal=mean_surprisal(first_line),
        entropy=approx_entropy(first_line),
        tokens_used=len(first_line),
    )


@dataclass(slots=True, frozen=True)
class ParsedProbe:
    """An attention frame read from probe or candidate text."""

    raw: str
    dim: Optional[str] = None
    focus: Optional[str] = None
    next: Optional[str] = None
    why: Optional[str] = None


@dataclass(slots=True, frozen=True)
class Unparsed:
    raw: str
    reason: str


ProbeParseResult = Union[ParsedProbe, Unparsed]


def parse_probe(text: str) -> ProbeParseResult:
    """
    Parse ``DIM:``/``FOCUS:``/``NEXT:``/``WHY:`` lines by prefix.

    Matching is case-insensitive and the first occurrence of each field wins.
    The DIM value is reduced to its leading label and upper-cased. Empty values
    count as missing.

    Returns:
        `ParsedProbe` when at least a DIM or a FOCUS was found, else `Unparsed`.
    """
    raw = text or ""
    fields: dict[str, str] = {}
    for line in raw.splitlines():
        match = _FIELD_LINE.match(line)
        if not match:
            continue
        name = match.group(1).lower()
        if name in fields:
            continue
        value = match.group(2)
        if name == "dim":
            label = _DIM_LABEL.search(value)
            value = label.group(0).upper() if label else ""
        if value:
            fields[name] = value

    if "dim" not in fields and "focus" not in fields:
        return Unparsed(raw=raw, reason="no DIM or FOCUS line")
    return ParsedProbe(
        raw=raw,
        dim=fields.get("dim"),
        focus=fields.get("focus"),
        next=fields.get("next"),
        why=fields.get("why"),
    )


def probe_frame(result: ProbeParseResult) -> ParsedProbe:
    """Collapse a parse result into a frame; unparsed text yields an empty frame."""
    if isinstance(result, ParsedProbe):
        return result
    return ParsedProbe(raw=result.raw)


def parse_candidates(text: str, limit: int = 3) -> List[ParsedProbe]:
    """
    Parse blank-line separated candidate blocks.

    Each block contributes its first four non-empty lines and needs at least
    two of them; blocks without a DIM or FOCUS are discarded. Parsing stops
    after ``limit`` accepted candidates.
    """
    if not (text or "").strip():
        return []
    candidates: List[ParsedProbe] = []
    for block in _BLOCK_SEPARATOR.split(text):
        block = block.strip()
        if not block:
            continue
        lines = [line.rstrip() for line in block.split("\n")]
        lines = [line for line in lines if line][:4]
        if len(lines) < 2:
            continue
        result = parse_probe("\n".join(lines))
        if isinstance(result, Unparsed):
            continue
        candidates.append(result)
        if len(candidates) >= limit:
            break
    return candidates


def parse_pick(text: str) -> Optional[int]:
    match = _PICK.search(text or "")
    if not match:
        return None
    return int(match.group(1))
