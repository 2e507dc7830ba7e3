"""
Mock mode support for running spiral-gate without external services.

When ``SPIRAL_GATE_MOCK_MODE=true``:

- completion requests are answered by `ScriptedCompletionClient`, a
  deterministic stand-in that produces well-formed probe text with synthetic
  log-probabilities, exploration candidates, verifier picks, main replies and
  summaries;
- the metrics stream is written to an in-memory fakeredis server.

Example:
    SPIRAL_GATE_MOCK_MODE=true python -m spiral_gate
"""
from __future__ import annotations

import logging
import os
import re
from typing import Any, List, Optional

from fakeredis import FakeServer, aioredis

from .completion import CompletionRequest, CompletionResponse, TokenLogprob, TopLogprob

LOGGER = logging.getLogger(__name__)

_MOCK_REDIS_SERVER: Optional[FakeServer] = None

PHASE_PROBE = "probe"
PHASE_EXPLORATION = "exploration"
PHASE_VERIFY = "verify"
PHASE_SUMMARY = "summary"
PHASE_MAIN = "main"

_PHASE_MARKERS = (
    ("ATTENTION PROBE", PHASE_PROBE),
    ("EXPLORATION PULSE", PHASE_EXPLORATION),
    ("VERIFIER", PHASE_VERIFY),
    ("running one-line conversation summary", PHASE_SUMMARY),
)

_CURRENT_DIM = re.compile(r"Current DIM is:\s*([A-Z_]+)")
_STATE = re.compile(r"state=([0-9.]+)")
_DIMENSIONS = ("RISK", "NOVELTY", "GOAL", "UNCERTAINTY", "OPPORTUNITY", "META")


def is_mock_mode_enabled() -> bool:
    """Check if mock mode is enabled via environment variable."""
    value = os.environ.get("SPIRAL_GATE_MOCK_MODE", "").strip().lower()
    return value in {"1", "true", "yes", "on"}


def get_mock_redis_client() -> Any:
    """
    Return an async fakeredis client bound to a process-wide in-memory server,
    so every client created in mock mode sees the same streams.
    """
    global _MOCK_REDIS_SERVER
    if _MOCK_REDIS_SERVER is None:
        _MOCK_REDIS_SERVER = FakeServer()
        LOGGER.info("Mock Redis server initialized (fakeredis)")
    return aioredis.FakeRedis(server=_MOCK_REDIS_SERVER, decode_responses=True)


def request_phase(request: CompletionRequest) -> str:
    """Identify which engine phase issued ``request`` from its first system prompt."""
    system = next((m.content for m in request.messages if m.role == "system"), "")
    for marker, phase in _PHASE_MARKERS:
        if marker in system:
            return phase
    return PHASE_MAIN


def _last_user_text(request: CompletionRequest) -> str:
    for message in reversed(request.messages):
        if message.role == "user":
            return message.content
    return ""


def _pick_dimension(text: str) -> str:
    lowered = text.lower()
    if any(word in lowered for word in ("risk", "danger", "unsafe", "security", "break")):
        return "RISK"
    if any(word in lowered for word in ("new", "idea", "novel")):
        return "NOVELTY"
    if "?" in text:
        return "UNCERTAINTY"
    return "GOAL"


def _focus_phrase(text: str) -> str:
    words = re.findall(r"[A-Za-z0-9']+", text)
    return " ".join(words[:4]).lower() or "the request"


def _synthetic_logprobs(line: str, user_text: str) -> List[TokenLogprob]:
    # Longer requests read as more surprising to the probe.
    base = -0.15 - min(len(user_text), 400) / 160.0
    tokens: List[TokenLogprob] = []
    pieces = re.findall(r"\S+\s*", line) or [line]
    for index, piece in enumerate(pieces):
        logprob = base - 0.05 * (index % 3)
        alternatives = [
            TopLogprob(token=piece, logprob=logprob),
            TopLogprob(token=piece.upper(), logprob=logprob - 1.5),
            TopLogprob(token=piece.lower(), logprob=logprob - 2.5),
        ]
        tokens.append(TokenLogprob(token=piece, logprob=logprob, top_logprobs=alternatives))
    tokens.append(TokenLogprob(token="\n", logprob=-0.01, top_logprobs=[TopLogprob(token="\n", logprob=-0.01)]))
    return tokens


class ScriptedCompletionClient:
    """
    Deterministic completion client used in mock mode.

    Attributes:
        calls: Number of requests served, per phase.
    """

    def __init__(self) -> None:
        self.calls: dict[str, int] = {}

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        phase = request_phase(request)
        self.calls[phase] = self.calls.get(phase, 0) + 1
        user_text = _last_user_text(request)
        LOGGER.debug("[MOCK] %s request (%d messages)", phase, len(request.messages))

        if phase == PHASE_PROBE:
            dim = _pick_dimension(user_text)
            focus = _focus_phrase(user_text)
            first_line = f"DIM: {dim}"
            text = "\n".join(
                [
                    first_line,
                    f"FOCUS: {focus}",
                    f"NEXT: answer the question about {focus}",
                    "WHY: it is what the user asked for",
                ]
            )
            logprobs = _synthetic_logprobs(first_line, user_text) if request.logprobs else []
            return CompletionResponse(text=text, token_logprobs=logprobs)

        if phase == PHASE_EXPLORATION:
            system = request.messages[0].content if request.messages else ""
            match = _CURRENT_DIM.search(system)
            current = match.group(1) if match else None
            alternatives = [dim for dim in _DIMENSIONS if dim != current][:3]
            blocks = [
                "\n".join(
                    [
                        f"DIM: {dim}",
                        f"FOCUS: {dim.lower()} angle",
                        f"NEXT: check the {dim.lower()} angle",
                        "WHY: it breaks the repetition",
                    ]
                )
                for dim in alternatives
            ]
            return CompletionResponse(text="\n\n".join(blocks))

        if phase == PHASE_VERIFY:
            return CompletionResponse(text="PICK: 1")

        if phase == PHASE_SUMMARY:
            match = re.search(r"^User: (.*)$", user_text, re.MULTILINE)
            topic = match.group(1) if match else user_text
            return CompletionResponse(text=f"User is working on: {topic}"[:140])

        system = request.messages[0].content if request.messages else ""
        state = _STATE.search(system)
        label = state.group(1) if state else "?"
        return CompletionResponse(text=f"[mock state={label}] {user_text}".strip())
