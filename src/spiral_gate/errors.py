"""
Exception types raised by the gated turn engine.

Only two situations abort a turn: a malformed request, rejected before any
session is touched, and a failure of the main completion call. Every other
upstream failure is raised as `CompletionError` by the completion client and
absorbed by the phase that issued the request.
"""

from __future__ import annotations


class CompletionError(RuntimeError):
    """Raised by a completion client when the upstream request fails."""

    def __init__(self, message: str, *, model: str | None = None) -> None:
        super().__init__(message)
        self.model = model


class TurnFailedError(RuntimeError):
    """The main completion call failed; nothing was committed to the session."""

    def __init__(self, message: str, *, session_id: str, turn: int) -> None:
        super().__init__(message)
        self.session_id = session_id
        self.turn = turn


class TurnValidationError(ValueError):
    """The turn request is missing a session id or user text."""
