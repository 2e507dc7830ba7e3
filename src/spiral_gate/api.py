"""
This module defines the FastAPI routes of the spiral-gate service.

`get_router` wires the turn API and a few session-inspection endpoints to a
`GatedTurnEngine`. Errors follow the turn API contract: a missing session id or
blank text is a 400 with ``{"error": "Missing sessionId or userText"}``, and any
other failure is a 500 carrying the underlying message.
"""
import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from .engine import GatedTurnEngine
from .errors import TurnValidationError
from .schemas import ErrorResponse, SessionSummary, TurnRequest

LOGGER = logging.getLogger(__name__)


def get_router(engine: GatedTurnEngine) -> APIRouter:
    """
    Creates the API router for the gated turn engine.

    Args:
        engine: The engine that executes turns and owns the session store.

    Returns:
        A configured `APIRouter`.
    """
    router = APIRouter()

    @router.get("/health")
    def health_check():
        """Provides a simple health check endpoint for the service."""
        return {"status": "healthy"}

    @router.post("/api/step", responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
    async def step(request: TurnRequest):
        """Runs one gated turn and returns the reply with its debug record."""
        try:
            result = await engine.run_turn(request.session_id, request.user_text)
        except TurnValidationError as exc:
            return JSONResponse(status_code=400, content=ErrorResponse(error=str(exc)).model_dump())
        except Exception as exc:
            LOGGER.exception("Turn failed for session %s", request.session_id)
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(error=str(exc) or exc.__class__.__name__).model_dump(),
            )
        return result.to_response().to_wire()

    @router.get("/sessions/{session_id}")
    def get_session(session_id: str):
        """Summarizes a live session, or 404 if it does not exist."""
        session = engine.store.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return SessionSummary(**session.describe()).model_dump(by_alias=True)

    @router.delete("/sessions/{session_id}")
    async def delete_session(session_id: str):
        """Drops a session and all of its state."""
        if not await engine.store.delete(session_id):
            raise HTTPException(status_code=404, detail="Session not found")
        return {"status": "success"}

    return router
