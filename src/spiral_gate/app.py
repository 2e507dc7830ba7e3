"""
This module is responsible for creating and configuring the FastAPI application.

`create_app` wires logging, the gated turn engine and the API router together.
When no engine is supplied one is built from the environment, which selects
the scripted client in mock mode and the LangChain client otherwise.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .api import get_router
from .engine import MISSING_INPUT_MESSAGE, GatedTurnEngine
from .logging_utils import configure_logging
from .schemas import ErrorResponse
from .settings import ServerSettings


def create_app(engine: GatedTurnEngine | None = None) -> FastAPI:
    """
    Factory function to create and configure the FastAPI application.

    Args:
        engine: Optional pre-built engine; tests inject one wired to a fake
                completion client.

    Returns:
        A fully configured `FastAPI` application instance.
    """
    settings = ServerSettings()
    configure_logging(level=settings.log_level)

    engine = engine or GatedTurnEngine.from_environment()

    app = FastAPI(
        title="Spiral Gate",
        description="Adaptive compute-gating control loop for chat completions",
        version="0.4.0",
    )

    app.state.settings = settings
    app.state.engine = engine

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content=ErrorResponse(error=MISSING_INPUT_MESSAGE).model_dump())

    app.include_router(get_router(engine))

    return app
