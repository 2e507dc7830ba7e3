"""
Entry point for running the spiral-gate service with ``python -m spiral_gate``.
"""
import uvicorn

from .logging_utils import configure_logging
from .settings import ServerSettings


def main() -> None:
    """Load the server settings and serve the application with uvicorn."""
    settings = ServerSettings()
    configure_logging(level=settings.log_level)
    uvicorn.run(
        "spiral_gate.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
