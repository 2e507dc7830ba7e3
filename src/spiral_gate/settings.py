"""
This module defines the server settings of the spiral-gate HTTP service.

It uses Pydantic's `BaseSettings` so that host, port and log level can be
supplied as ``SPIRAL_GATE_HOST``, ``SPIRAL_GATE_PORT`` and
``SPIRAL_GATE_LOG_LEVEL``. Tunables of the control loop itself live in
`GateConfig`.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """
    Configuration model for the HTTP service.

    Attributes:
        host: Interface the server binds to.
        port: Port the server listens on.
        log_level: Root log level name.
    """

    model_config = SettingsConfigDict(env_prefix="SPIRAL_GATE_", extra="ignore")

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    log_level: str = "INFO"
