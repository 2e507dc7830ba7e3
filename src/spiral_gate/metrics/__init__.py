"""
This package provides the telemetry emitted by the gated turn engine.

`TurnMetricsEmitter` records one event per finished or failed turn and
publishes it either to the log or to a Redis stream.
"""
from .turn_metrics import TurnMetricsEmitter

__all__ = ["TurnMetricsEmitter"]
