"""
This module defines the configuration schema for the gated turn engine, the
control loop that decides how much compute each conversational turn receives.

The `GateConfig` class is a centralized, strongly-typed dataclass holding every
tunable constant of the loop: the probe request shape, the baseline EMA rate,
the blend and squash parameters of the state resolver, the hysteresis band, the
exploration pulse triggers, memory capacities and metrics settings. Individual
values can be overridden through `SPIRAL_GATE_*` environment variables.
"""

from __future__ import annotations

from dataclasses import dataclass
import os


@dataclass(slots=True)
class GateConfig:
    """
    Provides a structured configuration for the gated turn engine.

    The dataclass is instantiated with sensible defaults, which can be
    selectively overridden by environment variables via `from_environment`.

    Attributes:
        model: Identifier passed to the completion service for every request.
        baseline_eta: EMA rate of the surprisal/entropy baselines.
        initial_state: Compute-state of a freshly created session.
        hysteresis_low: Lower edge of the sticky band.
        hysteresis_high: Upper edge of the sticky band.
        pulse_cooldown_turns: Minimum turns between two exploration pulses.
        ... and others, see the class definition for a full list.
    """

    # Completion service
    model: str = "openai:gpt-4.1"

    # Probe request
    probe_temperature: float = 0.2
    probe_max_tokens: int = 90
    probe_top_logprobs: int = 20
    probe_first_line_tokens: int = 30

    # Running baselines
    baseline_eta: float = 0.06
    surprisal_initial_mean: float = 2.0
    surprisal_initial_variance: float = 1.0
    entropy_initial_mean: float = 1.0
    entropy_initial_variance: float = 1.0

    # State resolver
    initial_state: float = 0.3
    surprisal_weight: float = 0.7
    entropy_weight: float = 0.3
    squash_temperature: float = 1.2
    hysteresis_low: float = 0.48
    hysteresis_high: float = 0.62
    hysteresis_inertia: float = 0.6

    # Stagnation / exploration pulse
    stagnation_capacity: int = 12
    pulse_window: int = 8
    pulse_variance_max: float = 0.002
    pulse_cooldown_turns: int = 6
    pulse_state_ceiling: float = 0.6
    pulse_candidates: int = 3
    pulse_temperature: float = 0.95
    pulse_max_tokens: int = 220
    verify_max_tokens: int = 20
    pulse_min_output_tokens: int = 120

    # Memory
    attention_log_capacity: int = 30
    fragment_capacity: int = 40
    summary_max_chars: int = 160

    # Metrics & observability
    metrics_enabled: bool = True
    metrics_emit_mode: str = "log"  # log | stream
    metrics_redis_url: str = "redis://localhost:6379/0"
    metrics_stream_key: str = "sg:turn:metrics"

    # Offline operation
    mock_mode: bool = False

    @classmethod
    def from_environment(cls) -> "GateConfig":
        """
        Creates a `GateConfig` instance, with values overridden by environment
        variables where available.

        Unparseable values fall back to the default rather than raising, so a
        typo in a deployment manifest never prevents the service from booting.

        Returns:
            A `GateConfig` instance with environment-specific overrides.
        """

        def _int(name: str, default: int) -> int:
            raw = os.environ.get(name)
            if raw is None:
                return default
            try:
                return int(raw)
            except (TypeError, ValueError):
                return default

        def _float(name: str, default: float) -> float:
            raw = os.environ.get(name)
            if raw is None:
                return default
            try:
                return float(raw)
            except (TypeError, ValueError):
                return default

        def _bool(name: str, default: bool) -> bool:
            raw = os.environ.get(name)
            if raw is None:
                return default
            return str(raw).strip().lower() in {"1", "true", "yes", "on"}

        base = cls()

        # Numeric overrides
        base.probe_top_logprobs = _int("SPIRAL_GATE_PROBE_TOP_LOGPROBS", base.probe_top_logprobs)
        base.probe_max_tokens = _int("SPIRAL_GATE_PROBE_MAX_TOKENS", base.probe_max_tokens)
        base.pulse_cooldown_turns = _int("SPIRAL_GATE_PULSE_COOLDOWN", base.pulse_cooldown_turns)
        base.fragment_capacity = _int("SPIRAL_GATE_FRAGMENT_CAPACITY", base.fragment_capacity)
        base.baseline_eta = _float("SPIRAL_GATE_BASELINE_ETA", base.baseline_eta)
        base.initial_state = _float("SPIRAL_GATE_INITIAL_STATE", base.initial_state)

        # String overrides
        base.model = os.environ.get("SPIRAL_GATE_MODEL", base.model)
        base.metrics_emit_mode = os.environ.get("SPIRAL_GATE_METRICS_EMIT_MODE", base.metrics_emit_mode)
        base.metrics_redis_url = os.environ.get("SPIRAL_GATE_METRICS_REDIS_URL", base.metrics_redis_url)
        base.metrics_stream_key = os.environ.get("SPIRAL_GATE_METRICS_STREAM_KEY", base.metrics_stream_key)

        # Booleans
        base.metrics_enabled = _bool("SPIRAL_GATE_METRICS_ENABLED", base.metrics_enabled)
        base.mock_mode = _bool("SPIRAL_GATE_MOCK_MODE", base.mock_mode)

        return base
