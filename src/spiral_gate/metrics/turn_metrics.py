"""
This module provides the `TurnMetricsEmitter`, the component that records and
broadcasts per-turn telemetry of the gated turn engine.

Every completed turn produces a ``turn_completed`` record (state, score,
governance stage, pulse outcome, budgets) and every aborted turn a
``turn_failed`` record. Records are kept in a short in-memory ring for
inspection and, when metrics are enabled, either logged or appended to a Redis
stream with ``XADD``. Emission is best-effort: Redis problems are logged and
never surface to the turn that produced the record.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional

from redis.asyncio import Redis

from ..config import GateConfig

LOGGER = logging.getLogger(__name__)


class TurnMetricsEmitter:
    """
    Handles the emission of turn metrics.

    Attributes:
        config: A `GateConfig` carrying the metrics switches and Redis target.
        records: The most recent records, newest last.
    """

    def __init__(
        self,
        config: GateConfig | None = None,
        *,
        redis_client: Any = None,
        history: int = 200,
    ) -> None:
        """
        Initializes the `TurnMetricsEmitter`.

        Args:
            config: Gate configuration holding the metrics settings.
            redis_client: Optional pre-built async Redis client. When given it
                is used as-is and never re-created.
            history: Number of records retained in memory.
        """
        self.config = config or GateConfig()
        self.records: Deque[Dict[str, Any]] = deque(maxlen=history)
        self._redis = redis_client
        self._redis_pinned = redis_client is not None
        self._redis_loop_id: int | None = None
        self._redis_lock = asyncio.Lock()

    async def emit(self, event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Records an event and publishes it to the configured backend.

        Args:
            event: The name of the event.
            payload: JSON-serializable event data.

        Returns:
            The record that was stored.
        """
        record = {
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "payload": payload,
        }
        self.records.append(record)

        if not self.config.metrics_enabled:
            return record

        if self.config.metrics_emit_mode == "log":
            LOGGER.info("[turn-metrics] %s", json.dumps(record, default=str))
            return record

        await self._emit_redis(record, self.config.metrics_stream_key)
        return record

    async def _emit_redis(self, record: Dict[str, Any], stream_key: str) -> None:
        try:
            client = await self._ensure_redis()
        except Exception as exc:  # pragma: no cover - best effort
            LOGGER.warning("Failed to initialize Redis client for metrics: %s", exc)
            return

        if client is None:
            return

        try:
            fields = {
                "event": record["event"],
                "timestamp": record["timestamp"],
                "payload": json.dumps(record["payload"], default=str),
            }
            await client.xadd(stream_key, fields)
        except Exception as exc:
            LOGGER.warning("Failed to push turn metrics to Redis: %s", exc)

    def _build_client(self) -> Any:
        if self.config.mock_mode:
            from ..mock import get_mock_redis_client

            return get_mock_redis_client()
        return Redis.from_url(self.config.metrics_redis_url, decode_responses=True)

    async def _ensure_redis(self) -> Optional[Any]:
        """
        Lazily create the Redis client, re-creating it when the running event
        loop changes. Returns `None` when the endpoint is unreachable.
        """
        if self._redis_pinned:
            return self._redis

        current_loop = asyncio.get_running_loop()
        if self._redis is not None and self._redis_loop_id == id(current_loop):
            return self._redis

        async with self._redis_lock:
            if self._redis is not None and self._redis_loop_id == id(current_loop):
                return self._redis

            if self._redis is not None:
                try:
                    await self._redis.aclose()
                except Exception:  # pragma: no cover - best effort cleanup
                    LOGGER.debug("Ignoring error while closing stale Redis client", exc_info=True)
                self._redis = None
                self._redis_loop_id = None

            client = self._build_client()
            try:
                await client.ping()
            except Exception:
                LOGGER.warning("Redis metrics endpoint unreachable; disabling metrics stream")
                await client.aclose()
                return None

            self._redis = client
            self._redis_loop_id = id(current_loop)
            return self._redis
