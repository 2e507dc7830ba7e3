from __future__ import annotations

import asyncio
import json
import logging

from fakeredis import aioredis

from spiral_gate.config import GateConfig
from spiral_gate.metrics import TurnMetricsEmitter
from spiral_gate.mock import get_mock_redis_client


def test_log_mode_writes_record(caplog) -> None:
    emitter = TurnMetricsEmitter(GateConfig(metrics_emit_mode="log"))

    with caplog.at_level(logging.INFO, logger="spiral_gate.metrics.turn_metrics"):
        record = asyncio.run(emitter.emit("turn_completed", {"turn": 1, "state": 0.3}))

    assert record["event"] == "turn_completed"
    assert record["payload"] == {"turn": 1, "state": 0.3}
    assert any("[turn-metrics]" in message for message in caplog.messages)
    assert list(emitter.records) == [record]


def test_disabled_metrics_only_keep_history(caplog) -> None:
    emitter = TurnMetricsEmitter(GateConfig(metrics_enabled=False), history=2)

    with caplog.at_level(logging.INFO, logger="spiral_gate.metrics.turn_metrics"):
        for turn in range(3):
            asyncio.run(emitter.emit("turn_completed", {"turn": turn}))

    assert [record["payload"]["turn"] for record in emitter.records] == [1, 2]
    assert not caplog.messages


def test_stream_mode_appends_to_redis_stream() -> None:
    config = GateConfig(metrics_emit_mode="stream", metrics_stream_key="sg:test:metrics")

    async def _main():
        client = aioredis.FakeRedis(decode_responses=True)
        emitter = TurnMetricsEmitter(config, redis_client=client)
        await emitter.emit("turn_completed", {"session_id": "s1", "turn": 4})
        await emitter.emit("turn_failed", {"session_id": "s1", "turn": 5, "error": "boom"})
        return await client.xrange("sg:test:metrics")

    entries = asyncio.run(_main())

    assert [fields["event"] for _, fields in entries] == ["turn_completed", "turn_failed"]
    assert json.loads(entries[0][1]["payload"]) == {"session_id": "s1", "turn": 4}
    assert entries[1][1]["timestamp"]


def test_mock_mode_streams_to_shared_fake_server() -> None:
    config = GateConfig(metrics_emit_mode="stream", metrics_stream_key="sg:mock:metrics", mock_mode=True)

    async def _main():
        emitter = TurnMetricsEmitter(config)
        await emitter.emit("turn_completed", {"turn": 1})
        reader = get_mock_redis_client()
        return await reader.xrange("sg:mock:metrics")

    entries = asyncio.run(_main())

    assert entries
    assert entries[-1][1]["event"] == "turn_completed"


def test_unreachable_redis_is_not_fatal(caplog) -> None:
    config = GateConfig(metrics_emit_mode="stream", metrics_redis_url="redis://127.0.0.1:1/0")
    emitter = TurnMetricsEmitter(config)

    with caplog.at_level(logging.WARNING, logger="spiral_gate.metrics.turn_metrics"):
        record = asyncio.run(emitter.emit("turn_completed", {"turn": 1}))

    assert record["event"] == "turn_completed"
    assert any("unreachable" in message for message in caplog.messages)
