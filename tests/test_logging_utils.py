from __future__ import annotations

import logging

from spiral_gate.logging_utils import configure_logging


def _reset_root_logger() -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.NOTSET)


def test_configure_logging_sets_level(monkeypatch) -> None:
    _reset_root_logger()
    monkeypatch.setenv("SPIRAL_GATE_LOG_LEVEL", "debug")

    configure_logging(force=True)

    assert logging.getLogger().level == logging.DEBUG


def test_explicit_level_wins_over_environment(monkeypatch) -> None:
    _reset_root_logger()
    monkeypatch.setenv("SPIRAL_GATE_LOG_LEVEL", "debug")

    configure_logging(force=True, level="warning")

    assert logging.getLogger().level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING


def test_unknown_level_falls_back_to_info(monkeypatch) -> None:
    _reset_root_logger()
    monkeypatch.setenv("SPIRAL_GATE_LOG_LEVEL", "chatty")

    configure_logging(force=True)

    assert logging.getLogger().level == logging.INFO


def test_configure_logging_is_idempotent(monkeypatch) -> None:
    _reset_root_logger()
    monkeypatch.delenv("SPIRAL_GATE_LOG_LEVEL", raising=False)

    configure_logging(force=True)
    first_count = len(logging.getLogger().handlers)

    configure_logging()
    second_count = len(logging.getLogger().handlers)

    assert first_count == second_count != 0
