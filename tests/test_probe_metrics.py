from __future__ import annotations

import math

import pytest

from spiral_gate.probe import approx_entropy, estimate_probe_metrics, mean_surprisal, slice_first_line


def test_slice_stops_after_first_newline_token(build_logprobs) -> None:
    tokens = build_logprobs([("DIM", -0.1), (": GOAL\n", -0.2), ("FOCUS", -0.3)])

    sliced = slice_first_line(tokens)

    assert [token.token for token in sliced] == ["DIM", ": GOAL\n"]


def test_slice_caps_at_max_tokens(build_logprobs) -> None:
    tokens = build_logprobs([(f"t{i}", -1.0) for i in range(50)])

    assert len(slice_first_line(tokens)) == 30
    assert len(slice_first_line(tokens, max_tokens=5)) == 5


def test_mean_surprisal_is_mean_negative_logprob(build_logprobs) -> None:
    tokens = build_logprobs([("a", -1.0), ("b", -3.0)])

    assert mean_surprisal(tokens) == pytest.approx(2.0)
    assert mean_surprisal([]) is None


def test_entropy_counts_residual_mass(build_logprobs) -> None:
    # One alternative at p=0.5 leaves r=0.5 outside the top-k: H = ln 2.
    tokens = build_logprobs([("a", math.log(0.5))], alternatives=[[math.log(0.5)]])

    assert approx_entropy(tokens) == pytest.approx(math.log(2), abs=1e-6)


def test_entropy_without_residual_mass(build_logprobs) -> None:
    tokens = build_logprobs([("a", math.log(0.5))], alternatives=[[math.log(0.5), math.log(0.5)]])

    assert approx_entropy(tokens) == pytest.approx(math.log(2), abs=1e-6)


def test_entropy_is_none_without_alternatives(build_logprobs) -> None:
    tokens = build_logprobs([("a", -1.0), ("b", -2.0)])

    assert approx_entropy(tokens) is None
    assert approx_entropy([]) is None


def test_estimate_uses_first_line_only(build_logprobs) -> None:
    tokens = build_logprobs(
        [("DIM", -1.0), (":", -1.0), (" GOAL\n", -1.0), ("FOCUS", -9.0)],
        alternatives=[[-0.1], [], [-0.1]],
    )

    metrics = estimate_probe_metrics(tokens)

    assert metrics.surprisal == pytest.approx(1.0)
    assert metrics.tokens_used == 3
    assert metrics.entropy is not None


def test_estimate_reports_missing_signals_as_none() -> None:
    metrics = estimate_probe_metrics([])

    assert metrics.surprisal is None
    assert metrics.entropy is None
    assert metrics.tokens_used == 0
