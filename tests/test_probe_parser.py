from __future__ import annotations

from spiral_gate.probe import ParsedProbe, Unparsed, parse_candidates, parse_pick, parse_probe, probe_frame


def test_parse_probe_reads_all_four_lines() -> None:
    result = parse_probe("DIM: risk\nFOCUS: rollback path\nNEXT: check backups\nWHY: data could be lost")

    assert isinstance(result, ParsedProbe)
    assert result.dim == "RISK"
    assert result.focus == "rollback path"
    assert result.next == "check backups"
    assert result.why == "data could be lost"


def test_parse_probe_is_case_insensitive_and_tolerates_spacing() -> None:
    result = parse_probe("  dim :GOAL\nfocus:   ship v2  ")

    assert isinstance(result, ParsedProbe)
    assert result.dim == "GOAL"
    assert result.focus == "ship v2"
    assert result.next is None


def test_parse_probe_reduces_dim_to_its_label() -> None:
    result = parse_probe("DIM: <Novelty> maybe\nFOCUS: x")

    assert isinstance(result, ParsedProbe)
    assert result.dim == "NOVELTY"


def test_first_occurrence_of_a_field_wins() -> None:
    result = parse_probe("DIM: GOAL\nDIM: META\nFOCUS: a\nFOCUS: b")

    assert isinstance(result, ParsedProbe)
    assert (result.dim, result.focus) == ("GOAL", "a")


def test_text_without_dim_or_focus_is_unparsed() -> None:
    assert isinstance(parse_probe("Sure! Here is my answer."), Unparsed)
    assert isinstance(parse_probe("NEXT: something\nWHY: because"), Unparsed)
    assert isinstance(parse_probe(""), Unparsed)


def test_probe_frame_of_unparsed_is_empty() -> None:
    frame = probe_frame(parse_probe("no grammar here"))

    assert frame.raw == "no grammar here"
    assert frame.dim is None and frame.focus is None and frame.next is None


def test_parse_candidates_splits_on_blank_lines() -> None:
    text = (
        "DIM: RISK\nFOCUS: a\nNEXT: b\nWHY: c\n"
        "\n   \n"
        "DIM: NOVELTY\nFOCUS: d\nNEXT: e\nWHY: f"
    )

    candidates = parse_candidates(text)

    assert [candidate.dim for candidate in candidates] == ["RISK", "NOVELTY"]
    assert candidates[0].raw == "DIM: RISK\nFOCUS: a\nNEXT: b\nWHY: c"


def test_parse_candidates_skips_short_and_unparseable_blocks() -> None:
    text = "DIM: RISK\n\nhello\nworld\n\nFOCUS: only focus\nWHY: fine"

    candidates = parse_candidates(text)

    assert len(candidates) == 1
    assert candidates[0].focus == "only focus"
    assert candidates[0].dim is None


def test_parse_candidates_reads_only_first_four_lines() -> None:
    text = "WHY: a\nNEXT: b\nFOCUS: c\nWHY: d\nDIM: RISK"

    (candidate,) = parse_candidates(text)

    assert candidate.dim is None
    assert candidate.focus == "c"


def test_parse_candidates_stops_at_limit() -> None:
    block = "DIM: GOAL\nFOCUS: x"
    text = "\n\n".join([block] * 5)

    assert len(parse_candidates(text)) == 3
    assert len(parse_candidates(text, limit=2)) == 2
    assert parse_candidates("   ") == []


def test_parse_pick() -> None:
    assert parse_pick("PICK: 3") == 3
    assert parse_pick("I choose pick:2 here") == 2
    assert parse_pick("PICK: 4") is None
    assert parse_pick("candidate one") is None
    assert parse_pick("") is None
