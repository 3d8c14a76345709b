"""
Unit tests -- streaming NDJSON parser.
"""
import json

import pytest

from querycopilot.ingest.ndjson import parse_ndjson, to_ndjson


def _balanced(outcome):
    meta = outcome.metadata
    return meta.success_lines + meta.error_lines + meta.blank_lines == meta.total_lines


# ── happy path ──────────────────────────────────────────


def test_records_in_order():
    outcome = parse_ndjson('{"a":1}\n{"a":2}\n{"a":3}\n')
    assert [r["a"] for r in outcome.records] == [1, 2, 3]
    assert outcome.errors == []
    assert outcome.metadata.total_lines == 3
    assert outcome.metadata.success_lines == 3


def test_key_order_preserved():
    outcome = parse_ndjson('{"z":1,"a":2,"m":3}')
    assert list(outcome.records[0]) == ["z", "a", "m"]


def test_columns_union_in_first_seen_order():
    outcome = parse_ndjson('{"time":1,"v":2}\n{"time":2,"host":"a"}')
    assert outcome.columns == ["time", "v", "host"]


def test_scalar_types():
    outcome = parse_ndjson('{"s":"x","n":1.5,"b":true,"z":null}')
    assert outcome.records == [{"s": "x", "n": 1.5, "b": True, "z": None}]


def test_empty_input():
    outcome = parse_ndjson("")
    assert outcome.records == []
    assert outcome.metadata.total_lines == 0
    assert _balanced(outcome)


# ── blank lines and terminators ─────────────────────────


def test_blank_lines_counted_not_errors():
    outcome = parse_ndjson('{"a":1}\n\n   \n{"a":2}')
    assert len(outcome.records) == 2
    assert outcome.errors == []
    assert outcome.metadata.total_lines == 4
    assert outcome.metadata.blank_lines == 2
    assert _balanced(outcome)


def test_crlf_line_endings():
    outcome = parse_ndjson('{"a":1}\r\n{"a":2}\r\n')
    assert [r["a"] for r in outcome.records] == [1, 2]
    assert outcome.metadata.total_lines == 2


def test_single_trailing_newline_ignored_but_second_counts():
    outcome = parse_ndjson('{"a":1}\n\n')
    assert outcome.metadata.total_lines == 2
    assert outcome.metadata.blank_lines == 1


# ── malformed lines ─────────────────────────────────────


def test_split_record_example():
    outcome = parse_ndjson('{"a":1}\n{"a":2,\nbad\n{"a":3}')
    assert [r["a"] for r in outcome.records] == [1, 3]
    assert len(outcome.errors) == 1
    assert outcome.errors[0].line_number == 2
    assert "lines 2-3" in outcome.errors[0].message
    meta = outcome.metadata
    assert meta.total_lines == 4
    assert meta.success_lines == 2
    assert meta.error_lines == 2
    assert _balanced(outcome)


def test_single_bad_line_isolated():
    outcome = parse_ndjson('{"a":1}\nnot json\n{"a":2}')
    assert len(outcome.records) == 2
    assert len(outcome.errors) == 1
    assert outcome.errors[0].line_number == 2
    assert "column" in outcome.errors[0].message
    assert _balanced(outcome)


def test_object_split_across_lines_is_recovered():
    outcome = parse_ndjson('{"a":1,\n"b":2}\n{"a":3}')
    assert outcome.records == [{"a": 1, "b": 2}, {"a": 3}]
    assert outcome.errors == []
    assert outcome.metadata.success_lines == 3
    assert _balanced(outcome)


def test_new_record_flushes_incomplete_one():
    outcome = parse_ndjson('{"a":1,\n{"a":2}')
    assert outcome.records == [{"a": 2}]
    assert len(outcome.errors) == 1
    assert "line 1" in outcome.errors[0].message
    assert _balanced(outcome)


def test_incomplete_at_end_of_input():
    outcome = parse_ndjson('{"a":1}\n{"a":')
    assert outcome.records == [{"a": 1}]
    assert len(outcome.errors) == 1
    assert "input ended" in outcome.errors[0].message
    assert _balanced(outcome)


@pytest.mark.parametrize("line, kind", [
    ("[1,2]", "array"),
    ('"text"', "string"),
    ("42", "number"),
    ("true", "boolean"),
    ("null", "null"),
])
def test_non_objects_are_errors(line, kind):
    outcome = parse_ndjson(line)
    assert outcome.records == []
    assert outcome.errors[0].message == f"Expected a JSON object, got {kind}"
    assert _balanced(outcome)


def test_every_line_malformed_still_balanced():
    outcome = parse_ndjson("x\ny\n\nz")
    assert outcome.records == []
    assert len(outcome.errors) == 3
    assert _balanced(outcome)


# ── truncation ──────────────────────────────────────────


def test_max_records_truncates():
    body = "\n".join(json.dumps({"i": i}) for i in range(10))
    outcome = parse_ndjson(body, max_records=3)
    assert [r["i"] for r in outcome.records] == [0, 1, 2]
    assert outcome.metadata.truncated
    assert "Stopped after 3 records" in outcome.metadata.truncation_note
    assert outcome.metadata.total_lines == 3
    assert _balanced(outcome)


def test_max_records_exactly_reached_is_not_truncated():
    outcome = parse_ndjson('{"a":1}\n{"a":2}\n', max_records=2)
    assert not outcome.metadata.truncated
    assert outcome.metadata.truncation_note is None


def test_max_records_zero_means_unlimited():
    outcome = parse_ndjson('{"a":1}\n{"a":2}', max_records=0)
    assert len(outcome.records) == 2


# ── sources ─────────────────────────────────────────────


def test_bytes_source():
    outcome = parse_ndjson(b'{"a":1}\n{"a":2}\n')
    assert len(outcome.records) == 2


def test_invalid_utf8_line_is_an_error():
    outcome = parse_ndjson(b'{"a":"\xff"}\n{"a":2}')
    assert outcome.records == [{"a": 2}]
    assert len(outcome.errors) == 1
    assert outcome.errors[0].line_number == 1
    assert "UTF-8" in outcome.errors[0].message
    assert outcome.metadata.error_lines == 1
    assert _balanced(outcome)


def test_invalid_utf8_line_ends_pending_object():
    outcome = parse_ndjson([b'{"a":1,', b'\xfe\xff', b'{"a":2}'])
    assert outcome.records == [{"a": 2}]
    assert len(outcome.errors) == 2
    assert "incomplete" in outcome.errors[0].message.lower()
    assert _balanced(outcome)


def test_iterable_source():
    lines = iter(['{"a":1}\n', b'{"a":2}\r\n', "", '{"a":3}'])
    outcome = parse_ndjson(lines)
    assert [r["a"] for r in outcome.records] == [1, 2, 3]
    assert outcome.metadata.blank_lines == 1
    assert outcome.metadata.total_lines == 4


def test_parser_is_stateless_between_calls():
    first = parse_ndjson('{"a":')
    second = parse_ndjson('{"a":1}')
    assert len(first.errors) == 1
    assert second.errors == []


# ── serialisation helpers ───────────────────────────────


def test_outcome_is_json_serialisable():
    outcome = parse_ndjson('{"a":1}\nbad')
    dumped = json.loads(outcome.model_dump_json())
    assert dumped["metadata"]["error_lines"] == 1
    assert dumped["errors"][0]["line_number"] == 2


def test_to_ndjson():
    text = to_ndjson([{"a": 1}, {"b": "x"}])
    assert text == '{"a": 1}\n{"b": "x"}'
    assert parse_ndjson(text).records == [{"a": 1}, {"b": "x"}]
