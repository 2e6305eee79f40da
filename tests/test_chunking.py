import pytest

from core.submission.chunking import (
    as_answer_rows,
    batched,
    parse_part_id,
    reassemble_chunks,
    split_payload,
)


def test_small_payload_is_a_single_row():
    rows = split_payload("__meta_timing_v1", "[1,2,3]", chunk_limit_bytes=100)
    assert rows == [{"questionId": "__meta_timing_v1", "answer": "[1,2,3]"}]


def test_payload_of_two_and_a_half_limits_gives_three_parts():
    limit = 100
    payload = "x" * 250

    rows = split_payload("__meta_timing_v1", payload, chunk_limit_bytes=limit, batch_id="abc123")

    assert len(rows) == 3
    assert all(len(row["answer"].encode("utf-8")) < limit for row in rows)
    assert "".join(row["answer"] for row in rows) == payload
    addresses = [parse_part_id(row["questionId"]) for row in rows]
    assert [a.index for a in addresses] == [0, 1, 2]
    assert {a.batch_id for a in addresses} == {"abc123"}
    assert {a.total for a in addresses} == {3}
    assert {a.base for a in addresses} == {"__meta_timing_v1"}


def test_multibyte_characters_are_never_split():
    payload = "é" * 75  # 150 bytes
    rows = split_payload("q", payload, chunk_limit_bytes=51)

    assert all(len(row["answer"].encode("utf-8")) < 51 for row in rows)
    assert "".join(row["answer"] for row in rows) == payload


def test_parts_stay_under_the_limit_at_exact_multiples():
    rows = split_payload("q", "z" * 200, chunk_limit_bytes=100)

    assert len(rows) == 3
    assert all(len(row["answer"]) < 100 for row in rows)


def test_chunk_limit_must_allow_a_part():
    with pytest.raises(ValueError):
        split_payload("q", "abc", chunk_limit_bytes=1)


def test_reassemble_rebuilds_payload_in_order():
    payload = "".join(str(i % 10) for i in range(1000))
    rows = split_payload("__meta_dialogue_v1", payload, chunk_limit_bytes=64)
    answers = {row["questionId"]: row["answer"] for row in reversed(rows)}

    batches = reassemble_chunks(answers)

    assert len(batches) == 1
    rebuilt = next(iter(batches.values()))
    assert rebuilt.complete
    assert rebuilt.question_id == "__meta_dialogue_v1"
    assert rebuilt.data == payload


def test_reassemble_reports_missing_parts():
    rows = split_payload("__meta_timing_v1", "y" * 300, chunk_limit_bytes=100)
    answers = {row["questionId"]: row["answer"] for row in rows}
    del answers[rows[1]["questionId"]]

    rebuilt = next(iter(reassemble_chunks(answers).values()))

    assert rebuilt.missing == [1]
    assert rebuilt.data is None


def test_plain_question_ids_are_ignored_by_reassembly():
    assert reassemble_chunks({"q1": "a", "age": "30"}) == {}
    assert parse_part_id("q1") is None


def test_batched_splits_into_fixed_size_groups():
    groups = batched(list(range(450)), 200)
    assert [len(g) for g in groups] == [200, 200, 50]
    assert batched([], 200) == []


def test_batched_rejects_non_positive_size():
    with pytest.raises(ValueError):
        batched([1], 0)


def test_as_answer_rows_accepts_mapping_and_rows():
    assert as_answer_rows({"age": 30}) == [{"questionId": "age", "answer": "30"}]
    rows = [{"questionId": "q1", "answer": "b"}]
    assert as_answer_rows(rows) == rows
