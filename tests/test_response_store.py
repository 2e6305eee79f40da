from runtime.models.session_models import ResponseRecord, ResponseTable
from runtime.store.response_store import ResponseStore


def record(question_id, answer, session_id="durable-1"):
    return ResponseRecord(session_id=session_id, question_id=question_id, answer=answer)


def test_memory_only_store_appends_without_touching_disk(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    store = ResponseStore()

    assert store.append(ResponseTable.PRE_TEST, [record("q1", "a")]) == 1
    assert store.list_responses(ResponseTable.PRE_TEST, "durable-1") == {"q1": "a"}
    assert list(tmp_path.iterdir()) == []


def test_last_write_wins_but_raw_rows_are_kept():
    store = ResponseStore()
    store.append(ResponseTable.POST_TEST, [record("q1", "a"), record("q1", "b")])

    assert store.list_responses(ResponseTable.POST_TEST, "durable-1") == {"q1": "b"}
    assert len(store.list_raw(ResponseTable.POST_TEST, "durable-1")) == 2


def test_rows_survive_a_restart(tmp_path):
    first = ResponseStore(data_dir=str(tmp_path))
    first.append(ResponseTable.DEMOGRAPHICS, [record("age", "30")])

    second = ResponseStore(data_dir=str(tmp_path))

    assert second.list_responses(ResponseTable.DEMOGRAPHICS, "durable-1") == {"age": "30"}
    assert (tmp_path / "responses" / "demographic_responses.jsonl").is_file()


def test_bad_lines_are_skipped_on_load(tmp_path):
    responses = tmp_path / "responses"
    responses.mkdir()
    good = record("q1", "a").model_dump_json()
    (responses / "pre_test_responses.jsonl").write_text(f"{{broken\n{good}\n", encoding="utf-8")

    store = ResponseStore(data_dir=str(tmp_path))

    assert store.list_responses(ResponseTable.PRE_TEST, "durable-1") == {"q1": "a"}
