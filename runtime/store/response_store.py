"""
ResponseStore: append-only storage for participant answers.

Rows can be written as JSON lines to:

    <data_dir>/responses/<table>.jsonl

There is no update or delete path. The same (session, question) pair may be
stored more than once (retries, fallback writes); readers collapse those
with last-write-wins.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..models.session_models import ResponseRecord, ResponseTable


logger = logging.getLogger(__name__)


class ResponseStore:
    """Append-only response tables, in memory with optional JSONL files."""

    def __init__(self, data_dir: Optional[str] = None) -> None:
        self._rows: Dict[ResponseTable, List[ResponseRecord]] = {t: [] for t in ResponseTable}
        self._lock = threading.Lock()
        self._data_dir: Optional[Path] = Path(data_dir) / "responses" if data_dir else None
        if self._data_dir is not None:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            self._load_all()

    def append(self, table: ResponseTable, records: Iterable[ResponseRecord]) -> int:
        """Append rows to `table` and return how many were written."""
        batch = list(records)
        if not batch:
            return 0
        with self._lock:
            self._rows[table].extend(batch)
            self._persist(table, batch)
        return len(batch)

    def list_raw(self, table: ResponseTable, session_id: str) -> List[ResponseRecord]:
        """All stored rows for a durable session id, duplicates included."""
        with self._lock:
            return [r for r in self._rows[table] if r.session_id == session_id]

    def list_responses(self, table: ResponseTable, session_id: str) -> Dict[str, str]:
        """question_id -> answer for one session, last write wins."""
        answers: Dict[str, str] = {}
        for row in self.list_raw(table, session_id):
            answers[row.question_id] = row.answer
        return answers

    def _path(self, table: ResponseTable) -> Path:
        if self._data_dir is None:
            raise RuntimeError("ResponseStore was created without a data_dir")
        return self._data_dir / f"{table.value}.jsonl"

    def _persist(self, table: ResponseTable, batch: List[ResponseRecord]) -> None:
        if self._data_dir is None:
            return
        with self._path(table).open("a", encoding="utf-8") as f:
            for row in batch:
                f.write(json.dumps(row.model_dump(), ensure_ascii=False))
                f.write("\n")

    def _load_all(self) -> None:
        for table in ResponseTable:
            path = self._path(table)
            if not path.is_file():
                continue
            with path.open("r", encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        self._rows[table].append(ResponseRecord(**json.loads(line)))
                    except ValueError as exc:
                        logger.warning(
                            "[SESSION] Skipping bad row %s:%d: %s", path, line_no, exc
                        )
