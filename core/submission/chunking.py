"""Payload chunking and request batching.

Oversized answers (serialised timing or dialogue telemetry) are split into
parts that are each stored as their own response row. The part address is
encoded in the question id:

    <question_id>#<batch_id>#<index>/<total>

so every part is independently addressable, and a lost part costs only that
part. Answers themselves stay raw text; no wrapper is added, which keeps each
stored answer within the chunk limit.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, TypeVar
from uuid import uuid4


CHUNK_LIMIT_BYTES = 1800
MAX_BATCH_SIZE = 200

_PART_RE = re.compile(r"^(?P<base>.+)#(?P<batch>[0-9a-f]+)#(?P<index>\d+)/(?P<total>\d+)$")

T = TypeVar("T")


def _split_utf8(payload: str, limit: int) -> List[str]:
    """Split on character boundaries so each piece encodes to < limit bytes."""
    pieces: List[str] = []
    current: List[str] = []
    size = 0
    for ch in payload:
        width = len(ch.encode("utf-8"))
        if current and size + width >= limit:
            pieces.append("".join(current))
            current, size = [], 0
        current.append(ch)
        size += width
    if current:
        pieces.append("".join(current))
    return pieces


def part_question_id(question_id: str, batch_id: str, index: int, total: int) -> str:
    return f"{question_id}#{batch_id}#{index}/{total}"


def split_payload(
    question_id: str,
    payload: str,
    chunk_limit_bytes: int = CHUNK_LIMIT_BYTES,
    batch_id: Optional[str] = None,
) -> List[Dict[str, str]]:
    """Return one `{questionId, answer}` row, or ordered part rows if too big.

    Every part encodes to fewer than `chunk_limit_bytes` bytes, except a
    single character that is itself at least that wide.
    """
    if chunk_limit_bytes < 2:
        raise ValueError("chunk_limit_bytes must be at least 2")
    if len(payload.encode("utf-8")) <= chunk_limit_bytes:
        return [{"questionId": question_id, "answer": payload}]

    batch_id = batch_id or uuid4().hex
    pieces = _split_utf8(payload, chunk_limit_bytes)
    total = len(pieces)
    return [
        {"questionId": part_question_id(question_id, batch_id, index, total), "answer": piece}
        for index, piece in enumerate(pieces)
    ]


@dataclass
class ChunkAddress:
    base: str
    batch_id: str
    index: int
    total: int


def parse_part_id(question_id: str) -> Optional[ChunkAddress]:
    match = _PART_RE.match(question_id)
    if match is None:
        return None
    return ChunkAddress(
        base=match.group("base"),
        batch_id=match.group("batch"),
        index=int(match.group("index")),
        total=int(match.group("total")),
    )


@dataclass
class ReassembledPayload:
    question_id: str
    batch_id: str
    total: int
    parts: Dict[int, str] = field(default_factory=dict)

    @property
    def missing(self) -> List[int]:
        return [i for i in range(self.total) if i not in self.parts]

    @property
    def complete(self) -> bool:
        return not self.missing

    @property
    def data(self) -> Optional[str]:
        if not self.complete:
            return None
        return "".join(self.parts[i] for i in range(self.total))


def reassemble_chunks(answers: Dict[str, str]) -> Dict[str, ReassembledPayload]:
    """Group part rows by batch; keys are batch ids.

    `answers` maps question id to answer, as returned by a read that has
    already collapsed duplicate rows.
    """
    batches: Dict[str, ReassembledPayload] = {}
    for question_id, answer in answers.items():
        address = parse_part_id(question_id)
        if address is None:
            continue
        payload = batches.setdefault(
            address.batch_id,
            ReassembledPayload(address.base, address.batch_id, address.total),
        )
        payload.parts[address.index] = answer
    return batches


def batched(items: Sequence[T], size: int = MAX_BATCH_SIZE) -> List[List[T]]:
    if size <= 0:
        raise ValueError("batch size must be positive")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def as_answer_rows(answers: Iterable) -> List[Dict[str, str]]:
    """Normalise a mapping or a list of rows to `{questionId, answer}` dicts."""
    if isinstance(answers, dict):
        return [{"questionId": str(k), "answer": str(v)} for k, v in answers.items()]
    return [dict(row) for row in answers]
