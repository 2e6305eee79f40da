"""SubmissionClient: gets every participant write to the server eventually.

Two submission styles:

- submit(): fire-and-forget. Transient failures are queued in the durable
  queue and the call returns normally; the participant is never blocked.
- submit_final(): blocking. On a transient failure the fallback writer is
  tried; only when that fails too is SubmissionFailedError raised (and the
  command queued anyway so a later drain can still land it).

Failure categories:
1. RemoteCallError -> transient, queue/fallback
2. PayloadValidationError -> raised to the caller, never queued
3. SessionNotFoundError -> raised; the caller restarts the study
4. AlreadyCompletedError -> treated as success
5. InvalidTransitionError on completion -> the session already ended some
   other way (withdrawn, expired, reset); treated as success and logged
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from core.queue.durable_queue import DurableQueue
from core.scoring import SuspicionAssessment, TimingEntry
from exceptions.exceptions import (
    AlreadyCompletedError,
    InvalidTransitionError,
    PayloadValidationError,
    RemoteCallError,
    SubmissionFailedError,
)

from .chunking import CHUNK_LIMIT_BYTES, MAX_BATCH_SIZE, as_answer_rows, batched, split_payload
from .remote import OP_COMPLETE_SESSION, OP_SAVE_STUDY_DATA, FallbackWriter, RemoteEndpoint


logger = logging.getLogger(__name__)


META_PREFIX = "__meta_"
META_TIMING_ID = "__meta_timing_v1"
META_DIALOGUE_ID = "__meta_dialogue_v1"


def is_meta_question_id(question_id: str) -> bool:
    """Telemetry rows share the post-test table; they are not answers."""
    return question_id.startswith(META_PREFIX)


@dataclass
class CreatedSession:
    session_id: str
    id: str


class SubmissionClient:
    """
    Parameters
    ----------
    remote:
        RemoteEndpoint (or anything with ``async call(operation, body)``).
    queue:
        DurableQueue used for transient failures, normally bound to the
        same remote so drains replay through it.
    fallback:
        Optional FallbackWriter for blocking submissions.
    chunk_limit_bytes:
        Maximum UTF-8 size of a single telemetry answer before it is split.
    batch_size:
        Maximum number of answer rows per request.
    """

    def __init__(
        self,
        remote: RemoteEndpoint,
        queue: DurableQueue,
        fallback: Optional[FallbackWriter] = None,
        chunk_limit_bytes: int = CHUNK_LIMIT_BYTES,
        batch_size: int = MAX_BATCH_SIZE,
    ) -> None:
        self.remote = remote
        self.queue = queue
        self.fallback = fallback
        self.chunk_limit_bytes = chunk_limit_bytes
        self.batch_size = batch_size

    # ------------------------------------------------------------------
    # Core submission paths
    # ------------------------------------------------------------------

    async def submit(
        self,
        operation: str,
        body: Dict[str, Any],
        dedupe_key: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Send now; on a transient failure queue it and return None."""
        try:
            return await self.remote.call(operation, body)
        except AlreadyCompletedError:
            logger.info("[SUBMIT] %s/%s already applied", operation, body.get("action"))
            return {"success": True, "alreadyCompleted": True}
        except PayloadValidationError as exc:
            logger.error("[SUBMIT] Rejected %s/%s: %s", operation, body.get("action"), exc)
            raise
        except RemoteCallError as exc:
            logger.warning(
                "[SUBMIT] %s/%s failed, queued for retry: %s", operation, body.get("action"), exc
            )
            self.queue.enqueue(operation, body, dedupe_key=dedupe_key)
            return None

    async def submit_final(self, operation: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Send now; fall back to the direct insert path before giving up.

        Raises
        ------
        SubmissionFailedError
            When both the remote call and the fallback write failed.
        """
        try:
            return await self.remote.call(operation, body)
        except AlreadyCompletedError:
            return {"success": True, "alreadyCompleted": True}
        except RemoteCallError as exc:
            logger.warning("[SUBMIT] Final %s/%s failed: %s", operation, body.get("action"), exc)
            cause: Exception = exc

        if self.fallback is not None:
            try:
                return await self.fallback.write(operation, body)
            except (RemoteCallError, PayloadValidationError) as exc:
                logger.error("[SUBMIT] Fallback for %s failed: %s", operation, exc)
                cause = exc

        self.queue.enqueue(operation, body)
        raise SubmissionFailedError(operation, cause)

    async def submit_records(
        self,
        action: str,
        session_id: str,
        key: str,
        records: Sequence[Dict[str, str]],
        final: bool = False,
        as_mapping: bool = False,
    ) -> int:
        """Send answer rows in batches; returns how many rows were sent directly.

        A failing batch stops the loop. The failing batch and every later
        one are queued, so rows may land partially and out of order.
        With `as_mapping` each batch goes out as `{questionId: answer}`.
        """
        chunks = batched(list(records), self.batch_size)
        sent = 0
        for index, batch in enumerate(chunks):
            body = self._records_body(action, session_id, key, batch, as_mapping)
            if final:
                try:
                    await self.submit_final(OP_SAVE_STUDY_DATA, body)
                except SubmissionFailedError:
                    self._queue_rest(action, session_id, key, chunks[index + 1 :], as_mapping)
                    raise
                sent += len(batch)
                continue

            result = await self.submit(OP_SAVE_STUDY_DATA, body)
            if result is None:
                self._queue_rest(action, session_id, key, chunks[index + 1 :], as_mapping)
                break
            sent += len(batch)
        return sent

    @staticmethod
    def _records_body(
        action: str,
        session_id: str,
        key: str,
        batch: List[Dict[str, str]],
        as_mapping: bool,
    ) -> Dict[str, Any]:
        records: Any = batch
        if as_mapping:
            records = {row["questionId"]: row["answer"] for row in batch}
        return {"action": action, "sessionId": session_id, key: records}

    def _queue_rest(
        self,
        action: str,
        session_id: str,
        key: str,
        remaining: List[List[Dict[str, str]]],
        as_mapping: bool = False,
    ) -> None:
        for batch in remaining:
            self.queue.enqueue(
                OP_SAVE_STUDY_DATA,
                self._records_body(action, session_id, key, batch, as_mapping),
            )
        if remaining:
            logger.warning("[SUBMIT] Queued %d remaining %s batches", len(remaining), action)

    # ------------------------------------------------------------------
    # Study operations
    # ------------------------------------------------------------------

    async def create_session(self, mode: str) -> CreatedSession:
        """Create the server session. Blocking: there is nothing to queue
        against before a session exists."""
        data = await self.remote.call(
            OP_SAVE_STUDY_DATA, {"action": "create_session", "mode": mode}
        )
        return CreatedSession(session_id=data["sessionId"], id=data["id"])

    async def save_demographics(self, session_id: str, answers: Mapping[str, str]) -> int:
        """Demographics travel as a `{field: value}` mapping, not as rows."""
        return await self.submit_records(
            "save_demographics",
            session_id,
            "demographics",
            as_answer_rows(dict(answers)),
            as_mapping=True,
        )

    async def save_pre_test(self, session_id: str, answers: Iterable) -> int:
        return await self.submit_records(
            "save_pre_test", session_id, "preTestResponses", as_answer_rows(answers)
        )

    async def save_post_test(self, session_id: str, answers: Iterable) -> int:
        """Final answers: blocking, with the fallback path."""
        return await self.submit_records(
            "save_post_test", session_id, "postTestResponses", as_answer_rows(answers), final=True
        )

    async def save_telemetry(
        self,
        session_id: str,
        timing_entries: Sequence[TimingEntry],
        dialogue: Optional[Sequence[Dict[str, Any]]] = None,
        mode: Optional[str] = None,
        final: bool = False,
    ) -> int:
        """Store timing (and optionally dialogue) telemetry as meta answer rows.

        Each payload is chunked if its JSON form exceeds the chunk limit.
        """
        rows = split_payload(
            META_TIMING_ID,
            json.dumps(
                {"version": 1, "mode": mode, "entries": [e.to_dict() for e in timing_entries]},
                separators=(",", ":"),
            ),
            self.chunk_limit_bytes,
        )
        if dialogue:
            rows += split_payload(
                META_DIALOGUE_ID,
                json.dumps({"version": 1, "mode": mode, "messages": list(dialogue)}, separators=(",", ":")),
                self.chunk_limit_bytes,
            )
        logger.info("[SUBMIT] Telemetry for %s packed into %d rows", session_id, len(rows))
        return await self.submit_records(
            "save_post_test", session_id, "postTestResponses", rows, final=final
        )

    async def update_mode(self, session_id: str, mode: str) -> Optional[Dict[str, Any]]:
        return await self.submit(
            OP_SAVE_STUDY_DATA,
            {"action": "update_mode", "sessionId": session_id, "mode": mode},
            dedupe_key=f"update_mode:{session_id}",
        )

    async def reset_session(self, session_id: str, reason: str) -> Optional[Dict[str, Any]]:
        return await self.submit(
            OP_SAVE_STUDY_DATA,
            {"action": "reset_session", "sessionId": session_id, "reason": reason},
            dedupe_key=f"reset_session:{session_id}",
        )

    async def withdraw_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await self.submit(
            OP_SAVE_STUDY_DATA,
            {"action": "withdraw_session", "sessionId": session_id},
            dedupe_key=f"withdraw_session:{session_id}",
        )

    async def update_activity(self, session_id: str) -> Optional[Dict[str, Any]]:
        # Only the latest heartbeat matters.
        return await self.submit(
            OP_SAVE_STUDY_DATA,
            {"action": "update_activity", "sessionId": session_id},
            dedupe_key=f"update_activity:{session_id}",
        )

    async def report_suspicious(
        self, session_id: str, assessment: SuspicionAssessment
    ) -> Optional[Dict[str, Any]]:
        return await self.submit(
            OP_SAVE_STUDY_DATA,
            {
                "action": "report_suspicious",
                "sessionId": session_id,
                "suspicionScore": assessment.score,
                "suspiciousFlags": [f.to_dict() for f in assessment.flags],
            },
            dedupe_key=f"report_suspicious:{session_id}",
        )

    async def complete_session(
        self,
        session_id: str,
        timing_entries: Optional[Sequence[TimingEntry]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Completion is idempotent server-side, so replays are harmless.

        A session that already ended another way (withdrawn, expired, reset)
        cannot complete; that is reported as success with its final state.
        """
        body: Dict[str, Any] = {"sessionId": session_id}
        if timing_entries is not None:
            body["timingEntries"] = [e.to_dict() for e in timing_entries]
        try:
            return await self.submit(OP_COMPLETE_SESSION, body, dedupe_key=f"complete:{session_id}")
        except InvalidTransitionError as exc:
            logger.warning(
                "[SUBMIT] Session %s already ended as %s, completion skipped", session_id, exc.current
            )
            return {"success": True, "alreadyCompleted": False, "state": exc.current}
