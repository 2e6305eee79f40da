"""Durable local queue for write commands that failed to reach the server.

Entries live as one JSON array under a single storage key, so a page reload
or process restart picks them up again. The queue is a best-effort
enhancement: if local storage is missing or broken, enqueue and drain turn
into no-ops and the write is lost (fire-and-forget).

Retry policy:
- backoff after N failed attempts is min(max_backoff, base_backoff * N),
  i.e. linear growth capped at max_backoff;
- entries older than max_age are dropped without another attempt;
- at most max_items entries are kept, oldest-by-creation evicted first;
- a non-null dedupe_key keeps only the latest intent for that key.
"""

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol
from uuid import uuid4

from exceptions.exceptions import (
    AlreadyCompletedError,
    InvalidTransitionError,
    PayloadValidationError,
    QueueStorageError,
    RemoteCallError,
    SessionNotFoundError,
)

from .storage import KeyValueStorage


logger = logging.getLogger(__name__)


STORAGE_KEY = "edge_function_queue_v1"
MAX_QUEUE_ITEMS = 200
MAX_ITEM_AGE_MS = 7 * 24 * 60 * 60 * 1000
BASE_BACKOFF_MS = 5000
MAX_BACKOFF_MS = 60000


def now_ms() -> int:
    return int(time.time() * 1000)


class RemoteCaller(Protocol):
    """Anything that can replay a queued command against the server."""

    async def call(self, operation: str, body: Dict[str, Any]) -> Dict[str, Any]:
        ...


@dataclass
class QueuedCommand:
    id: str
    operation: str
    body: Dict[str, Any]
    attempts: int = 0
    created_at: int = 0
    next_attempt_at: int = 0
    dedupe_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["QueuedCommand"]:
        """Build an entry from stored JSON; returns None for unusable rows."""
        operation = data.get("operation")
        body = data.get("body")
        if not isinstance(operation, str) or not isinstance(body, dict):
            return None
        created_at = int(data.get("created_at") or 0)
        return cls(
            id=str(data.get("id") or uuid4()),
            operation=operation,
            body=body,
            attempts=int(data.get("attempts") or 0),
            created_at=created_at,
            next_attempt_at=int(data.get("next_attempt_at") or created_at),
            dedupe_key=data.get("dedupe_key") or None,
        )


@dataclass
class DrainReport:
    """Outcome counters of a single drain pass."""

    skipped: bool = False
    attempted: int = 0
    sent: int = 0
    retried: int = 0
    expired: int = 0
    dropped: int = 0
    deferred: int = 0
    failures: List[str] = field(default_factory=list)


class DurableQueue:
    """Persistent retry queue for remote write commands.

    Parameters
    ----------
    storage:
        Key/value blob store. When None the queue is disabled and every
        operation is a no-op.
    remote:
        Object exposing ``async call(operation, body)`` used by drain().
    clock:
        Returns the current time in epoch milliseconds. Injected so tests can
        move time deterministically.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStorage],
        remote: Optional[RemoteCaller] = None,
        *,
        clock: Callable[[], int] = now_ms,
        max_items: int = MAX_QUEUE_ITEMS,
        max_age_ms: int = MAX_ITEM_AGE_MS,
        base_backoff_ms: int = BASE_BACKOFF_MS,
        max_backoff_ms: int = MAX_BACKOFF_MS,
        storage_key: str = STORAGE_KEY,
    ) -> None:
        self._storage = storage
        self._remote = remote
        self._clock = clock
        self._max_items = max_items
        self._max_age_ms = max_age_ms
        self._base_backoff_ms = base_backoff_ms
        self._max_backoff_ms = max_backoff_ms
        self._storage_key = storage_key

        # At most one drain pass in flight per queue instance.
        self._drain_lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self._storage is not None

    @property
    def is_draining(self) -> bool:
        return self._drain_lock.locked()

    def bind_remote(self, remote: RemoteCaller) -> None:
        self._remote = remote

    def backoff_ms(self, attempts: int) -> int:
        return min(self._max_backoff_ms, self._base_backoff_ms * attempts)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(
        self,
        operation: str,
        body: Dict[str, Any],
        dedupe_key: Optional[str] = None,
    ) -> Optional[QueuedCommand]:
        """Persist a write intent for later retry.

        Returns the stored entry, or None when the intent was dropped
        (storage disabled or body not JSON-serialisable).
        """
        if self._storage is None:
            logger.debug("[QUEUE] Storage disabled; dropping %s", operation)
            return None

        try:
            json.dumps(body)
        except (TypeError, ValueError) as exc:
            logger.warning("[QUEUE] Body for %s is not serialisable: %s", operation, exc)
            return None

        now = self._clock()
        queue = [item for item in self._read() if not self._is_expired(item, now)]
        entry = QueuedCommand(
            id=str(uuid4()),
            operation=operation,
            body=body,
            attempts=0,
            created_at=now,
            next_attempt_at=now,
            dedupe_key=dedupe_key,
        )

        replaced = False
        if dedupe_key:
            for index, item in enumerate(queue):
                if item.dedupe_key == dedupe_key:
                    queue[index] = entry
                    replaced = True
                    break
        if not replaced:
            queue.append(entry)

        self._write(self._bounded(queue))
        logger.info(
            "[QUEUE] Enqueued %s (dedupe_key=%s, replaced=%s)",
            operation,
            dedupe_key,
            replaced,
        )
        return entry

    async def drain(self) -> DrainReport:
        """Retry every eligible entry once.

        Overlapping calls return immediately with ``skipped=True``.
        """
        if self._drain_lock.locked() or self._storage is None:
            return DrainReport(skipped=True)

        async with self._drain_lock:
            return await self._drain_once()

    def pending(self) -> List[QueuedCommand]:
        return self._read()

    def clear(self) -> None:
        if self._storage is None:
            return
        try:
            self._storage.remove_item(self._storage_key)
        except QueueStorageError as exc:
            logger.error("[QUEUE] Failed to clear queue: %s", exc)

    def __len__(self) -> int:
        return len(self._read())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _drain_once(self) -> DrainReport:
        report = DrainReport()
        snapshot = self._read()
        if not snapshot:
            return report
        if self._remote is None:
            raise RuntimeError("DurableQueue.drain() called without a remote caller")

        now = self._clock()
        remaining: List[QueuedCommand] = []

        try:
            for item in snapshot:
                if self._is_expired(item, now):
                    report.expired += 1
                    logger.warning(
                        "[QUEUE] Dropping expired %s (id=%s, attempts=%d)",
                        item.operation,
                        item.id,
                        item.attempts,
                    )
                    continue
                if item.next_attempt_at > now:
                    report.deferred += 1
                    remaining.append(item)
                    continue

                report.attempted += 1
                try:
                    await self._remote.call(item.operation, item.body)
                except AlreadyCompletedError:
                    report.sent += 1
                    logger.info("[QUEUE] %s already applied (id=%s)", item.operation, item.id)
                except (PayloadValidationError, SessionNotFoundError, InvalidTransitionError) as exc:
                    # Retrying cannot succeed for these outcomes.
                    report.dropped += 1
                    report.failures.append(str(exc))
                    logger.warning(
                        "[QUEUE] Dropping %s (id=%s): %s", item.operation, item.id, exc
                    )
                except RemoteCallError as exc:
                    item.attempts += 1
                    item.next_attempt_at = self._clock() + self.backoff_ms(item.attempts)
                    remaining.append(item)
                    report.retried += 1
                    report.failures.append(str(exc))
                    logger.warning(
                        "[QUEUE] Retry %d for %s scheduled at %d: %s",
                        item.attempts,
                        item.operation,
                        item.next_attempt_at,
                        exc,
                    )
                else:
                    report.sent += 1
        finally:
            self._write(self._merge_concurrent(snapshot, remaining))

        logger.info(
            "[QUEUE] Drain pass: sent=%d retried=%d expired=%d dropped=%d deferred=%d",
            report.sent,
            report.retried,
            report.expired,
            report.dropped,
            report.deferred,
        )
        return report

    def _merge_concurrent(
        self,
        snapshot: List[QueuedCommand],
        remaining: List[QueuedCommand],
    ) -> List[QueuedCommand]:
        """Fold entries enqueued while the drain was awaiting the network
        into the state written back at the end of the pass."""
        seen_ids = {item.id for item in snapshot}
        added = [item for item in self._read() if item.id not in seen_ids]
        if not added:
            return self._bounded(remaining)

        newer_keys = {item.dedupe_key for item in added if item.dedupe_key}
        kept = [item for item in remaining if item.dedupe_key not in newer_keys]
        return self._bounded(kept + added)

    def _bounded(self, queue: List[QueuedCommand]) -> List[QueuedCommand]:
        if len(queue) <= self._max_items:
            return queue
        ordered = sorted(queue, key=lambda item: item.created_at)
        evicted = len(ordered) - self._max_items
        logger.warning("[QUEUE] Queue full; evicting %d oldest entries", evicted)
        return ordered[evicted:]

    def _is_expired(self, item: QueuedCommand, now: int) -> bool:
        return now - item.created_at > self._max_age_ms

    def _read(self) -> List[QueuedCommand]:
        if self._storage is None:
            return []
        try:
            raw = self._storage.get_item(self._storage_key)
        except QueueStorageError as exc:
            logger.error("[QUEUE] Failed to read queue: %s", exc)
            return []
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.error("[QUEUE] Stored queue is not valid JSON; ignoring it")
            return []
        if not isinstance(parsed, list):
            return []

        items: List[QueuedCommand] = []
        for row in parsed:
            if not isinstance(row, dict):
                continue
            item = QueuedCommand.from_dict(row)
            if item is not None:
                items.append(item)
        return items

    def _write(self, items: List[QueuedCommand]) -> None:
        if self._storage is None:
            return
        try:
            self._storage.set_item(
                self._storage_key,
                json.dumps([item.to_dict() for item in items]),
            )
        except QueueStorageError as exc:
            logger.error("[QUEUE] Failed to persist queue: %s", exc)
