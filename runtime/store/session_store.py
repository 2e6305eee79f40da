"""Session storage for the study runtime.

This is an in-memory dict of session_id -> Session, with optional JSON
persistence under a data directory.

The design is intentionally simple:
- In-memory access is the primary source of truth during a run.
- If a data_dir is configured, sessions are also written to
  `data_dir/sessions/<session_id>.json` so that they can be reloaded
  on restart.
- Writes can be made conditional on the lifecycle/validation state the
  caller read, so two concurrent requests for the same session cannot both
  apply a transition (read-then-conditional-write).
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from ..models.session_models import (
    LifecycleState,
    Session,
    StudyMode,
    ValidationStatus,
)


logger = logging.getLogger(__name__)


class StaleSessionError(Exception):
    """Raised when a conditional write finds the stored state has moved on."""

    def __init__(self, session_id: str, expected: str, actual: str) -> None:
        self.session_id = session_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Session {session_id} changed concurrently: expected {expected}, found {actual}"
        )


class SessionStore:
    """In-memory + optional file-backed session store.

    Parameters
    ----------
    data_dir:
        Base directory for storing session JSON files. If provided,
        sessions will be written to and read from
        `data_dir/sessions/<session_id>.json`.
    """

    def __init__(self, data_dir: Optional[str] = None) -> None:
        # In-memory cache keyed by the client-facing session_id.
        self._sessions: Dict[str, Session] = {}
        # Durable id -> client-facing session_id.
        self._durable_index: Dict[str, str] = {}
        self._lock = threading.Lock()

        self._data_dir: Optional[Path] = Path(data_dir) if data_dir else None
        if self._data_dir is not None:
            self._sessions_dir.mkdir(parents=True, exist_ok=True)
            self._load_all()

    @property
    def _sessions_dir(self) -> Path:
        base = self._data_dir if self._data_dir is not None else Path("runtime/data")
        return base / "sessions"

    def create_session(self, mode: StudyMode) -> Session:
        """Insert a new ACTIVE session and return it.

        The durable id and the client-facing session_id are both generated
        here, together with the insert.
        """
        session = Session(mode=mode, modes_used=[mode])
        with self._lock:
            self._sessions[session.session_id] = session
            self._durable_index[session.id] = session.session_id
            self._persist_session(session)
        return session.model_copy(deep=True)

    def get_session(self, key: str) -> Optional[Session]:
        """Look a session up by client session_id or durable id.

        Returns a copy; changes only take effect through save_session().
        """
        with self._lock:
            session = self._lookup(key)
            return session.model_copy(deep=True) if session is not None else None

    def save_session(
        self,
        session: Session,
        expected_status: Optional[LifecycleState] = None,
        expected_validation: Optional[ValidationStatus] = None,
    ) -> Session:
        """Persist `session`, optionally only if the stored state still matches.

        Raises
        ------
        StaleSessionError
            If `expected_status` / `expected_validation` no longer match the
            stored record.
        """
        with self._lock:
            current = self._sessions.get(session.session_id)
            if current is not None:
                if expected_status is not None and current.status != expected_status:
                    raise StaleSessionError(
                        session.session_id, expected_status.value, current.status.value
                    )
                if (
                    expected_validation is not None
                    and current.validation_status != expected_validation
                ):
                    raise StaleSessionError(
                        session.session_id,
                        expected_validation.value,
                        current.validation_status.value,
                    )
            stored = session.model_copy(deep=True)
            self._sessions[stored.session_id] = stored
            self._durable_index[stored.id] = stored.session_id
            self._persist_session(stored)
        return session

    def list_sessions(self) -> List[Session]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._sessions.values()]

    def _lookup(self, key: str) -> Optional[Session]:
        session = self._sessions.get(key)
        if session is not None:
            return session
        session_id = self._durable_index.get(key)
        if session_id is not None:
            return self._sessions.get(session_id)
        return None

    def _load_all(self) -> None:
        """Reload persisted sessions from disk on startup."""
        for path in sorted(self._sessions_dir.glob("*.json")):
            try:
                with path.open("r", encoding="utf-8") as f:
                    session = Session(**json.load(f))
            except (OSError, ValueError) as exc:
                logger.warning("[SESSION] Skipping unreadable session file %s: %s", path, exc)
                continue
            self._sessions[session.session_id] = session
            self._durable_index[session.id] = session.session_id

    def _persist_session(self, session: Session) -> None:
        """Write the session to disk if a data_dir is configured."""
        if self._data_dir is None:
            return

        sessions_dir = self._sessions_dir
        sessions_dir.mkdir(parents=True, exist_ok=True)
        path = sessions_dir / f"{session.session_id}.json"

        with path.open("w", encoding="utf-8") as f:
            json.dump(session.model_dump(mode="json"), f, ensure_ascii=False, indent=2)
