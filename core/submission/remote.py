"""
core.submission.remote

Thin async wrappers around the study server's HTTP surface.

- RemoteEndpoint posts `{action, sessionId, ...}` bodies to
  `<base_url>/functions/<operation>` and turns the response into either a
  result dict or one of the pipeline exceptions.
- FallbackWriter posts response rows straight to the insert-only
  `<base_url>/fallback/responses` path, bypassing the session logic.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from exceptions.exceptions import (
    AlreadyCompletedError,
    InvalidTransitionError,
    PayloadValidationError,
    RemoteCallError,
    SessionNotFoundError,
)


logger = logging.getLogger(__name__)


OP_SAVE_STUDY_DATA = "save-study-data"
OP_COMPLETE_SESSION = "complete-session"
OP_UPDATE_VALIDATION = "update-session-validation"

# action -> (response table, body key holding the answers)
FALLBACK_TABLES = {
    "save_demographics": ("demographic_responses", "demographics"),
    "save_pre_test": ("pre_test_responses", "preTestResponses"),
    "save_post_test": ("post_test_responses", "postTestResponses"),
}


def _decode(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"error": response.text or f"HTTP {response.status_code}"}
    return data if isinstance(data, dict) else {"data": data}


def map_error(operation: str, status_code: int, data: Dict[str, Any], session_id: Optional[str]) -> Exception:
    """Translate an error response into the matching pipeline exception."""
    code = data.get("code")
    message = str(data.get("error") or f"HTTP {status_code}")

    if code == "already_completed":
        return AlreadyCompletedError(session_id or "")
    if code == "invalid_transition" or status_code == 409:
        return InvalidTransitionError(
            session_id or "",
            current=data.get("current", "unknown"),
            target=data.get("target", operation),
            details=message,
        )
    if code == "not_found" or status_code == 404:
        return SessionNotFoundError(session_id or "")
    if status_code in (400, 403, 422):
        return PayloadValidationError(message, operation=operation)
    return RemoteCallError(operation, message, status_code=status_code)


class RemoteEndpoint:
    """Async client for the remote write endpoint.

    Parameters
    ----------
    base_url:
        Server root, e.g. "http://localhost:8000".
    client:
        Optional pre-built httpx.AsyncClient (tests pass one wired to a
        MockTransport). Timeouts are the transport's; this layer adds none.
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def call(self, operation: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self._base_url}/functions/{operation}"
        try:
            response = await self._client.post(url, json=body)
        except httpx.HTTPError as exc:
            raise RemoteCallError(operation, f"{type(exc).__name__}: {exc}") from exc

        data = _decode(response)
        if response.is_success and not data.get("error"):
            return data
        raise map_error(operation, response.status_code, data, body.get("sessionId"))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class FallbackWriter:
    """Secondary durable write path for answer rows.

    Only the response-saving actions have a fallback; anything else raises
    PayloadValidationError because there is no direct table to write to.
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def write(self, operation: str, body: Dict[str, Any]) -> Dict[str, Any]:
        action = body.get("action")
        if operation != OP_SAVE_STUDY_DATA or action not in FALLBACK_TABLES:
            raise PayloadValidationError(
                f"No fallback path for {operation}/{action}", operation=operation
            )
        table, key = FALLBACK_TABLES[action]
        payload = {
            "table": table,
            "sessionId": body.get("sessionId"),
            "responses": self._as_rows(body.get(key)),
        }

        url = f"{self._base_url}/fallback/responses"
        try:
            response = await self._client.post(url, json=payload)
        except httpx.HTTPError as exc:
            raise RemoteCallError("fallback", f"{type(exc).__name__}: {exc}") from exc

        data = _decode(response)
        if response.is_success and not data.get("error"):
            logger.info("[SUBMIT] Fallback wrote %d rows to %s", len(payload["responses"]), table)
            return data
        raise map_error("fallback", response.status_code, data, payload["sessionId"])

    @staticmethod
    def _as_rows(answers: Any) -> List[Dict[str, str]]:
        if isinstance(answers, dict):
            return [{"questionId": k, "answer": v} for k, v in answers.items()]
        return list(answers or [])

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
