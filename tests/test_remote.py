import asyncio
import json

import httpx
import pytest

from core.submission import FallbackWriter, RemoteEndpoint
from exceptions.exceptions import (
    AlreadyCompletedError,
    InvalidTransitionError,
    PayloadValidationError,
    RemoteCallError,
    SessionNotFoundError,
)

BASE = "http://study.test"
SID = "session-0000000001"


def endpoint_returning(status_code, body, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteEndpoint(BASE, client=client)


def call(endpoint, operation="save-study-data", body=None):
    return asyncio.run(endpoint.call(operation, body or {"action": "update_activity", "sessionId": SID}))


def test_success_returns_body_and_posts_json():
    seen = []
    endpoint = endpoint_returning(200, {"success": True, "status": "active"}, seen)

    assert call(endpoint)["status"] == "active"
    assert str(seen[0].url) == f"{BASE}/functions/save-study-data"
    assert seen[0].method == "POST"


@pytest.mark.parametrize(
    "status_code,body,expected",
    [
        (409, {"error": "done", "code": "already_completed"}, AlreadyCompletedError),
        (409, {"error": "nope", "code": "invalid_transition"}, InvalidTransitionError),
        (404, {"error": "Session not found", "code": "not_found"}, SessionNotFoundError),
        (400, {"error": "bad", "code": "invalid"}, PayloadValidationError),
        (429, {"error": "slow down", "code": "rate_limited"}, RemoteCallError),
        (503, {"error": "unavailable"}, RemoteCallError),
        (200, {"error": "soft failure"}, RemoteCallError),
    ],
)
def test_error_responses_map_to_pipeline_errors(status_code, body, expected):
    with pytest.raises(expected):
        call(endpoint_returning(status_code, body))


def test_already_completed_keeps_session_id():
    endpoint = endpoint_returning(409, {"error": "done", "code": "already_completed"})
    with pytest.raises(AlreadyCompletedError) as excinfo:
        call(endpoint, "complete-session", {"sessionId": SID})
    assert excinfo.value.session_id == SID


def test_network_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    endpoint = RemoteEndpoint(BASE, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    with pytest.raises(RemoteCallError):
        call(endpoint)


def test_non_json_error_body_is_transient():
    def handler(request):
        return httpx.Response(502, text="Bad Gateway")

    endpoint = RemoteEndpoint(BASE, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    with pytest.raises(RemoteCallError) as excinfo:
        call(endpoint)
    assert excinfo.value.status_code == 502


def test_fallback_writes_rows_to_response_table():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"success": True, "inserted": 2})

    writer = FallbackWriter(BASE, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    body = {
        "action": "save_post_test",
        "sessionId": SID,
        "postTestResponses": [{"questionId": "q1", "answer": "a"}, {"questionId": "q2", "answer": "b"}],
    }

    result = asyncio.run(writer.write("save-study-data", body))

    assert result["inserted"] == 2
    assert str(seen[0].url) == f"{BASE}/fallback/responses"
    sent = json.loads(seen[0].content)
    assert sent["table"] == "post_test_responses"
    assert sent["sessionId"] == SID
    assert len(sent["responses"]) == 2


def test_fallback_refuses_non_response_actions():
    writer = FallbackWriter(BASE, client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))))

    with pytest.raises(PayloadValidationError):
        asyncio.run(writer.write("save-study-data", {"action": "update_mode", "sessionId": SID}))
