"""Failure-mode tests: every upstream failure ends in a deterministic answer."""

import asyncio
import json
from collections.abc import AsyncIterator

import httpx
import pytest

from sse_payloads import SSE_HEADERS, chunks, sse

MESSAGE_START = {"type": "message_start", "message": {"id": "msg_1", "usage": {"input_tokens": 4}}}
FIRST_DELTA = {
    "type": "content_block_delta",
    "index": 0,
    "delta": {"type": "text_delta", "text": "Hel"},
}


class BrokenStream(httpx.AsyncByteStream):
    """Yields a prefix of a stream, then stalls or fails."""

    def __init__(self, prefix: bytes, exc: Exception | None = None, stall_s: float = 0.0):
        self._prefix = prefix
        self._exc = exc
        self._stall_s = stall_s

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self._prefix
        if self._stall_s:
            await asyncio.sleep(self._stall_s)
        if self._exc is not None:
            raise self._exc


class FailingSink:
    def persist(self, record) -> str:
        raise OSError("audit volume is read-only")


def _settings(client):
    return client.app.state.gateway_service._settings


def _chat(stream: bool = False) -> dict[str, object]:
    return {
        "model": "backend",
        "stream": stream,
        "messages": [{"role": "user", "content": "hello"}],
    }


def _stream_lines(client) -> list[str]:
    with client.stream("POST", "/v1/chat/completions", json=_chat(stream=True)) as response:
        assert response.status_code == 200
        return [line for line in response.iter_lines() if line]


def test_request_deadline_maps_to_upstream_timeout(
    monkeypatch: pytest.MonkeyPatch, client, upstream, audit_records
) -> None:
    monkeypatch.setattr(_settings(client), "request_timeout_s", 0.05)

    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(2)
        return httpx.Response(200, json={})

    upstream.handler = slow

    response = client.post("/v1/chat/completions", json=_chat())

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "upstream_timeout"
    record = audit_records()[0]
    assert record["status"] == "error"
    assert record["status_code"] == 502


def test_transport_timeout_is_503(client, upstream) -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    upstream.handler = timeout

    response = client.post("/v1/chat/completions", json=_chat())

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "provider_timeout"


def test_connection_refused_is_502(client, upstream) -> None:
    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    upstream.handler = refused

    response = client.post("/v1/chat/completions", json=_chat(stream=True))

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "provider_connection_error"


def test_mid_stream_failure_emits_error_chunk(client, upstream, audit_records) -> None:
    prefix = sse(MESSAGE_START, FIRST_DELTA, event_names=True)
    upstream.handler = lambda request: httpx.Response(
        200,
        headers=SSE_HEADERS,
        stream=BrokenStream(prefix, exc=httpx.ReadError("connection reset")),
    )

    lines = _stream_lines(client)

    payloads = chunks(lines)
    assert payloads[1]["choices"][0]["delta"] == {"content": "Hel"}
    assert payloads[-1]["choices"][0]["finish_reason"] == "error"
    assert payloads[-1]["error"]["type"] == "provider_transport_error"
    assert lines[-1] == "data: [DONE]"

    record = audit_records()[0]
    assert record["status"] == "error"
    assert record["stream_error"]
    assert record["response"]["choices"][0]["message"]["content"] == "Hel"


def test_mid_stream_stall_hits_request_deadline(
    monkeypatch: pytest.MonkeyPatch, client, upstream
) -> None:
    monkeypatch.setattr(_settings(client), "request_timeout_s", 0.2)
    prefix = sse(MESSAGE_START, event_names=True)
    upstream.handler = lambda request: httpx.Response(
        200, headers=SSE_HEADERS, stream=BrokenStream(prefix, stall_s=5)
    )

    lines = _stream_lines(client)

    last = json.loads(lines[-2].removeprefix("data: "))
    assert last["choices"][0]["finish_reason"] == "error"
    assert last["error"]["type"] == "upstream_timeout"
    assert lines[-1] == "data: [DONE]"


def test_audit_failure_does_not_fail_request(client, upstream) -> None:
    client.app.state.gateway_service.audit_dispatcher._sink = FailingSink()
    upstream.handler = lambda request: httpx.Response(
        200,
        json={
            "id": "msg_1",
            "content": [{"type": "text", "text": "still served"}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 1, "output_tokens": 2},
        },
    )

    response = client.post("/v1/chat/completions", json=_chat())
    client.app.state.gateway_service.audit_dispatcher.flush(timeout=5)

    assert response.status_code == 200
    assert response.json()["choices"][0]["message"]["content"] == "still served"


def test_invalid_upstream_json_is_502(client, upstream) -> None:
    upstream.handler = lambda request: httpx.Response(200, text="<html>gateway</html>")

    response = client.post("/v1/chat/completions", json=_chat())

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "provider_invalid_response"


def test_non_sse_stream_body_is_502(client, upstream, audit_records) -> None:
    upstream.handler = lambda request: httpx.Response(200, json={"error": "quota exhausted"})

    response = client.post("/v1/chat/completions", json=_chat(stream=True))

    assert response.status_code == 502
    assert response.headers["content-type"].startswith("application/json")
    assert response.json()["error"]["code"] == "provider_invalid_response"
    assert audit_records()[0]["status_code"] == 502
