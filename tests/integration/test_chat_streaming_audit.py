import httpx

from sse_payloads import ANTHROPIC_STREAM, OPENAI_STREAM, SSE_HEADERS


def _consume(client, headers: dict[str, str] | None = None) -> list[str]:
    with client.stream(
        "POST",
        "/v1/chat/completions",
        headers=headers or {},
        json={
            "model": "gpt-4o",
            "stream": True,
            "messages": [{"role": "user", "content": "call me on 090-1234-5678"}],
        },
    ) as response:
        assert response.status_code == 200
        return [line for line in response.iter_lines() if line]


def test_stream_audit_written_after_completion(client, upstream, audit_records) -> None:
    upstream.handler = lambda request: httpx.Response(
        200, content=ANTHROPIC_STREAM, headers=SSE_HEADERS
    )

    _consume(client, headers={"x-role": "backend", "x-request-id": "req-stream-1"})

    records = audit_records()
    assert len(records) == 1
    record = records[0]
    assert record["request_id"] == "req-stream-1"
    assert record["streaming"] is True
    assert record["status"] == "success"
    assert record["status_code"] == 200
    assert record["provider"] == "anthropic"
    assert record["tokens_in"] == 10
    assert record["tokens_out"] == 2
    assert record["response"]["choices"][0]["message"]["content"] == "Hello"
    assert record["messages"] == [{"role": "user", "content": "call me on [PHONE]"}]
    assert record["stream_error"] is None


def test_stream_audit_chain_spans_requests(client, upstream, audit_records) -> None:
    upstream.handler = lambda request: httpx.Response(
        200, content=OPENAI_STREAM, headers=SSE_HEADERS
    )

    _consume(client)
    _consume(client)

    first, second = audit_records()
    assert first["prev_hash"] == ""
    assert second["prev_hash"] == first["payload_hash"]
    assert second["tokens_total"] == 11


def test_stream_metrics_recorded(client, upstream) -> None:
    upstream.handler = lambda request: httpx.Response(
        200, content=OPENAI_STREAM, headers=SSE_HEADERS
    )

    _consume(client)

    text = client.get("/metrics").text
    assert 'streaming="true"' in text
    assert 'llmgw_tokens_total{direction="output"' in text
