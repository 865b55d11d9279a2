import httpx


def test_preflight_echoes_allowed_origin(client) -> None:
    response = client.options(
        "/v1/chat/completions",
        headers={
            "Origin": "https://studio.example.com",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert response.status_code == 204
    assert response.headers["access-control-allow-origin"] == "https://studio.example.com"
    assert response.headers["access-control-allow-methods"] == "POST,OPTIONS"
    assert response.headers["access-control-max-age"] == "86400"
    assert response.headers.get("x-request-id")


def test_preflight_for_unknown_origin_names_default_origin(client) -> None:
    response = client.options("/chat/completions", headers={"Origin": "https://other.example.com"})

    assert response.status_code == 204
    assert response.headers["access-control-allow-origin"] == "https://app.cursor.sh"


def test_cors_headers_on_error_and_success(client, upstream) -> None:
    upstream.handler = lambda request: httpx.Response(
        200,
        json={
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 1,
            "model": "gpt-4o-mini",
            "choices": [{"index": 0, "message": {"role": "assistant", "content": "ok"}}],
        },
    )
    headers = {"Origin": "https://app.cursor.sh"}

    ok = client.post(
        "/v1/chat/completions",
        headers=headers,
        json={"model": "gpt-4o", "messages": [{"role": "user", "content": "hi"}]},
    )
    bad = client.post("/v1/chat/completions", headers=headers, json={"messages": []})

    assert ok.status_code == 200
    assert bad.status_code == 400
    for response in (ok, bad):
        assert response.headers["access-control-allow-origin"] == "https://app.cursor.sh"
