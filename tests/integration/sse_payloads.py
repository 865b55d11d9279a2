"""Canned upstream SSE bodies shared by the streaming tests."""

import json

SSE_HEADERS = {"content-type": "text/event-stream"}


def sse(*payloads: dict | str, event_names: bool = False) -> bytes:
    frames: list[str] = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        if event_names and isinstance(payload, dict):
            frames.append(f"event: {payload['type']}\ndata: {data}\n\n")
        else:
            frames.append(f"data: {data}\n\n")
    return "".join(frames).encode("utf-8")


def openai_chunk(delta: dict, finish_reason: str | None = None) -> dict:
    return {
        "id": "chatcmpl-up",
        "object": "chat.completion.chunk",
        "created": 1_700_000_000,
        "model": "gpt-4o-mini",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


OPENAI_STREAM = sse(
    openai_chunk({"role": "assistant", "content": ""}),
    openai_chunk({"content": "Hel"}),
    openai_chunk({"content": "lo"}),
    openai_chunk({}, "stop"),
    {
        "id": "chatcmpl-up",
        "object": "chat.completion.chunk",
        "choices": [],
        "usage": {"prompt_tokens": 9, "completion_tokens": 2, "total_tokens": 11},
    },
    "[DONE]",
)

ANTHROPIC_STREAM = sse(
    {"type": "message_start", "message": {"id": "msg_1", "usage": {"input_tokens": 10}}},
    {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    {"type": "ping"},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hel"}},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "lo"}},
    {"type": "content_block_stop", "index": 0},
    {
        "type": "message_delta",
        "delta": {"stop_reason": "end_turn"},
        "usage": {"input_tokens": 10, "output_tokens": 2},
    },
    {"type": "message_stop"},
    event_names=True,
)


def data_lines(lines: list[str]) -> list[str]:
    return [line.removeprefix("data: ") for line in lines if line.startswith("data: ")]


def chunks(lines: list[str]) -> list[dict]:
    return [json.loads(data) for data in data_lines(lines) if data != "[DONE]"]
