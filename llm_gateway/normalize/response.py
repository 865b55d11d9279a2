"""Maps provider response bodies onto the OpenAI ``chat.completion`` shape."""

from collections.abc import Mapping
from time import time
from typing import Any
from uuid import uuid4

FINISH_REASONS: dict[str, str] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}


def map_finish_reason(reason: object) -> str:
    if not reason:
        return "stop"
    text = str(reason)
    return FINISH_REASONS.get(text, text)


def is_canonical(raw: Mapping[str, Any]) -> bool:
    return isinstance(raw.get("choices"), list)


def _as_int(value: object) -> int:
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return 0


def usage_from_anthropic(usage_raw: object) -> dict[str, int]:
    usage = usage_raw if isinstance(usage_raw, Mapping) else {}
    prompt = _as_int(usage.get("input_tokens"))
    completion = _as_int(usage.get("output_tokens"))
    return {
        "prompt_tokens": prompt,
        "completion_tokens": completion,
        "total_tokens": prompt + completion,
    }


def normalize(
    provider: str,
    raw: Mapping[str, Any],
    model: str | None = None,
    created: int | None = None,
) -> dict[str, Any]:
    """Return ``raw`` in canonical form.

    OpenAI bodies and bodies that are already canonical come back unchanged,
    so the function is safe to apply more than once.
    """
    if provider == "openai" or is_canonical(raw):
        return dict(raw)

    content_items_raw = raw.get("content")
    content_items = content_items_raw if isinstance(content_items_raw, list) else []
    text = "".join(
        str(block.get("text", ""))
        for block in content_items
        if isinstance(block, Mapping) and block.get("type") == "text"
    )

    return {
        "id": str(raw.get("id") or f"chatcmpl-{uuid4().hex}"),
        "object": "chat.completion",
        "created": created if created is not None else int(time()),
        "model": str(model or raw.get("model") or ""),
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": text},
                "finish_reason": map_finish_reason(raw.get("stop_reason")),
            }
        ],
        "usage": usage_from_anthropic(raw.get("usage")),
    }


def extract_usage(response: Mapping[str, Any]) -> tuple[int, int]:
    usage = response.get("usage")
    if not isinstance(usage, Mapping):
        return 0, 0
    return _as_int(usage.get("prompt_tokens")), _as_int(usage.get("completion_tokens"))
