"""Translates provider SSE dialects into OpenAI ``chat.completion.chunk`` frames.

A translator is fed one upstream event at a time and returns the canonical
chunks to forward for it, so the caller controls pacing and nothing is
buffered beyond a single held terminal chunk.  Every stream ends with exactly
one chunk carrying a non-null ``finish_reason``; callers must invoke
``finish()`` when the upstream ends and ``error_chunk()`` when it fails.

State machine::

    AWAITING_START --(role or content)--> STREAMING_CONTENT --(end)--> TERMINATED
"""

import json
import logging
from enum import Enum
from time import time
from typing import Any
from uuid import uuid4

from llm_gateway.normalize.response import map_finish_reason
from llm_gateway.providers.limits import estimate_tokens
from llm_gateway.streaming.sse import SSEEvent

logger = logging.getLogger("llmgw.streaming")

Chunk = dict[str, Any]


class StreamState(Enum):
    AWAITING_START = "awaiting_start"
    STREAMING_CONTENT = "streaming_content"
    TERMINATED = "terminated"


class UpstreamStreamError(Exception):
    """Raised when the provider reports an error inside an open stream."""

    def __init__(self, message: str, error_type: str = "api_error"):
        super().__init__(message)
        self.message = message
        self.error_type = error_type


class StreamTranslator:
    provider = ""

    def __init__(
        self,
        model: str,
        chunk_id: str | None = None,
        created: int | None = None,
    ):
        self.chunk_id = chunk_id or f"chatcmpl-{uuid4().hex}"
        self.model = model
        self.created = created if created is not None else int(time())
        self.state = StreamState.AWAITING_START
        self.finish_reason: str | None = None
        self.terminal_emitted = False
        self._content_parts: list[str] = []
        self._role_sent = False
        self._prompt_tokens: int | None = None
        self._completion_tokens: int | None = None

    @property
    def content(self) -> str:
        return "".join(self._content_parts)

    @property
    def usage(self) -> dict[str, int]:
        prompt = self._prompt_tokens if self._prompt_tokens is not None else 0
        if self._completion_tokens is not None:
            completion = self._completion_tokens
        else:
            completion = estimate_tokens(self.content)
        return {
            "prompt_tokens": prompt,
            "completion_tokens": completion,
            "total_tokens": prompt + completion,
        }

    def feed(self, event: SSEEvent) -> list[Chunk]:
        raise NotImplementedError

    def finish(self) -> list[Chunk]:
        """Close the stream, synthesizing a terminal chunk if none was sent."""
        chunks: list[Chunk] = []
        if not self.terminal_emitted:
            chunks.append(self._terminal_chunk(self.finish_reason or "stop"))
        self.state = StreamState.TERMINATED
        return chunks

    def error_chunk(self, message: str, error_type: str = "api_error") -> Chunk:
        finish_reason = None if self.terminal_emitted else "error"
        if not self.terminal_emitted:
            self.finish_reason = "error"
        self.terminal_emitted = True
        self.state = StreamState.TERMINATED
        chunk = self._chunk({}, finish_reason=finish_reason)
        chunk["error"] = {"message": message, "type": error_type}
        return chunk

    def to_response(self) -> dict[str, Any]:
        """Rebuild the non-streaming equivalent of what the caller received."""
        return {
            "id": self.chunk_id,
            "object": "chat.completion",
            "created": self.created,
            "model": self.model,
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": self.content},
                    "finish_reason": self.finish_reason or "stop",
                }
            ],
            "usage": self.usage,
        }

    def _chunk(
        self,
        delta: dict[str, str],
        finish_reason: str | None = None,
        usage: dict[str, int] | None = None,
    ) -> Chunk:
        chunk: Chunk = {
            "id": self.chunk_id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }
        if usage is not None:
            chunk["usage"] = usage
        return chunk

    def _role_chunk(self) -> Chunk:
        self._role_sent = True
        self.state = StreamState.STREAMING_CONTENT
        return self._chunk({"role": "assistant"})

    def _content_chunk(self, text: str) -> Chunk:
        self._content_parts.append(text)
        delta = {"content": text}
        if not self._role_sent:
            delta = {"role": "assistant", "content": text}
            self._role_sent = True
        self.state = StreamState.STREAMING_CONTENT
        return self._chunk(delta)

    def _terminal_chunk(self, finish_reason: str) -> Chunk:
        self.finish_reason = finish_reason
        self.terminal_emitted = True
        return self._chunk({}, finish_reason=finish_reason, usage=self.usage)

    @staticmethod
    def _load(event: SSEEvent) -> dict[str, Any] | None:
        try:
            payload = json.loads(event.data)
        except json.JSONDecodeError:
            logger.warning("stream_event_unparseable", extra={"error": event.data[:200]})
            return None
        return payload if isinstance(payload, dict) else None


class OpenAIStreamTranslator(StreamTranslator):
    """Re-stamps OpenAI chunks and holds the finish chunk until usage arrives."""

    provider = "openai"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._pending_finish: str | None = None

    def feed(self, event: SSEEvent) -> list[Chunk]:
        if self.state is StreamState.TERMINATED:
            return []
        if event.is_done:
            return self.finish()

        payload = self._load(event)
        if payload is None:
            return []

        error = payload.get("error")
        if isinstance(error, dict):
            raise UpstreamStreamError(
                str(error.get("message", "Upstream stream error")),
                str(error.get("type") or "api_error"),
            )

        chunks: list[Chunk] = []
        choices = payload.get("choices")
        first = choices[0] if isinstance(choices, list) and choices else None
        if isinstance(first, dict) and not self.terminal_emitted:
            delta = first.get("delta")
            delta = delta if isinstance(delta, dict) else {}
            content = delta.get("content")
            if isinstance(content, str) and content:
                chunks.append(self._content_chunk(content))
            elif delta.get("role") and not self._role_sent:
                chunks.append(self._role_chunk())
            finish_reason = first.get("finish_reason")
            if finish_reason:
                self._pending_finish = map_finish_reason(finish_reason)

        usage = payload.get("usage")
        if isinstance(usage, dict):
            self._prompt_tokens = int(usage.get("prompt_tokens") or 0)
            self._completion_tokens = int(usage.get("completion_tokens") or 0)
            if self._pending_finish is not None and not self.terminal_emitted:
                chunks.append(self._terminal_chunk(self._pending_finish))

        return chunks

    def finish(self) -> list[Chunk]:
        if self._pending_finish is not None and not self.terminal_emitted:
            self.finish_reason = self._pending_finish
        return super().finish()


class AnthropicStreamTranslator(StreamTranslator):
    """Maps Anthropic message events onto OpenAI chunks."""

    provider = "anthropic"

    def feed(self, event: SSEEvent) -> list[Chunk]:
        if self.state is StreamState.TERMINATED:
            return []

        payload = self._load(event) if event.data else {}
        if payload is None:
            return []
        event_type = event.event or str(payload.get("type", ""))

        if event_type == "message_start":
            message = payload.get("message")
            usage = message.get("usage") if isinstance(message, dict) else None
            if isinstance(usage, dict) and usage.get("input_tokens") is not None:
                self._prompt_tokens = int(usage["input_tokens"])
            if self._role_sent:
                return []
            return [self._role_chunk()]

        if event_type == "content_block_delta":
            delta = payload.get("delta")
            text = delta.get("text") if isinstance(delta, dict) else None
            if not text or self.terminal_emitted:
                return []
            return [self._content_chunk(str(text))]

        if event_type == "message_delta":
            if self.terminal_emitted:
                return []
            delta = payload.get("delta")
            stop_reason = delta.get("stop_reason") if isinstance(delta, dict) else None
            usage = payload.get("usage")
            if isinstance(usage, dict):
                if usage.get("input_tokens") is not None:
                    self._prompt_tokens = int(usage["input_tokens"])
                if usage.get("output_tokens") is not None:
                    self._completion_tokens = int(usage["output_tokens"])
            return [self._terminal_chunk(map_finish_reason(stop_reason))]

        if event_type == "message_stop":
            return self.finish()

        if event_type == "error":
            error = payload.get("error")
            error = error if isinstance(error, dict) else {}
            raise UpstreamStreamError(
                str(error.get("message", "Upstream stream error")),
                str(error.get("type") or "api_error"),
            )

        # ping, content_block_start/stop and future event types
        return []


def translator_for(provider: str, model: str) -> StreamTranslator:
    if provider == "anthropic":
        return AnthropicStreamTranslator(model)
    return OpenAIStreamTranslator(model)
