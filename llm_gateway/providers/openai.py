"""HTTP provider for the OpenAI chat completions endpoint."""

import httpx

from llm_gateway.core.errors import ConfigurationError
from llm_gateway.providers.base import HTTPChatProvider, OpenAIRequest
from llm_gateway.providers.limits import (
    DEFAULT_MAX_TOKENS,
    OPENAI_REASONING_BUDGET,
    OPENAI_STANDARD_BUDGET,
    estimate_message_tokens,
)

# Reasoning models reject `temperature` and take `max_completion_tokens`.
REASONING_MODEL_PREFIXES: tuple[str, ...] = ("gpt-5", "o1", "o3", "o4")


def is_reasoning_model(model: str) -> bool:
    return model.startswith(REASONING_MODEL_PREFIXES)


def build_request(
    model: str,
    messages: list[dict[str, str]],
    temperature: float | None = None,
    max_tokens: int | None = None,
    stream: bool = False,
    default_max_tokens: int = DEFAULT_MAX_TOKENS,
) -> OpenAIRequest:
    reasoning = is_reasoning_model(model)
    budget = OPENAI_REASONING_BUDGET if reasoning else OPENAI_STANDARD_BUDGET
    safe_max_tokens = budget.clamp(
        max_tokens, estimate_message_tokens(messages), default=default_max_tokens
    )

    body: dict[str, object] = {
        "model": model,
        "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
    }
    if reasoning:
        body["max_completion_tokens"] = safe_max_tokens
    else:
        body["max_tokens"] = safe_max_tokens
        if temperature is not None:
            body["temperature"] = temperature
    if stream:
        body["stream"] = True
        body["stream_options"] = {"include_usage": True}

    return OpenAIRequest(model=model, body=body)


class OpenAIProvider(HTTPChatProvider):
    name = "openai"
    path = "/v1/chat/completions"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com",
        timeout_s: float = 120.0,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url=base_url, timeout_s=timeout_s, transport=transport)
        self._api_key = api_key
        self._default_max_tokens = default_max_tokens

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def build_request(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        stream: bool = False,
    ) -> OpenAIRequest:
        if not self._api_key:
            raise ConfigurationError("OpenAI API key is not configured")
        return build_request(
            model,
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            stream=stream,
            default_max_tokens=self._default_max_tokens,
        )
