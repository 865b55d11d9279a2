"""Anthropic Messages API adapter."""

import httpx

from llm_gateway.core.errors import ConfigurationError
from llm_gateway.providers.base import AnthropicRequest, HTTPChatProvider
from llm_gateway.providers.limits import (
    ANTHROPIC_BUDGET,
    DEFAULT_MAX_TOKENS,
    estimate_message_tokens,
)


def split_system(messages: list[dict[str, str]]) -> tuple[str, list[dict[str, str]]]:
    """Separate system prompts from the conversation turns.

    Anthropic takes the system prompt as a top-level field; multiple system
    messages are joined with newlines in their original order.
    """
    system_parts: list[str] = []
    conversation: list[dict[str, str]] = []
    for message in messages:
        if message["role"] == "system":
            system_parts.append(message["content"])
            continue
        conversation.append({"role": message["role"], "content": message["content"]})
    return "\n".join(system_parts), conversation


def build_request(
    model: str,
    messages: list[dict[str, str]],
    temperature: float | None = None,
    max_tokens: int | None = None,
    stream: bool = False,
    default_max_tokens: int = DEFAULT_MAX_TOKENS,
) -> AnthropicRequest:
    system_prompt, conversation = split_system(messages)
    safe_max_tokens = ANTHROPIC_BUDGET.clamp(
        max_tokens, estimate_message_tokens(messages), default=default_max_tokens
    )

    body: dict[str, object] = {
        "model": model,
        "messages": conversation,
        "max_tokens": safe_max_tokens,
    }
    if system_prompt:
        body["system"] = system_prompt
    if temperature is not None:
        body["temperature"] = temperature
    if stream:
        body["stream"] = True

    return AnthropicRequest(model=model, body=body)


class AnthropicProvider(HTTPChatProvider):
    name = "anthropic"
    path = "/v1/messages"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.anthropic.com",
        anthropic_version: str = "2023-06-01",
        timeout_s: float = 120.0,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url=base_url, timeout_s=timeout_s, transport=transport)
        self._api_key = api_key
        self._anthropic_version = anthropic_version
        self._default_max_tokens = default_max_tokens

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "anthropic-version": self._anthropic_version,
            "content-type": "application/json",
        }

    def build_request(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        stream: bool = False,
    ) -> AnthropicRequest:
        if not self._api_key:
            raise ConfigurationError("Anthropic API key is not configured")
        return build_request(
            model,
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            stream=stream,
            default_max_tokens=self._default_max_tokens,
        )
