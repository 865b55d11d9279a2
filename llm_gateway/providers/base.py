from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Literal, Protocol

import httpx

ProviderName = Literal["openai", "anthropic"]


class ProviderError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        error_type: str = "provider",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.error_type = error_type


@dataclass(frozen=True)
class OpenAIRequest:
    model: str
    body: dict[str, object] = field(default_factory=dict)
    provider: Literal["openai"] = "openai"

    @property
    def stream(self) -> bool:
        return bool(self.body.get("stream"))


@dataclass(frozen=True)
class AnthropicRequest:
    model: str
    body: dict[str, object] = field(default_factory=dict)
    provider: Literal["anthropic"] = "anthropic"

    @property
    def stream(self) -> bool:
        return bool(self.body.get("stream"))


ProviderRequest = OpenAIRequest | AnthropicRequest


class ChatProvider(Protocol):
    name: ProviderName

    def build_request(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        stream: bool = False,
    ) -> ProviderRequest:
        """Return the provider-specific payload for one chat call."""

    async def complete(self, request: ProviderRequest) -> dict[str, object]:
        """Return the raw provider response body."""

    def stream_lines(self, request: ProviderRequest) -> AsyncGenerator[str, None]:
        """Yield raw SSE lines from the provider."""


def raise_for_status(resp: httpx.Response) -> None:
    if resp.status_code == 429:
        raise ProviderError(
            status_code=429,
            code="provider_rate_limited",
            message="Provider rate limit exceeded",
            error_type="rate_limit",
        )
    if resp.status_code in {502, 503}:
        raise ProviderError(
            status_code=resp.status_code,
            code="provider_upstream_error",
            message=f"Provider returned {resp.status_code}",
        )
    if resp.status_code >= 400:
        raise ProviderError(
            status_code=resp.status_code,
            code="provider_error",
            message=f"Provider returned {resp.status_code}: {resp.text[:200]}",
        )


def provider_error_from_transport(exc: httpx.TransportError) -> ProviderError:
    if isinstance(exc, httpx.TimeoutException):
        return ProviderError(
            status_code=503,
            code="provider_timeout",
            message=f"Provider request timed out: {exc}",
        )
    if isinstance(exc, httpx.ConnectError):
        return ProviderError(
            status_code=502,
            code="provider_connection_error",
            message=f"Cannot connect to provider: {exc}",
        )
    return ProviderError(
        status_code=502,
        code="provider_transport_error",
        message=f"Provider connection failed: {exc}",
    )


class HTTPChatProvider:
    """Shared HTTP plumbing for JSON chat endpoints."""

    name: ProviderName
    path: str

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        raise NotImplementedError

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def complete(self, request: ProviderRequest) -> dict[str, object]:
        url = f"{self._base_url}{self.path}"
        try:
            async with self._client() as client:
                resp = await client.post(url, json=request.body, headers=self._headers())
        except httpx.TransportError as exc:
            raise provider_error_from_transport(exc) from exc

        raise_for_status(resp)

        try:
            result = resp.json()
        except ValueError as exc:
            raise ProviderError(
                status_code=502,
                code="provider_invalid_response",
                message="Provider returned a non-JSON body",
            ) from exc
        if not isinstance(result, dict):
            raise ProviderError(
                status_code=502,
                code="provider_invalid_response",
                message="Provider returned an unexpected body",
            )
        return result

    async def stream_lines(self, request: ProviderRequest) -> AsyncGenerator[str, None]:
        url = f"{self._base_url}{self.path}"
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", url, json=request.body, headers=self._headers()
                ) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                    raise_for_status(resp)
                    content_type = resp.headers.get("content-type", "")
                    if not content_type.startswith("text/event-stream"):
                        raise ProviderError(
                            status_code=502,
                            code="provider_invalid_response",
                            message=(
                                "Provider returned a non-streaming body "
                                f"({content_type or 'no content type'})"
                            ),
                        )
                    async for line in resp.aiter_lines():
                        yield line
        except httpx.TransportError as exc:
            raise provider_error_from_transport(exc) from exc
