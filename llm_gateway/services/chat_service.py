import asyncio
import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from time import perf_counter
from typing import Any

from fastapi import Request

from llm_gateway.audit.dispatcher import AuditDispatcher
from llm_gateway.audit.pricing import calculate_cost
from llm_gateway.audit.writer import AuditRecord
from llm_gateway.config.settings import Settings
from llm_gateway.core.errors import (
    AppError,
    ConfigurationError,
    app_error_from_configuration_error,
    not_implemented,
    rate_limit_exceeded,
    upstream_unavailable,
)
from llm_gateway.metrics import record_rate_limited, record_request
from llm_gateway.models.gateway import CanonicalRequest, RequestMetadata
from llm_gateway.models.openai import ChatCompletionRequest
from llm_gateway.normalize.response import extract_usage, normalize
from llm_gateway.providers.base import ChatProvider, ProviderError, ProviderRequest
from llm_gateway.providers.registry import ProviderRegistry
from llm_gateway.ratelimit.limiter import SlidingWindowRateLimiter
from llm_gateway.redaction.engine import RedactionEngine
from llm_gateway.routing.model_map import (
    DEFAULT_KEY,
    ModelConfig,
    ModelMapStore,
    ModelMapUnavailableError,
)
from llm_gateway.routing.roles import RoleResolver
from llm_gateway.streaming.sse import DONE_FRAME, format_sse, iter_sse_events
from llm_gateway.streaming.translator import StreamState, UpstreamStreamError, translator_for

logger = logging.getLogger("llmgw.chat")

CONTEXT_TAIL_CHARS = 200
CLIENT_CLOSED_REQUEST = 499

_UPSTREAM_FAILURES = (ProviderError, UpstreamStreamError, TimeoutError)


class GatewayService:
    """Serves one chat completion per call, streaming or not.

    All shared state (rate-limit windows, model map cache, credential cache)
    is owned by the collaborators injected here, so separate instances are
    fully isolated from each other.
    """

    def __init__(
        self,
        settings: Settings,
        rate_limiter: SlidingWindowRateLimiter,
        role_resolver: RoleResolver,
        model_map: ModelMapStore,
        provider_registry: ProviderRegistry,
        audit_dispatcher: AuditDispatcher,
        redaction_engine: RedactionEngine,
    ):
        self._settings = settings
        self._rate_limiter = rate_limiter
        self._role_resolver = role_resolver
        self._model_map = model_map
        self._provider_registry = provider_registry
        self._audit_dispatcher = audit_dispatcher
        self._redaction_engine = redaction_engine

    @property
    def audit_dispatcher(self) -> AuditDispatcher:
        return self._audit_dispatcher

    @property
    def provider_registry(self) -> ProviderRegistry:
        return self._provider_registry

    async def handle_chat(self, request: Request, payload: ChatCompletionRequest) -> dict[str, Any]:
        started = perf_counter()
        canonical = self._canonical_request(request, payload)
        self._admit(canonical)
        route_key, config, provider_request, provider = await self._prepare(canonical)

        try:
            async with asyncio.timeout(self._settings.request_timeout_s):
                raw = await provider.complete(provider_request)
        except _UPSTREAM_FAILURES as exc:
            app_error = self._app_error_from_upstream_failure(exc)
            self._log_upstream_failure(canonical, config, app_error.message)
            self._finalize(
                canonical,
                config,
                route_key=route_key,
                started=started,
                status_code=app_error.status_code,
                response=None,
                error=app_error.message,
            )
            raise app_error from exc

        response = normalize(config.provider, raw, model=config.model)
        self._finalize(
            canonical,
            config,
            route_key=route_key,
            started=started,
            status_code=200,
            response=response,
        )
        return response

    async def handle_chat_stream(
        self, request: Request, payload: ChatCompletionRequest
    ) -> AsyncIterator[str]:
        started = perf_counter()
        canonical = self._canonical_request(request, payload)
        if not self._settings.streaming_enabled:
            raise not_implemented("Streaming is not enabled on this gateway")
        self._admit(canonical)
        route_key, config, provider_request, provider = await self._prepare(canonical)

        deadline = asyncio.get_running_loop().time() + self._settings.request_timeout_s
        translator = translator_for(config.provider, config.model)
        events = iter_sse_events(provider.stream_lines(provider_request))

        # Pull the first event before answering so upstream HTTP errors still
        # reach the caller as a JSON error body.
        try:
            async with asyncio.timeout_at(deadline):
                first_event = await anext(events, None)
            first_chunks = translator.feed(first_event) if first_event is not None else []
        except _UPSTREAM_FAILURES as exc:
            await events.aclose()
            app_error = self._app_error_from_upstream_failure(exc)
            self._log_upstream_failure(canonical, config, app_error.message)
            self._finalize(
                canonical,
                config,
                route_key=route_key,
                started=started,
                status_code=app_error.status_code,
                response=None,
                error=app_error.message,
            )
            raise app_error from exc

        async def event_stream() -> AsyncIterator[str]:
            stream_error: str | None = None
            status_code = 200

            try:
                try:
                    for chunk in first_chunks:
                        yield format_sse(chunk)

                    while translator.state is not StreamState.TERMINATED:
                        async with asyncio.timeout_at(deadline):
                            event = await anext(events, None)
                        if event is None:
                            break
                        for chunk in translator.feed(event):
                            yield format_sse(chunk)

                    for chunk in translator.finish():
                        yield format_sse(chunk)
                except _UPSTREAM_FAILURES as exc:
                    stream_error, error_type = self._describe_stream_failure(exc)
                    self._log_upstream_failure(canonical, config, stream_error)
                    yield format_sse(translator.error_chunk(stream_error, error_type))

                yield DONE_FRAME
            except BaseException as exc:
                stream_error = stream_error or f"client_disconnected: {type(exc).__name__}"
                status_code = CLIENT_CLOSED_REQUEST
                raise
            finally:
                await events.aclose()
                self._finalize(
                    canonical,
                    config,
                    route_key=route_key,
                    started=started,
                    status_code=status_code,
                    response=translator.to_response(),
                    stream_error=stream_error,
                )

        return event_stream()

    def _canonical_request(
        self, request: Request, payload: ChatCompletionRequest
    ) -> CanonicalRequest:
        requested_model = payload.model or self._settings.default_model_alias
        identity = (
            request.headers.get("x-user-id") or payload.user or self._settings.default_user_id
        )
        role = self._role_resolver.resolve(
            requested_model, payload.messages, request.headers.get("x-role")
        )
        metadata = RequestMetadata(
            request_id=request.state.request_id,
            received_at=getattr(request.state, "received_at", None) or datetime.now(UTC),
            client_ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            origin=request.headers.get("origin"),
        )
        return CanonicalRequest(
            requested_model=requested_model,
            role=role,
            messages=tuple(payload.messages),
            identity=identity,
            metadata=metadata,
            temperature=payload.temperature,
            max_tokens=payload.requested_max_tokens,
            stream=payload.stream,
            attachments=tuple(payload.attachments or ()),
        )

    def _admit(self, canonical: CanonicalRequest) -> None:
        if self._rate_limiter.admit(canonical.identity, self._settings.rate_limit_qpm):
            return
        # Rejection happens before the model map lookup, so unrecognized
        # aliases share the default label.
        metric_role = (
            canonical.role if canonical.role in self._role_resolver.known_roles else DEFAULT_KEY
        )
        record_rate_limited(metric_role)
        logger.warning(
            "rate_limited",
            extra={
                "request_id": canonical.metadata.request_id,
                "user_id": canonical.identity,
                "role": canonical.role,
            },
        )
        raise rate_limit_exceeded(
            f"Rate limit of {self._settings.rate_limit_qpm} requests per minute exceeded"
        )

    async def _prepare(
        self, canonical: CanonicalRequest
    ) -> tuple[str, ModelConfig, ProviderRequest, ChatProvider]:
        try:
            route_key, config = await self._model_map.lookup(canonical.role)
            provider = await self._provider_registry.provider_for(config)
            provider_request = provider.build_request(
                config.model,
                canonical.message_dicts(),
                temperature=canonical.temperature,
                max_tokens=canonical.max_tokens,
                stream=canonical.stream,
            )
        except ModelMapUnavailableError as exc:
            logger.error(
                "model_map_unavailable",
                extra={"request_id": canonical.metadata.request_id, "error": str(exc)},
            )
            raise AppError(
                500, "internal_error", "internal", "Failed to load model configuration"
            ) from exc
        except ConfigurationError as exc:
            logger.error(
                "configuration_error",
                extra={
                    "request_id": canonical.metadata.request_id,
                    "role": canonical.role,
                    "error": exc.message,
                },
            )
            raise app_error_from_configuration_error(exc) from exc
        return route_key, config, provider_request, provider

    def _finalize(
        self,
        canonical: CanonicalRequest,
        config: ModelConfig,
        *,
        route_key: str,
        started: float,
        status_code: int,
        response: dict[str, Any] | None,
        error: str | None = None,
        stream_error: str | None = None,
    ) -> None:
        """Dispatch the audit record, then log and record metrics."""
        latency_s = perf_counter() - started
        latency_ms = int(latency_s * 1000)
        tokens_in, tokens_out = extract_usage(response) if response else (0, 0)
        cost_usd = calculate_cost(config.model, tokens_in, tokens_out)
        mask = self._settings.log_mask_pii

        messages = canonical.message_dicts()
        if mask:
            messages = self._redaction_engine.redact_messages(messages).messages

        record = AuditRecord(
            request_id=canonical.metadata.request_id,
            identity=canonical.identity,
            requested_model=canonical.requested_model,
            role=canonical.role,
            provider=config.provider,
            model=config.model,
            streaming=canonical.stream,
            status="success" if status_code < 400 and not stream_error else "error",
            status_code=status_code,
            messages=tuple(messages),
            response=self._sanitize_response(response) if mask else response,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost_usd=cost_usd,
            latency_ms=latency_ms,
            metadata=canonical.metadata.as_dict(),
            error=error,
            stream_error=stream_error,
        )
        self._audit_dispatcher.dispatch(record, canonical.all_attachments())

        latest = canonical.latest_user_message()
        context_tail = "\n".join(message["content"] for message in messages)[
            -CONTEXT_TAIL_CHARS:
        ]
        logger.info(
            "chat_stream_completed" if canonical.stream else "chat_completed",
            extra={
                "request_id": canonical.metadata.request_id,
                "user_id": canonical.identity,
                "requested_model": canonical.requested_model,
                "role": canonical.role,
                "provider": config.provider,
                "model": config.model,
                "streaming": canonical.stream,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "token_in": tokens_in,
                "token_out": tokens_out,
                "cost_usd": cost_usd,
                "error": error,
                "stream_error": stream_error,
                "latest_user_message": self._mask(latest),
                "latest_user_message_length": len(latest),
                "context_tail_preview": context_tail,
            },
        )

        if self._settings.metrics_enabled:
            record_request(
                role=route_key,
                provider=config.provider,
                model=config.model,
                streaming=canonical.stream,
                status_code=status_code,
                latency_s=latency_s,
                tokens_in=tokens_in,
                tokens_out=tokens_out,
                cost_usd=cost_usd,
            )

    def _mask(self, text: str) -> str:
        if not self._settings.log_mask_pii:
            return text
        return self._redaction_engine.redact_text(text).text

    def _sanitize_response(self, response: dict[str, Any] | None) -> dict[str, Any] | None:
        if response is None:
            return None
        sanitized = dict(response)
        choices = response.get("choices")
        if not isinstance(choices, list):
            return sanitized
        sanitized_choices: list[object] = []
        for choice in choices:
            message = choice.get("message") if isinstance(choice, dict) else None
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, str):
                choice = {**choice, "message": {**message, "content": self._mask(content)}}
            sanitized_choices.append(choice)
        sanitized["choices"] = sanitized_choices
        return sanitized

    @staticmethod
    def _app_error_from_upstream_failure(exc: BaseException) -> AppError:
        if isinstance(exc, ProviderError):
            if exc.status_code in {429, 502, 503}:
                return AppError(exc.status_code, exc.code, exc.error_type, exc.message)
            return upstream_unavailable(exc.message)
        if isinstance(exc, UpstreamStreamError):
            return upstream_unavailable(exc.message)
        return upstream_unavailable("Upstream request timed out", code="upstream_timeout")

    @staticmethod
    def _describe_stream_failure(exc: BaseException) -> tuple[str, str]:
        if isinstance(exc, ProviderError):
            return exc.message, exc.code
        if isinstance(exc, UpstreamStreamError):
            return exc.message, exc.error_type
        return "Upstream request timed out", "upstream_timeout"

    @staticmethod
    def _log_upstream_failure(
        canonical: CanonicalRequest, config: ModelConfig, error: str
    ) -> None:
        logger.warning(
            "upstream_failed",
            extra={
                "request_id": canonical.metadata.request_id,
                "role": canonical.role,
                "provider": config.provider,
                "model": config.model,
                "streaming": canonical.stream,
                "error": error,
            },
        )
