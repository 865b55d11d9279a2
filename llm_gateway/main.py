import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from llm_gateway.api.routes import router
from llm_gateway.audit.dispatcher import build_audit_dispatcher
from llm_gateway.config.settings import Settings, get_settings
from llm_gateway.core.errors import AppError, app_error_response, request_id_from_request
from llm_gateway.core.logging import configure_logging
from llm_gateway.middleware.cors import CORSMiddleware
from llm_gateway.middleware.request_id import RequestIDMiddleware
from llm_gateway.providers.registry import ProviderRegistry
from llm_gateway.ratelimit.limiter import SlidingWindowRateLimiter
from llm_gateway.redaction.engine import RedactionEngine
from llm_gateway.routing.model_map import ModelMapStore, build_model_map_source
from llm_gateway.routing.roles import RoleResolver
from llm_gateway.secrets.store import CachedSecretStore, build_secret_source
from llm_gateway.services.chat_service import GatewayService

logger = logging.getLogger("llmgw.app")

HTTP_ERROR_CODES = {
    404: ("not_found", "Not found"),
    405: ("method_not_allowed", "Method not allowed"),
}


def _build_gateway_service(settings: Settings) -> GatewayService:
    model_map_source = build_model_map_source(
        settings.model_map_source_normalized,
        path=settings.model_map_path,
        url=settings.model_map_url,
        bucket=settings.model_map_bucket,
        key=settings.model_map_key,
        region=settings.aws_region,
    )
    secret_store = CachedSecretStore(
        build_secret_source(settings.secret_backend_normalized, region=settings.aws_region)
    )
    return GatewayService(
        settings=settings,
        rate_limiter=SlidingWindowRateLimiter(),
        role_resolver=RoleResolver(),
        model_map=ModelMapStore(model_map_source, ttl_seconds=settings.model_map_ttl_seconds),
        provider_registry=ProviderRegistry(settings=settings, secret_store=secret_store),
        audit_dispatcher=build_audit_dispatcher(settings),
        redaction_engine=RedactionEngine(),
    )


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request body"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = str(first.get("msg", "invalid value"))
    return f"{location}: {message}" if location else message


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="LLM Gateway", version="0.1.0")

    app.add_middleware(CORSMiddleware)
    app.add_middleware(RequestIDMiddleware)

    gateway_service = _build_gateway_service(settings)
    app.state.gateway_service = gateway_service

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(
            exc.status_code, exc.code, exc.error_type, exc.message, request_id
        )

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(
            400, "invalid_request_error", "invalid_request", _validation_message(exc), request_id
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        request_id = request_id_from_request(request)
        code, message = HTTP_ERROR_CODES.get(exc.status_code, ("http_error", str(exc.detail)))
        return app_error_response(exc.status_code, code, "invalid_request", message, request_id)

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = request_id_from_request(request)
        logger.error(
            "unhandled_error",
            exc_info=exc,
            extra={"request_id": request_id, "error": type(exc).__name__},
        )
        return app_error_response(
            500, "internal_error", "internal", "Internal server error", request_id
        )

    app.include_router(router)
    return app


app = create_app()
