from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    type: str
    request_id: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "type": self.type,
                "request_id": self.request_id,
            }
        }


class AppError(Exception):
    def __init__(self, status_code: int, code: str, error_type: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.error_type = error_type
        self.message = message


class ConfigurationError(Exception):
    """Raised when gateway configuration cannot serve a request.

    ``caller_correctable`` separates problems the caller can fix (asking for a
    role the model map does not know) from operator problems (a missing
    provider credential).
    """

    def __init__(self, message: str, caller_correctable: bool = False):
        super().__init__(message)
        self.message = message
        self.caller_correctable = caller_correctable


def invalid_request(message: str) -> AppError:
    return AppError(400, "invalid_request_error", "invalid_request", message)


def rate_limit_exceeded(message: str) -> AppError:
    return AppError(429, "rate_limit_exceeded", "rate_limit", message)


def not_implemented(message: str) -> AppError:
    return AppError(501, "not_implemented", "not_implemented", message)


def upstream_unavailable(message: str, code: str = "api_error") -> AppError:
    return AppError(502, code, "provider", message)


def app_error_from_configuration_error(exc: ConfigurationError) -> AppError:
    if exc.caller_correctable:
        return invalid_request(exc.message)
    return AppError(500, "configuration_error", "configuration", exc.message)


def request_id_from_request(request: Request) -> str:
    state_id = getattr(request.state, "request_id", None)
    header_id = request.headers.get("x-request-id")
    return state_id or header_id or str(uuid4())


def app_error_response(
    status_code: int, code: str, error_type: str, message: str, request_id: str
) -> JSONResponse:
    envelope = ErrorEnvelope(code=code, message=message, type=error_type, request_id=request_id)
    response = JSONResponse(status_code=status_code, content=envelope.as_dict())
    response.headers["x-request-id"] = request_id
    return response
