import json
import logging
from datetime import UTC, datetime

# Only these `extra=` keys reach the log line; anything else is dropped.
LOG_EXTRA_FIELDS: tuple[str, ...] = (
    "request_id",
    "user_id",
    "requested_model",
    "role",
    "provider",
    "model",
    "streaming",
    "status_code",
    "latency_ms",
    "token_in",
    "token_out",
    "cost_usd",
    "error",
    "stream_error",
    "latest_user_message",
    "latest_user_message_length",
    "context_tail_preview",
    "audit_reference",
)

# httpx logs every upstream request at INFO.
QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        payload.update(
            (name, value)
            for name in LOG_EXTRA_FIELDS
            if (value := getattr(record, name, None)) is not None
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(log_level: str) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root_logger.level, logging.WARNING))
