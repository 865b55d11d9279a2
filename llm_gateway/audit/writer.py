import importlib
import json
import threading
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from hashlib import sha256
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from jsonschema import ValidationError, validate

boto3: Any | None
try:  # pragma: no cover - optional dependency
    boto3 = importlib.import_module("boto3")
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    boto3 = None

SCHEMA_FILENAME = "audit-record.schema.json"


class AuditValidationError(Exception):
    """Raised when audit payload is invalid."""


@dataclass(frozen=True)
class AuditRecord:
    """Immutable snapshot of one served request."""

    request_id: str
    identity: str
    requested_model: str
    role: str
    provider: str
    model: str
    streaming: bool
    status: str
    status_code: int
    messages: tuple[dict[str, str], ...]
    response: dict[str, Any] | None
    tokens_in: int
    tokens_out: int
    cost_usd: float
    latency_ms: int
    metadata: dict[str, Any]
    attachments: tuple[dict[str, Any], ...] = ()
    error: str | None = None
    stream_error: str | None = None
    record_id: str = field(default_factory=lambda: str(uuid4()))
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def tokens_total(self) -> int:
        return self.tokens_in + self.tokens_out

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["messages"] = list(self.messages)
        payload["attachments"] = list(self.attachments)
        payload["tokens_total"] = self.tokens_total
        return payload


class AuditSink(Protocol):
    def persist(self, record: AuditRecord) -> str:
        """Store the record and return a reference to it."""


def load_schema(contracts_dir: Path) -> dict[str, Any]:
    schema: dict[str, Any] = json.loads(
        (contracts_dir / SCHEMA_FILENAME).read_text(encoding="utf-8")
    )
    return schema


def calculate_payload_hash(payload: dict[str, Any]) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return sha256(canonical.encode("utf-8")).hexdigest()


def _validate(payload: dict[str, Any], schema: dict[str, Any]) -> None:
    try:
        validate(instance=payload, schema=schema)
    except ValidationError as exc:
        raise AuditValidationError(exc.message) from exc


class JsonlAuditSink:
    """Appends records to a JSONL file as a hash chain.

    Each line carries ``prev_hash`` (the previous line's ``payload_hash``) and
    its own ``payload_hash``, so truncation or edits in the middle of the file
    are detectable with ``verify_chain``.
    """

    def __init__(self, log_path: Path, contracts_dir: Path):
        self._log_path = log_path
        self._schema = load_schema(contracts_dir)
        self._lock = threading.Lock()

    def persist(self, record: AuditRecord) -> str:
        with self._lock:
            payload = record.as_dict()
            payload["prev_hash"] = self._last_payload_hash()
            payload["payload_hash"] = calculate_payload_hash(payload)

            _validate(payload, self._schema)

            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with self._log_path.open("a", encoding="utf-8") as file_handle:
                file_handle.write(json.dumps(payload, ensure_ascii=True) + "\n")

        return f"{self._log_path}#{payload['payload_hash']}"

    def _last_payload_hash(self) -> str:
        if not self._log_path.exists():
            return ""

        last_line = self._read_last_line(self._log_path)
        if not last_line:
            return ""

        try:
            parsed = json.loads(last_line)
        except json.JSONDecodeError:
            return ""
        return str(parsed.get("payload_hash", ""))

    @staticmethod
    def _read_last_line(file_path: Path) -> str:
        with file_path.open("rb") as file_handle:
            file_handle.seek(0, 2)
            size = file_handle.tell()
            if size == 0:
                return ""

            # Skip the trailing newline written after every record.
            position = size - 2
            while position > 0:
                file_handle.seek(position)
                if file_handle.read(1) == b"\n":
                    position += 1
                    break
                position -= 1

            file_handle.seek(max(position, 0))
            return file_handle.read().decode("utf-8").strip()


def verify_chain(log_path: Path) -> bool:
    """Return True when every line's hashes link to its predecessor."""
    prev_hash = ""
    with log_path.open(encoding="utf-8") as file_handle:
        for line in file_handle:
            if not line.strip():
                continue
            payload = json.loads(line)
            payload_hash = payload.pop("payload_hash", "")
            if payload.get("prev_hash", "") != prev_hash:
                return False
            if calculate_payload_hash(payload) != payload_hash:
                return False
            prev_hash = payload_hash
    return True


class S3AuditSink:
    """One JSON object per request under ``<prefix>/<yyyy>/<mm>/<dd>/``."""

    def __init__(
        self,
        bucket: str,
        contracts_dir: Path,
        prefix: str = "audit",
        region: str | None = None,
        s3_client: Any | None = None,
    ):
        if s3_client is None:
            if boto3 is None:
                raise RuntimeError("boto3 is required for the S3 audit sink")
            kwargs: dict[str, str] = {}
            if region:
                kwargs["region_name"] = region
            s3_client = boto3.client("s3", **kwargs)
        self._bucket = bucket
        self._prefix = prefix.strip("/")
        self._schema = load_schema(contracts_dir)
        self._s3 = s3_client

    def persist(self, record: AuditRecord) -> str:
        payload = record.as_dict()
        payload["prev_hash"] = ""
        payload["payload_hash"] = calculate_payload_hash(payload)
        _validate(payload, self._schema)

        day = record.created_at[:10].replace("-", "/")
        key = f"{self._prefix}/{day}/{record.request_id}.json"
        self._s3.put_object(
            Bucket=self._bucket,
            Key=key,
            Body=json.dumps(payload, ensure_ascii=True).encode("utf-8"),
            ContentType="application/json",
        )
        return f"s3://{self._bucket}/{key}"
