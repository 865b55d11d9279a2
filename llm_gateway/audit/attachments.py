"""Content-addressed storage for request attachments.

Attachments are stored once per distinct payload under their SHA-256 digest;
audit records only carry the resulting references.
"""

import base64
import binascii
import importlib
from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path
from typing import Any, Protocol

from llm_gateway.models.openai import Attachment

boto3: Any | None
try:  # pragma: no cover - optional dependency
    boto3 = importlib.import_module("boto3")
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    boto3 = None


@dataclass(frozen=True)
class AttachmentRef:
    name: str
    mime_type: str | None
    sha256: str
    size_bytes: int
    storage_key: str

    def as_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "mime_type": self.mime_type,
            "sha256": self.sha256,
            "size_bytes": self.size_bytes,
            "storage_key": self.storage_key,
        }


class AttachmentStore(Protocol):
    def persist(self, digest: str, data: bytes) -> str:
        """Store ``data`` under ``digest`` and return its storage key."""


class LocalAttachmentStore:
    def __init__(self, root: Path):
        self._root = root

    def persist(self, digest: str, data: bytes) -> str:
        target = self._root / digest[:2] / digest
        if not target.exists():
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = target.with_suffix(".tmp")
            tmp_path.write_bytes(data)
            tmp_path.replace(target)
        return str(target)


class S3AttachmentStore:
    def __init__(
        self,
        bucket: str,
        prefix: str = "attachments",
        region: str | None = None,
        s3_client: Any | None = None,
    ):
        if s3_client is None:
            if boto3 is None:
                raise RuntimeError("boto3 is required for S3 attachment storage")
            kwargs: dict[str, str] = {}
            if region:
                kwargs["region_name"] = region
            s3_client = boto3.client("s3", **kwargs)
        self._bucket = bucket
        self._prefix = prefix.strip("/")
        self._s3 = s3_client

    def persist(self, digest: str, data: bytes) -> str:
        key = f"{self._prefix}/{digest[:2]}/{digest}"
        self._s3.put_object(Bucket=self._bucket, Key=key, Body=data)
        return f"s3://{self._bucket}/{key}"


def attachment_bytes(attachment: Attachment) -> bytes:
    """Decode base64 attachment data; non-base64 data is stored as UTF-8 text."""
    if not attachment.data:
        return b""
    try:
        return base64.b64decode(attachment.data, validate=True)
    except (binascii.Error, ValueError):
        return attachment.data.encode("utf-8")


def persist_attachment(store: AttachmentStore, attachment: Attachment) -> AttachmentRef:
    data = attachment_bytes(attachment)
    digest = sha256(data).hexdigest()
    storage_key = store.persist(digest, data)
    return AttachmentRef(
        name=attachment.name,
        mime_type=attachment.mime_type,
        sha256=digest,
        size_bytes=len(data),
        storage_key=storage_key,
    )
