"""Role to upstream model mapping with a TTL-bound cache."""

import asyncio
import importlib
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from time import monotonic
from typing import Any, Literal, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from llm_gateway.core.errors import ConfigurationError

logger = logging.getLogger("llmgw.model_map")

DEFAULT_KEY = "_default"

boto3: Any | None
try:  # pragma: no cover - optional dependency
    boto3 = importlib.import_module("boto3")
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    boto3 = None


class ModelConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: Literal["openai", "anthropic"]
    model: str


class ModelMapUnavailableError(Exception):
    """Raised when the model map source cannot be read."""


ModelMap = Mapping[str, ModelConfig]


class ModelMapSource(Protocol):
    async def load(self) -> dict[str, Any]:
        """Return the raw role -> config mapping."""


def parse_model_map(raw: object) -> dict[str, ModelConfig]:
    if not isinstance(raw, dict):
        raise ConfigurationError("Model map must be a JSON object")

    parsed: dict[str, ModelConfig] = {}
    for role, entry in raw.items():
        try:
            parsed[str(role)] = ModelConfig.model_validate(entry)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid model map entry for role '{role}': {exc}") from exc
    return parsed


class FileModelMapSource:
    def __init__(self, path: Path):
        self._path = path

    async def load(self) -> dict[str, Any]:
        try:
            text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
            data: dict[str, Any] = json.loads(text)
        except (OSError, json.JSONDecodeError) as exc:
            raise ModelMapUnavailableError(f"Cannot read model map {self._path}: {exc}") from exc
        return data


class HTTPModelMapSource:
    def __init__(
        self,
        url: str,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url
        self._timeout = timeout_s
        self._transport = transport

    async def load(self) -> dict[str, Any]:
        try:
            client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
            async with client:
                resp = await client.get(self._url)
                resp.raise_for_status()
                data: dict[str, Any] = resp.json()
        except (httpx.HTTPError, json.JSONDecodeError) as exc:
            raise ModelMapUnavailableError(f"Cannot fetch model map {self._url}: {exc}") from exc
        return data


class S3ModelMapSource:
    """Model map stored as one JSON object in S3."""

    def __init__(
        self,
        bucket: str,
        key: str,
        region: str | None = None,
        s3_client: Any | None = None,
    ):
        if s3_client is None:
            if boto3 is None:
                raise RuntimeError("boto3 is required for the S3 model map source")
            kwargs: dict[str, str] = {}
            if region:
                kwargs["region_name"] = region
            s3_client = boto3.client("s3", **kwargs)
        self._bucket = bucket
        self._key = key
        self._s3 = s3_client

    def _read(self) -> dict[str, Any]:
        response = self._s3.get_object(Bucket=self._bucket, Key=self._key)
        body = response["Body"].read()
        if isinstance(body, bytes):
            body = body.decode("utf-8")
        data: dict[str, Any] = json.loads(body)
        return data

    async def load(self) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(self._read)
        except Exception as exc:
            raise ModelMapUnavailableError(
                f"Cannot read model map s3://{self._bucket}/{self._key}: {exc}"
            ) from exc


@dataclass(frozen=True)
class _Snapshot:
    entries: dict[str, ModelConfig]
    loaded_at: float


class ModelMapStore:
    """Caches the model map and resolves roles against it.

    The cached snapshot is replaced as a whole after each refresh, so readers
    never observe a half-built map. Concurrent refreshes after expiry may both
    hit the source; whichever finishes last wins.
    """

    def __init__(
        self,
        source: ModelMapSource,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = monotonic,
    ):
        self._source = source
        self._ttl_seconds = max(ttl_seconds, 0.0)
        self._clock = clock
        self._snapshot: _Snapshot | None = None

    async def get(self) -> ModelMap:
        snapshot = self._snapshot
        if snapshot is not None and self._clock() - snapshot.loaded_at < self._ttl_seconds:
            return snapshot.entries

        raw = await self._source.load()
        entries = parse_model_map(raw)
        self._snapshot = _Snapshot(entries=entries, loaded_at=self._clock())
        logger.info("model_map_refreshed: %d roles", len(entries))
        return entries

    async def lookup(self, role: str) -> tuple[str, ModelConfig]:
        """Return the matched map key (``role`` or ``_default``) and its config."""
        entries = await self.get()
        for key in (role, DEFAULT_KEY):
            config = entries.get(key)
            if config is not None:
                return key, config
        raise ConfigurationError(f"Invalid role: {role}", caller_correctable=True)

    async def resolve(self, role: str) -> ModelConfig:
        _, config = await self.lookup(role)
        return config


def build_model_map_source(
    source: str,
    *,
    path: Path,
    url: str | None,
    bucket: str | None,
    key: str,
    region: str | None,
) -> ModelMapSource:
    if source == "file":
        return FileModelMapSource(path)
    if source == "http":
        if not url:
            raise ValueError("LLMGW_MODEL_MAP_URL is required when model_map_source=http")
        return HTTPModelMapSource(url)
    if source == "s3":
        if not bucket:
            raise ValueError("LLMGW_MODEL_MAP_BUCKET is required when model_map_source=s3")
        return S3ModelMapSource(bucket=bucket, key=key, region=region)
    raise ValueError(f"Unsupported model map source: {source}")
