"""Provider credential lookup with an in-process cache."""

import asyncio
import importlib
import os
from collections.abc import Mapping
from typing import Any, Protocol

boto3: Any | None
try:  # pragma: no cover - optional dependency
    boto3 = importlib.import_module("boto3")
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    boto3 = None


class SecretSource(Protocol):
    async def get_secret(self, name: str) -> str:
        """Return the secret value, or an empty string when it does not exist."""


class EnvSecretSource:
    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = environ if environ is not None else os.environ

    async def get_secret(self, name: str) -> str:
        return self._environ.get(name, "")


class AWSSecretsManagerSource:
    def __init__(self, region: str | None = None, client: Any | None = None):
        if client is None:
            if boto3 is None:
                raise RuntimeError("boto3 is required for the AWS secret backend")
            kwargs: dict[str, str] = {}
            if region:
                kwargs["region_name"] = region
            client = boto3.client("secretsmanager", **kwargs)
        self._client = client

    def _read(self, name: str) -> str:
        response = self._client.get_secret_value(SecretId=name)
        return str(response.get("SecretString") or "")

    async def get_secret(self, name: str) -> str:
        return await asyncio.to_thread(self._read, name)


class CachedSecretStore:
    """Caches secrets for the lifetime of the process.

    Each secret name has its own ``asyncio.Lock`` so a cold lookup for one
    credential never blocks lookups for another, and concurrent cold lookups
    for the same name hit the backend once.
    """

    def __init__(self, source: SecretSource):
        self._source = source
        self._values: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def get_secret(self, name: str) -> str:
        cached = self._values.get(name)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(name, asyncio.Lock())
        async with lock:
            cached = self._values.get(name)
            if cached is not None:
                return cached
            value = await self._source.get_secret(name)
            self._values[name] = value
            return value

    def cached_names(self) -> list[str]:
        return sorted(self._values)


def build_secret_source(backend: str, region: str | None = None) -> SecretSource:
    if backend == "env":
        return EnvSecretSource()
    if backend == "aws":
        return AWSSecretsManagerSource(region=region)
    raise ValueError(f"Unsupported secret backend: {backend}")
