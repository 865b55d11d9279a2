import asyncio
import json
from pathlib import Path

import httpx
import pytest

from llm_gateway.core.errors import ConfigurationError
from llm_gateway.routing.model_map import (
    FileModelMapSource,
    HTTPModelMapSource,
    ModelMapStore,
    ModelMapUnavailableError,
    S3ModelMapSource,
    build_model_map_source,
)


class CountingSource:
    def __init__(self, payload: dict) -> None:
        self.payload = payload
        self.calls = 0

    async def load(self) -> dict:
        self.calls += 1
        return self.payload


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_unknown_role_falls_back_to_default() -> None:
    store = ModelMapStore(
        CountingSource({"_default": {"provider": "openai", "model": "gpt-4o-mini"}})
    )
    config = asyncio.run(store.resolve("frontend"))
    assert config.provider == "openai"
    assert config.model == "gpt-4o-mini"


def test_exact_role_wins_over_default() -> None:
    store = ModelMapStore(
        CountingSource(
            {
                "backend": {"provider": "anthropic", "model": "claude-3-5-sonnet-20240620"},
                "_default": {"provider": "openai", "model": "gpt-4o-mini"},
            }
        )
    )
    config = asyncio.run(store.resolve("backend"))
    assert config.provider == "anthropic"


def test_missing_default_raises_caller_correctable_error() -> None:
    store = ModelMapStore(CountingSource({"qa": {"provider": "openai", "model": "gpt-4o"}}))
    with pytest.raises(ConfigurationError, match="Invalid role: frontend") as exc_info:
        asyncio.run(store.resolve("frontend"))
    assert exc_info.value.caller_correctable is True


def test_malformed_entry_is_operator_error() -> None:
    store = ModelMapStore(CountingSource({"_default": {"provider": "mistral", "model": "x"}}))
    with pytest.raises(ConfigurationError) as exc_info:
        asyncio.run(store.resolve("qa"))
    assert exc_info.value.caller_correctable is False


def test_cache_is_reused_until_ttl_expires() -> None:
    clock = FakeClock()
    source = CountingSource({"_default": {"provider": "openai", "model": "gpt-4o-mini"}})
    store = ModelMapStore(source, ttl_seconds=60, clock=clock)

    asyncio.run(store.resolve("qa"))
    clock.now = 59.0
    asyncio.run(store.resolve("qa"))
    assert source.calls == 1

    source.payload = {"_default": {"provider": "anthropic", "model": "claude-3-5-haiku"}}
    clock.now = 60.5
    config = asyncio.run(store.resolve("qa"))
    assert source.calls == 2
    assert config.model == "claude-3-5-haiku"


def test_file_source_reads_json(tmp_path: Path) -> None:
    path = tmp_path / "map.json"
    path.write_text(json.dumps({"_default": {"provider": "openai", "model": "gpt-4o"}}))
    assert asyncio.run(FileModelMapSource(path).load())["_default"]["model"] == "gpt-4o"


def test_file_source_missing_file_is_unavailable(tmp_path: Path) -> None:
    with pytest.raises(ModelMapUnavailableError):
        asyncio.run(FileModelMapSource(tmp_path / "missing.json").load())


def test_http_source_fetches_map() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url == "https://config.example.com/map.json"
        return httpx.Response(200, json={"_default": {"provider": "openai", "model": "gpt-4o"}})

    source = HTTPModelMapSource(
        "https://config.example.com/map.json", transport=httpx.MockTransport(handler)
    )
    assert asyncio.run(source.load())["_default"]["provider"] == "openai"


def test_http_source_error_is_unavailable() -> None:
    source = HTTPModelMapSource(
        "https://config.example.com/map.json",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    with pytest.raises(ModelMapUnavailableError):
        asyncio.run(source.load())


def test_s3_source_reads_object() -> None:
    class _Body:
        def read(self) -> bytes:
            return b'{"_default": {"provider": "anthropic", "model": "claude-3-5-haiku"}}'

    class _S3:
        def get_object(self, Bucket: str, Key: str) -> dict:  # noqa: N803
            assert Bucket == "configs"
            assert Key == "config/model_map.json"
            return {"Body": _Body()}

    source = S3ModelMapSource(bucket="configs", key="config/model_map.json", s3_client=_S3())
    assert asyncio.run(source.load())["_default"]["model"] == "claude-3-5-haiku"


def test_s3_source_failure_is_unavailable() -> None:
    class _S3:
        def get_object(self, Bucket: str, Key: str) -> dict:  # noqa: N803
            raise RuntimeError("AccessDenied")

    source = S3ModelMapSource(bucket="configs", key="map.json", s3_client=_S3())
    with pytest.raises(ModelMapUnavailableError, match="AccessDenied"):
        asyncio.run(source.load())


def test_build_source_validates_required_settings(tmp_path: Path) -> None:
    kwargs = {"path": tmp_path / "m.json", "url": None, "bucket": None, "key": "k", "region": None}
    assert isinstance(build_model_map_source("file", **kwargs), FileModelMapSource)
    with pytest.raises(ValueError, match="MODEL_MAP_URL"):
        build_model_map_source("http", **kwargs)
    with pytest.raises(ValueError, match="Unsupported"):
        build_model_map_source("ftp", **kwargs)


def test_lookup_reports_matched_key() -> None:
    store = ModelMapStore(
        CountingSource(
            {
                "backend": {"provider": "anthropic", "model": "claude-3-5-sonnet-20240620"},
                "_default": {"provider": "openai", "model": "gpt-4o-mini"},
            }
        )
    )
    assert asyncio.run(store.lookup("backend"))[0] == "backend"
    key, config = asyncio.run(store.lookup("some-random-alias"))
    assert key == "_default"
    assert config.model == "gpt-4o-mini"
