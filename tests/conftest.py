import json
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from llm_gateway.config.settings import clear_settings_cache
from llm_gateway.main import create_app
from llm_gateway.metrics import reset_metrics

MODEL_MAP = {
    "backend": {"provider": "anthropic", "model": "claude-3-5-sonnet-20240620"},
    "qa": {"provider": "openai", "model": "gpt-4o"},
    "_default": {"provider": "openai", "model": "gpt-4o-mini"},
}


class FakeUpstream:
    """Records upstream calls and answers them with a swappable handler."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = lambda request: (
            httpx.Response(500, json={"error": "no handler configured"})
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def bodies(self) -> list[dict[str, object]]:
        return [json.loads(request.content) for request in self.requests]


@pytest.fixture
def model_map_path(tmp_path: Path) -> Path:
    path = tmp_path / "model_map.json"
    path.write_text(json.dumps(MODEL_MAP), encoding="utf-8")
    return path


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, model_map_path: Path) -> TestClient:
    monkeypatch.setenv("LLMGW_MODEL_MAP_PATH", str(model_map_path))
    monkeypatch.setenv("LLMGW_AUDIT_LOG_PATH", str(tmp_path / "audit" / "records.jsonl"))
    monkeypatch.setenv("LLMGW_ATTACHMENT_DIR", str(tmp_path / "audit" / "attachments"))
    monkeypatch.setenv("LLMGW_ALLOW_ORIGINS", "https://app.cursor.sh,https://studio.example.com")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-openai")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test-anthropic")
    clear_settings_cache()
    reset_metrics()
    app = create_app()
    return TestClient(app)


@pytest.fixture
def upstream(client: TestClient) -> FakeUpstream:
    fake = FakeUpstream()
    client.app.state.gateway_service.provider_registry.transport = httpx.MockTransport(fake)
    return fake


@pytest.fixture
def audit_records(client: TestClient, tmp_path: Path) -> Callable[[], list[dict]]:
    path = tmp_path / "audit" / "records.jsonl"

    def _read() -> list[dict]:
        client.app.state.gateway_service.audit_dispatcher.flush(timeout=5)
        if not path.exists():
            return []
        lines = path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line]

    return _read
