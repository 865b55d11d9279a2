from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LLMGW_", case_sensitive=False)

    env: str = "dev"
    log_level: str = "INFO"
    allow_origins: str = Field(
        default="https://app.cursor.sh", description="Comma separated CORS origins"
    )
    rate_limit_qpm: int = 60
    default_user_id: str = "openai-user"
    default_model_alias: str = "gpt-4o"
    log_mask_pii: bool = True
    streaming_enabled: bool = True
    request_timeout_s: float = 900.0
    provider_timeout_s: float = 120.0
    default_max_tokens: int = 2000

    # Model map
    model_map_source: str = "file"
    model_map_path: Path = Path("config/model_map.json")
    model_map_url: str | None = None
    model_map_bucket: str | None = None
    model_map_key: str = "config/model_map.json"
    model_map_ttl_seconds: float = 60.0

    # Credentials
    secret_backend: str = "env"
    openai_secret_name: str | None = "OPENAI_API_KEY"
    anthropic_secret_name: str | None = "ANTHROPIC_API_KEY"
    aws_region: str | None = None

    # Upstream endpoints
    openai_base_url: str = "https://api.openai.com"
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"

    # Audit
    audit_backend: str = "jsonl"
    audit_log_path: Path = Path("artifacts/audit/records.jsonl")
    audit_bucket: str | None = None
    audit_prefix: str = "audit"
    attachment_dir: Path = Path("artifacts/audit/attachments")
    contracts_dir: Path = Path(__file__).resolve().parents[2] / "docs" / "contracts" / "v1"

    metrics_enabled: bool = True

    @property
    def allow_origin_list(self) -> list[str]:
        origins = [item.strip() for item in self.allow_origins.split(",") if item.strip()]
        return origins or ["https://app.cursor.sh"]

    @property
    def model_map_source_normalized(self) -> str:
        return self.model_map_source.strip().lower()

    @property
    def secret_backend_normalized(self) -> str:
        return self.secret_backend.strip().lower()

    @property
    def audit_backend_normalized(self) -> str:
        return self.audit_backend.strip().lower()


@lru_cache
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
