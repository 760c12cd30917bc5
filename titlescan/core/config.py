"""Application configuration."""

import os
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)


def find_env_file() -> Optional[Path]:
    """Find .env file in multiple possible locations."""
    current_dir = os.path.dirname(os.path.abspath(__file__))

    possible_paths = [
        os.path.join(current_dir, ".env"),
        os.path.join(os.path.dirname(current_dir), ".env"),
        os.path.join(os.path.dirname(os.path.dirname(current_dir)), ".env"),
    ]

    for path_str in possible_paths:
        if os.path.exists(path_str):
            path = Path(path_str)
            LOGGER.info(f"Found .env file at: {path}")
            return path

    LOGGER.debug("No .env file found in expected locations")
    return None


ENV_FILE = find_env_file()


def _settings_config() -> SettingsConfigDict:
    return SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="",
    )


class LLMSettings(BaseSettings):
    """Model provider settings."""

    provider: str = Field(default="gemini", validation_alias="LLM_PROVIDER")

    gemini_api_key: str = Field(default="", validation_alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.5-pro", validation_alias="GEMINI_MODEL")

    openrouter_api_key: str = Field(default="", validation_alias="OPENROUTER_API_KEY")
    openrouter_api_url: str = Field(
        default="https://openrouter.ai/api/v1/chat/completions",
        validation_alias="OPENROUTER_API_URL",
    )
    openrouter_model: str = Field(default="google/gemini-2.5-pro", validation_alias="OPENROUTER_MODEL")

    timeout: int = Field(default=300, validation_alias="LLM_TIMEOUT")
    # Retries belong to the caller (Temporal retry policy); one attempt per call here.
    max_retries: int = Field(default=1, validation_alias="LLM_MAX_RETRIES")

    model_config = _settings_config()

    def model_post_init(self, __context) -> None:
        """Log settings after initialization."""
        LOGGER.info(f"LLM Provider: {self.provider}")
        if self.provider == "gemini":
            LOGGER.info(f"Gemini API Key present: {bool(self.gemini_api_key)}")
        elif self.provider == "openrouter":
            LOGGER.info(f"OpenRouter API Key present: {bool(self.openrouter_api_key)}")
        else:
            LOGGER.warning(f"Using unsupported LLM provider: {self.provider}")


class PipelineSettings(BaseSettings):
    """Analysis pipeline settings."""

    shape: str = Field(default="segmented", validation_alias="PIPELINE_SHAPE")
    batch_size: int = Field(default=10, validation_alias="BATCH_SIZE")
    render_scale: float = Field(default=1.2, validation_alias="RENDER_SCALE")
    image_format: str = Field(default="jpeg", validation_alias="IMAGE_FORMAT")
    jpeg_quality: int = Field(default=90, validation_alias="JPEG_QUALITY")
    sort_title_chain: bool = Field(default=True, validation_alias="SORT_TITLE_CHAIN")
    segment_concurrency: int = Field(default=1, validation_alias="SEGMENT_CONCURRENCY")

    # Large inputs are allowed but slow; these only trigger warnings
    warn_pages_per_file: int = Field(default=50, validation_alias="WARN_PAGES_PER_FILE")
    warn_total_pages: int = Field(default=150, validation_alias="WARN_TOTAL_PAGES")

    model_config = _settings_config()


class StorageSettings(BaseSettings):
    """Supabase storage settings."""

    url: str = Field(default="", validation_alias="SUPABASE_URL")
    service_role_key: str = Field(default="", validation_alias="SUPABASE_SERVICE_ROLE_KEY")
    uploads_bucket: str = Field(default="uploads", validation_alias="UPLOADS_BUCKET")
    reports_bucket: str = Field(default="reports", validation_alias="REPORTS_BUCKET")
    reports_prefix: str = Field(default="reports", validation_alias="REPORTS_PREFIX")

    model_config = _settings_config()


class TemporalSettings(BaseSettings):
    """Temporal connection and workflow settings."""

    host: str = Field(default="localhost", validation_alias="TEMPORAL_HOST")
    port: int = Field(default=7233, validation_alias="TEMPORAL_PORT")
    namespace: str = Field(default="default", validation_alias="TEMPORAL_NAMESPACE")
    task_queue: str = Field(default="property-analysis-queue", validation_alias="TEMPORAL_TASK_QUEUE")
    analysis_timeout_minutes: int = Field(default=30, validation_alias="ANALYSIS_TIMEOUT_MINUTES")
    analysis_max_attempts: int = Field(default=3, validation_alias="ANALYSIS_MAX_ATTEMPTS")

    model_config = _settings_config()


class Settings(BaseSettings):
    """Unified application settings with nested models."""

    app_name: str = Field(default="TitleScan AI", validation_alias="APP_NAME")
    app_version: str = "0.1.0"
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    debug: bool = Field(default=True, validation_alias="DEBUG")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        validation_alias="CORS_ORIGINS",
    )

    api_v1_prefix: str = "/api/v1"
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=8000, validation_alias="PORT")

    http_timeout: int = 60

    llm: LLMSettings = Field(default_factory=lambda: LLMSettings())
    pipeline: PipelineSettings = Field(default_factory=lambda: PipelineSettings())
    storage: StorageSettings = Field(default_factory=lambda: StorageSettings())
    temporal: TemporalSettings = Field(default_factory=lambda: TemporalSettings())

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def llm_provider(self) -> str:
        return self.llm.provider

    @property
    def gemini_api_key(self) -> str:
        return self.llm.gemini_api_key

    @property
    def gemini_model(self) -> str:
        return self.llm.gemini_model

    @property
    def openrouter_api_key(self) -> str:
        return self.llm.openrouter_api_key

    @property
    def openrouter_api_url(self) -> str:
        return self.llm.openrouter_api_url

    @property
    def openrouter_model(self) -> str:
        return self.llm.openrouter_model

    @property
    def batch_size(self) -> int:
        return self.pipeline.batch_size

    @property
    def supabase_url(self) -> str:
        return self.storage.url

    @property
    def supabase_service_role_key(self) -> str:
        return self.storage.service_role_key

    @property
    def temporal_host(self) -> str:
        return self.temporal.host

    @property
    def temporal_port(self) -> int:
        return self.temporal.port

    @property
    def temporal_namespace(self) -> str:
        return self.temporal.namespace

    @property
    def temporal_task_queue(self) -> str:
        return self.temporal.task_queue


settings = Settings()

LOGGER.info(f"Settings initialized with environment: {settings.environment}")
LOGGER.info(
    f"Pipeline settings: shape={settings.pipeline.shape}, batch_size={settings.pipeline.batch_size}, "
    f"render_scale={settings.pipeline.render_scale}"
)
