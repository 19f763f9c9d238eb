"""Configuration loaded from environment (.env) and defaults."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Locate the project root .env file regardless of CWD
_THIS_DIR = Path(__file__).resolve().parent          # ticketforge/
_PROJECT_ROOT = _THIS_DIR.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE) if _ENV_FILE.exists() else ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM provider: openai | anthropic
    tf_llm_provider: str = "openai"

    openai_api_key: str | None = None
    anthropic_api_key: str | None = None

    # Candidate models, most capable first (comma-separated)
    tf_models: str = "gpt-4-turbo-preview,gpt-4,gpt-3.5-turbo"
    # Optional separate list for the streaming path; falls back to tf_models
    tf_stream_models: str | None = None

    # Invocation engine
    tf_max_retries: int = 2
    tf_initial_delay_seconds: float = 1.0
    tf_attempt_timeout_seconds: float = 25.0
    tf_overall_timeout_seconds: float = 50.0
    tf_temperature: float = 0.5
    tf_max_tokens: int = 1500
    tf_fallback_prompt_chars: int = 2000
    tf_fallback_max_tokens: int = 1000
    tf_fallback_temperature: float = 0.3

    # Similarity cache
    tf_cache_capacity: int = 50
    tf_cache_ttl_seconds: float = 24 * 60 * 60
    tf_cache_similarity_threshold: float = 0.85
    tf_cache_hit_delay_seconds: float = 1.5

    # Background worker pool
    tf_worker_concurrency: int = 4
    tf_worker_queue_size: int = 100
    tf_stale_job_seconds: float = 600.0
    tf_stale_sweep_interval_seconds: float = 60.0
    tf_shutdown_grace_seconds: float = 30.0

    # Streaming transport
    tf_first_chunk_timeout_seconds: float = 10.0
    tf_stall_timeout_seconds: float = 10.0
    tf_stall_check_interval_seconds: float = 3.0
    tf_min_partial_length: int = 100
    tf_stream_cache_hit_delay_seconds: float = 0.5
    tf_stream_max_duration_seconds: float = 180.0

    # Data directory (file job store lives under <data_dir>/jobs)
    tf_data_dir: str = "./data"
    # Postgres job store; file store is used when unset
    tf_database_url: str | None = None

    # CORS origins (comma-separated). Defaults to localhost dev.
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    cors_origin_regex: str | None = None

    port: int = 8000
    tf_log_level: str = "INFO"

    @property
    def data_dir(self) -> Path:
        """Data directory as an absolute Path.

        Relative paths are resolved against the project root (not CWD).
        """
        p = Path(self.tf_data_dir)
        if not p.is_absolute():
            return (_PROJECT_ROOT / p).resolve()
        return p.resolve()

    @property
    def jobs_dir(self) -> Path:
        return self.data_dir / "jobs"

    @property
    def model_list(self) -> list[str]:
        return _split_csv(self.tf_models)

    @property
    def stream_model_list(self) -> list[str]:
        return _split_csv(self.tf_stream_models) or self.model_list

    @property
    def llm_api_key(self) -> str | None:
        """API key of the selected provider."""
        if self.tf_llm_provider.lower() == "anthropic":
            return self.anthropic_api_key
        return self.openai_api_key

    @property
    def cors_origin_list(self) -> list[str]:
        return _split_csv(self.cors_origins)

    def ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        if not self.tf_database_url:
            self.jobs_dir.mkdir(parents=True, exist_ok=True)


def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_dirs()
    return settings
