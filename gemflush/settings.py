from dataclasses import dataclass
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    return float(value)


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip() or default


@dataclass(frozen=True)
class Settings:
    app_name: str = os.getenv("APP_NAME", "gemflush-automation")
    database_url: str = os.getenv(
        "DATABASE_URL",
        "postgresql+asyncpg://gemflush:gemflush@db:5432/gemflush",
    )
    database_pool_mode: str = _env_str("DATABASE_POOL_MODE", "auto")
    database_pool_size: int = _env_int("DATABASE_POOL_SIZE", 5)
    database_pool_max_overflow: int = _env_int("DATABASE_POOL_MAX_OVERFLOW", 10)
    database_pool_timeout_seconds: int = _env_int("DATABASE_POOL_TIMEOUT_SECONDS", 30)
    log_level: str = _env_str("LOG_LEVEL", "INFO")
    log_format: str = _env_str("LOG_FORMAT", "console")
    log_requests: bool = _env_bool("LOG_REQUESTS", True)
    log_uvicorn_access: bool = _env_bool("LOG_UVICORN_ACCESS", False)
    log_request_skip_paths: str = _env_str("LOG_REQUEST_SKIP_PATHS", "/healthz")
    log_redact_fields: str = os.getenv("LOG_REDACT_FIELDS", "")
    scheduler_enabled: bool = _env_bool("SCHEDULER_ENABLED", True)
    scheduler_tick_seconds: int = _env_int("SCHEDULER_TICK_SECONDS", 300)
    scheduler_batch_size: int = _env_int("SCHEDULER_BATCH_SIZE", 10)
    scheduler_catch_missed: bool = _env_bool("SCHEDULER_CATCH_MISSED", True)
    scheduler_stale_after_days: int = _env_int("SCHEDULER_STALE_AFTER_DAYS", 30)
    crawl_max_attempts: int = _env_int("CRAWL_MAX_ATTEMPTS", 3)
    crawl_retry_base_delay_seconds: float = _env_float(
        "CRAWL_RETRY_BASE_DELAY_SECONDS",
        2.0,
    )
    crawl_retry_max_delay_seconds: float = _env_float(
        "CRAWL_RETRY_MAX_DELAY_SECONDS",
        30.0,
    )
    firecrawl_api_url: str = _env_str("FIRECRAWL_API_URL", "https://api.firecrawl.dev")
    firecrawl_api_key: str | None = os.getenv("FIRECRAWL_API_KEY")
    firecrawl_timeout_seconds: float = _env_float("FIRECRAWL_TIMEOUT_SECONDS", 60.0)
    collaborator_base_url: str = _env_str("COLLABORATOR_BASE_URL", "http://collaborators:8080")
    collaborator_api_key: str | None = os.getenv("COLLABORATOR_API_KEY")
    collaborator_timeout_seconds: float = _env_float("COLLABORATOR_TIMEOUT_SECONDS", 30.0)
    publish_target: str = _env_str("PUBLISH_TARGET", "test.wikidata")
    publish_error_message_max_chars: int = _env_int("PUBLISH_ERROR_MESSAGE_MAX_CHARS", 100)
    manual_publish_dir: str = _env_str(
        "MANUAL_PUBLISH_DIR",
        "/tmp/gemflush/manual_publish",
    )


settings = Settings()
