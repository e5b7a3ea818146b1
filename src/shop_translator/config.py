from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    app_version: str = "0.1.0"
    database_path: str = "data/translator.db"

    log_level: str = "INFO"
    log_format: str = "console"
    sentry_dsn: str = ""

    model_provider: str = "openai"
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_translate_model: str = "gpt-4.1-mini"

    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_translate_model: str = "google/gemini-2.5-flash-lite"

    translate_timeout_sec: int = 25

    max_chunk_chars: int = 1000
    min_chunk_chars: int = 200
    list_chunk_chars: int = 500
    simple_text_max_chars: int = 300

    provider_max_attempts: int = 3
    retry_base_delay_sec: float = 1.0
    retry_max_delay_sec: float = 10.0

    chars_per_credit: int = 100
    min_credit_charge: int = 1
    reservation_ttl_sec: int = 300
    cleanup_interval_sec: int = 60

    theme_schema_dir: str = "theme-schemas"
    max_field_batch_size: int = 1000
    batch_workers: int = 8

    admin_api_token: str = ""


settings = Settings()
