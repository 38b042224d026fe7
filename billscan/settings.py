"""Application settings loaded from the environment and ``.env``"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="BILLSCAN_", extra="ignore")

    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    ollama_model: str = "llava"
    prefer_local: bool = False

    default_currency: str = "USD"

    history_backend: str = "local"
    data_dir: str = "./data"
    db_path: str = "billscan.duckdb"
    max_bills: int = 20
    warn_threshold: int = 10

    rates_url: str = "https://latest.currency-api.pages.dev/v1/currencies/{base}.json"
    rates_ttl_hours: int = 24

    log_level: str = "INFO"
    log_json: bool = False


settings = Settings()
