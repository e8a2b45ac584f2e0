from __future__ import annotations
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "referral-intake-service"
    app_env: str = "dev"
    log_level: str = "INFO"
    log_json: bool = False

    gemini_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("gemini_api_key", "api_key"),
    )
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-2.5-flash"
    extraction_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    extraction_timeout_sec: float = 30.0

    azure_storage_sas_url: Optional[str] = None
    storage_timeout_sec: float = 30.0

    records_data_path: str = "data/referrals.json"
    sample_data_path: str = "sample_data/sample_referrals.json"
    seed_sample_records: bool = False
    id_generation_attempts: int = Field(default=5, ge=1)


settings = Settings()
