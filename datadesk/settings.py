# datadesk/settings.py
from __future__ import annotations
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices


class Settings(BaseSettings):
    # pydantic v2 config
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Gemini ---
    GEMINI_API_KEY: str
    # generation model used by the router, planners and the cleaner
    GEMINI_MODEL: str = Field(default="gemini-1.5-pro", validation_alias=AliasChoices("GEMINI_MODEL", "GEMINI_MODEL_PLANNER"))
    # used once when the primary model is rate limited
    GEMINI_FALLBACK_MODEL: Optional[str] = "gemini-1.5-flash"

    # --- Databases (MySQL, async driver) ---
    ENTITIES_DB_URL: str = Field(validation_alias=AliasChoices("ENTITIES_DB_URL", "ENTITIES_DATABASE_URL"))
    DMS_DB_URL: str = Field(validation_alias=AliasChoices("DMS_DB_URL", "DMS_DATABASE_URL"))
    STATEMENT_TIMEOUT_MS: int = Field(default=20000, validation_alias=AliasChoices("STATEMENT_TIMEOUT_MS", "SQL_STATEMENT_TIMEOUT_MS"))  # 20s
    SQL_MAX_LIMIT: int = 100

    # --- Natural-language query ---
    PLAN_MAX_RETRIES: int = 3
    MAX_CORRECTION_ATTEMPTS: int = 2
    ROUTER_TIMEOUT_S: float = 20.0
    PLAN_TIMEOUT_S: float = 30.0

    # --- Cleanup pipeline ---
    CLEANUP_MAX_CONCURRENT: int = 3
    CLEANUP_RETRY_ATTEMPTS: int = 3
    CLEANUP_RETRY_DELAY_BASE_MS: int = 1000
    CLEANUP_TIMEOUT_MS: int = 30_000
    CLEANUP_MAX_BYTES_PER_CHUNK: int = 3_000

    # Misc
    LOG_LEVEL: str = "INFO"
    APP_NAME: str = "Datadesk API"
    APP_VERSION: str = "0.1.0"
