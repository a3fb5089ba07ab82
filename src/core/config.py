from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SEPARATE_MAIN_CATEGORIES = "|".join(
    [
        "Immigration Israel",
        "Germany",
        "Small without meetin",
        "Uncategorized",
        "USA",
        "Austria",
        "Damages",
        "Commer/Civil/Adm/Fam",
        "Other Citizenships",
        "Poland",
        "German\\Austrian",
        "Referral Commission",
    ]
)


class Settings(BaseSettings):
    # Ignore unrelated env keys so local/dev .env can include frontend settings.
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Sales Contribution Engine"
    environment: str = "development"
    api_prefix: str = "/api/v1"
    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    supabase_url: str = Field(..., alias="SUPABASE_URL")
    supabase_service_role_key: Optional[str] = Field(
        default=None, alias="SUPABASE_SERVICE_ROLE_KEY"
    )
    supabase_anon_key: Optional[str] = Field(default=None, alias="SUPABASE_ANON_KEY")
    supabase_timeout_seconds: float = Field(default=30.0, alias="SUPABASE_TIMEOUT_SECONDS")
    supabase_page_size: int = Field(default=1000, alias="SUPABASE_PAGE_SIZE")

    signed_stage: int = Field(default=60, alias="SIGNED_STAGE")
    in_filter_chunk_size: int = Field(default=200, alias="IN_FILTER_CHUNK_SIZE")
    result_cache_size: int = Field(default=32, alias="RESULT_CACHE_SIZE")
    excluded_employee_names: str = Field(
        default="FINANCE,INTERNS,NO SCHEDULER,Mango Test,pink,Interns",
        alias="EXCLUDED_EMPLOYEE_NAMES",
    )
    # Pipe separated: some category names contain commas and slashes.
    separate_main_categories: str = Field(
        default=DEFAULT_SEPARATE_MAIN_CATEGORIES, alias="SEPARATE_MAIN_CATEGORIES"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_cors_origins() -> list[str]:
    settings = get_settings()
    return [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]


def get_excluded_employee_names() -> frozenset[str]:
    settings = get_settings()
    return frozenset(
        name.strip() for name in settings.excluded_employee_names.split(",") if name.strip()
    )


def get_separate_main_categories() -> tuple[str, ...]:
    settings = get_settings()
    return tuple(
        name.strip() for name in settings.separate_main_categories.split("|") if name.strip()
    )
