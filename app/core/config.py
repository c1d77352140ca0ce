from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "grid-query"

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8081"

    DATABASE_URL: str

    # Comma separated table names (optionally schema-qualified) reflected as grid sources on first use
    GRID_TABLES: str = ""
    GRID_MAX_PAGE_SIZE: int = 1000
    GRID_DEFAULT_COUNT_MODE: str = "exact"  # none | exact | approximate
    GRID_COUNT_CACHE_ENABLED: bool = True
    GRID_COUNT_CACHE_TTL_SECONDS: int = 30
    GRID_COUNT_CACHE_MAX_ENTRIES: int = 1024
    GRID_TEXT_MATCH_CASE_INSENSITIVE: bool = True
    GRID_PAGINATION_STYLE: str = "limit_offset"  # limit_offset | offset_fetch

    @field_validator("GRID_DEFAULT_COUNT_MODE")
    @classmethod
    def _validate_count_mode(cls, v: str) -> str:
        value = v.strip().lower()
        if value not in {"none", "exact", "approximate"}:
            raise ValueError("GRID_DEFAULT_COUNT_MODE must be one of: none, exact, approximate")
        return value

    @field_validator("GRID_PAGINATION_STYLE")
    @classmethod
    def _validate_pagination_style(cls, v: str) -> str:
        value = v.strip().lower()
        if value not in {"limit_offset", "offset_fetch"}:
            raise ValueError("GRID_PAGINATION_STYLE must be limit_offset or offset_fetch")
        return value

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def grid_tables_list(self) -> List[str]:
        return [t.strip() for t in self.GRID_TABLES.split(",") if t.strip()]

settings = Settings()
