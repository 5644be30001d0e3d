from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Nexa Organization Hierarchy API"
    app_env: str = "local"
    app_debug: bool = True
    log_level: str = "INFO"
    database_url: str = "sqlite+pysqlite:///./orgtree.db"
    hierarchy_max_depth: int = 5
    hierarchy_walk_limit: int = 10
    seed_demo_data: bool = False
    metrics_enabled: bool = False
    otel_enabled: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
