from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    # App
    app_name: str = "Warden"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./warden.db"
    database_echo: bool = False

    # Logging
    log_level: str = "INFO"
    log_dir: str = "/var/log/warden"
    file_logging: bool = False

    # Grants
    grant_merge_retries: int = 3  # upsert attempts on concurrent share writes
    audit_denied_grants: bool = True
    default_management_permission: str = "permission.manage"
    team_management_permission: str = "team.manage"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="WARDEN_",
        case_sensitive=False,
        extra="ignore"  # Allow extra env vars without raising validation errors
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
