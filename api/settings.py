from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    aws_role_arn: Optional[str] = None
    aws_external_id: Optional[str] = None

    storage_path: str = "state"
    database_url: str = "sqlite:///./bootctl.db"
    webhook_secret: str = ""

    profile_propagation_seconds: float = 15
    termination_poll_seconds: float = 5
    termination_timeout_seconds: float = 600

    instance_type: str = "t2.medium"
    admin_user: str = "ubuntu"


@lru_cache
def get_settings() -> Settings:
    return Settings()
