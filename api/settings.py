from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    aws_region: str = "us-east-1"

    # Optional cross-account role used for read-only discovery
    discovery_role_arn: str = ""
    discovery_external_id: str = ""

    cluster_manager_url: str = "https://api.openshift.com"
    cluster_manager_govcloud_url: str = "https://api.openshiftusgov.com"
    cluster_manager_token: str = ""

    # Fixed wait after the last policy attachment, not a poll
    propagation_delay_seconds: int = 30

    database_url: str = "sqlite:///./identity_plans.db"
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
