from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # logging
    log_level: str = "INFO"
    log_json: bool = False

    # documents served by the HTTP surface
    manifest_path: str = ""
    chain_config_path: str = ""

    # remote calls / data sources
    http_timeout_sec: float = 15.0
    ds_stale_time_ms: int = 60_000
    ds_retry: int = 1

    # workflow
    form_debounce_ms: int = 100
    session_unlock_timeout_sec: int = 900
    fee_bucket: str = "avg"
    execution_placeholder_hash: str = "0xDEMO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def MANIFEST_PATH(self) -> str:
        return self.manifest_path

    @property
    def CHAIN_CONFIG_PATH(self) -> str:
        return self.chain_config_path


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings loader (process-level).
    """
    return Settings()
