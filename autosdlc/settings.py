from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal, Union
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="AUTOSDLC_")

    # Environment
    environment: Literal["development", "production", "test"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Coordinator API
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    cors_origins: Union[str, list[str]] = ["*"]

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            if not v or not v.strip():
                return ["*"]
            # Parse comma-separated values and filter empty strings
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        if isinstance(v, list):
            return v
        return ["*"]

    # Agents
    agent_host: str = "127.0.0.1"
    agent_port_range_start: int = 3701
    agent_port_range_end: int = 3799
    coordinator_url: str = ""

    # Timeouts (seconds unless noted)
    request_timeout: float = 5.0
    message_timeout_ms: int = 5000

    # Status publication
    workspace_root: str = "./workspace"
    shared_status_dir: str = "./shared/status"
    status_update_interval: float = 5.0
    watch_interval: float = 1.0
    watch_debounce_ms: int = 100

settings = Settings()
