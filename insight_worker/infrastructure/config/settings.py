"""
Configuration for the insight worker

All settings can be overridden via environment variables with the INSIGHT_WORKER_ prefix,
for example INSIGHT_WORKER_DATABASE_URL or INSIGHT_WORKER_LOG_FORMAT, or from a .env file.
"""

import uuid
from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkerSettings(BaseSettings):
    """Central configuration"""

    model_config = SettingsConfigDict(
        env_prefix="INSIGHT_WORKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Agent identity
    agent_name: str = Field(default="insight-worker", description="Human readable agent name")
    agent_id: Optional[str] = Field(default=None, description="Agent id; derived from agent_name when unset")

    # Database
    database_url: str = Field(default="sqlite:///./insight_worker.db", description="SQLAlchemy URL")
    database_echo: bool = Field(default=False, description="Log emitted SQL")

    # Language models
    llm_provider: str = Field(default="openai", description="LangChain model provider")
    small_model: str = Field(default="gpt-4o-mini", description="Model for classification, selection and drafting")
    large_model: str = Field(default="gpt-4o", description="Model for analysis synthesis")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or console")

    # Langfuse tracing
    langfuse_enabled: bool = Field(default=False)
    langfuse_public_key: Optional[str] = None
    langfuse_secret_key: Optional[str] = None
    langfuse_host: str = Field(default="https://cloud.langfuse.com")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    default_list_limit: int = Field(default=10, ge=1)
    max_list_limit: int = Field(default=100, ge=1)

    # Shutdown
    drain_timeout_seconds: float = Field(default=10.0, ge=0)

    @model_validator(mode="after")
    def derive_agent_id(self) -> "WorkerSettings":
        if not self.agent_id:
            self.agent_id = str(uuid.uuid5(uuid.NAMESPACE_DNS, f"{self.agent_name}.agents.local"))
        return self

    @property
    def tracing_enabled(self) -> bool:
        return bool(self.langfuse_enabled and self.langfuse_public_key and self.langfuse_secret_key)


@lru_cache()
def get_settings() -> WorkerSettings:
    """Cached settings instance"""
    return WorkerSettings()
