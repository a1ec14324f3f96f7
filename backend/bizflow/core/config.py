"""
Configuration management using Pydantic Settings
"""
import json
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# config.py is at: backend/bizflow/core/config.py
_current_file = Path(__file__).resolve()
_backend_dir = _current_file.parent.parent.parent
_project_root = _backend_dir.parent
ENV_FILE = _project_root / ".env"
# Fallback: backend/.env
if not ENV_FILE.exists():
    ENV_FILE = _backend_dir / ".env"
if ENV_FILE.exists():
    load_dotenv(ENV_FILE, override=False)


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "BizFlow"
    app_env: str = Field(default="development", description="Application environment")
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API port")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="Allowed CORS origins (comma-separated)"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_sqlalchemy: bool = Field(default=False, description="Enable SQLAlchemy query logging")
    log_uvicorn_access: bool = Field(default=False, description="Enable Uvicorn access logging")
    log_module_levels: Optional[str] = Field(
        default=None,
        description='Module-specific log levels (JSON string, e.g., {"bizflow.workflow": "DEBUG"})'
    )
    log_format: str = Field(
        default="json",
        description="Log format: 'json' for structured logging, 'text' for plain text"
    )
    log_file_enabled: bool = Field(default=False, description="Enable file logging")
    log_file_path: str = Field(
        default="logs/bizflow.log",
        description="Path to log file (relative to project root)"
    )
    log_file_retention: int = Field(default=30, ge=1, description="Number of days to keep log files")
    log_sensitive_data: bool = Field(
        default=False,
        description="Enable logging of sensitive data (passwords, tokens) - NOT RECOMMENDED"
    )

    # Database
    database_url_override: Optional[str] = Field(
        default=None,
        alias="database_url",
        description="Full SQLAlchemy URL; takes precedence over POSTGRES_* settings"
    )
    postgres_host: str = Field(default="localhost", description="PostgreSQL host")
    postgres_db: str = Field(default="bizflow", description="PostgreSQL database name")
    postgres_user: str = Field(default="bizflow", description="PostgreSQL user")
    postgres_password: str = Field(default="", description="PostgreSQL password")
    postgres_port: int = Field(default=5432, ge=1, le=65535, description="PostgreSQL port")
    database_pool_size: int = Field(default=20, ge=1, description="Database pool size")
    database_max_overflow: int = Field(default=10, ge=0, description="Database max overflow")

    # Workflow engine
    workflow_step_timeout_seconds: int = Field(
        default=45,
        ge=1,
        le=600,
        description="Maximum execution time of a single workflow step (seconds)"
    )
    workflow_max_inline_wait_ms: int = Field(
        default=5000,
        ge=0,
        description="Wait steps up to this length sleep inline; longer waits suspend the instance"
    )
    workflow_default_max_retries: int = Field(default=3, ge=0, le=20)
    workflow_default_retry_delay_ms: int = Field(default=1000, ge=0)
    event_max_dispatch_depth: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum nesting of event dispatches (events published by event handlers)"
    )
    queue_batch_size: int = Field(default=10, ge=1, le=500, description="Queue items per sweep")
    approval_timeout_hours: int = Field(default=24, ge=1, description="Default approval decision timeout")

    # Scheduler
    enable_scheduler: bool = Field(default=True, description="Run the background schedule/queue loop")
    scheduler_interval_seconds: int = Field(default=30, ge=1, description="Background loop interval")

    # AI provider
    ai_provider: str = Field(default="none", description="AI provider: 'none', 'ollama', 'anthropic'")
    ai_base_url: str = Field(default="http://localhost:11434", description="AI provider base URL")
    ai_model: str = Field(default="llama3", description="AI model name")
    ai_api_key: Optional[str] = Field(default=None, description="AI provider API key")
    ai_timeout_seconds: int = Field(default=30, ge=1, le=300)
    ai_max_tokens: int = Field(default=1024, ge=16, le=8192)

    # Email
    email_provider: str = Field(default="log", description="Email provider: 'log', 'resend', 'smtp'")
    email_from_address: str = Field(default="BizFlow <noreply@bizflow.local>")
    resend_api_key: Optional[str] = Field(default=None)
    smtp_host: Optional[str] = Field(default=None)
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_username: Optional[str] = Field(default=None)
    smtp_password: Optional[str] = Field(default=None)
    smtp_use_tls: bool = Field(default=True)

    # Webhooks
    webhook_timeout_seconds: int = Field(default=15, ge=1, le=120)

    @field_validator("ai_provider", "email_provider", "log_format", mode="before")
    @classmethod
    def normalize_choice(cls, v):
        """Lower-case provider and format names"""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @property
    def database_url(self) -> str:
        """Construct database URL"""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def module_levels(self) -> Dict[str, str]:
        """Parse module-specific log levels"""
        if not self.log_module_levels:
            return {}
        try:
            levels = json.loads(self.log_module_levels)
        except (json.JSONDecodeError, TypeError):
            return {}
        return levels if isinstance(levels, dict) else {}

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
