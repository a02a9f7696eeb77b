"""
Configuration management using Pydantic Settings
"""
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env from project root
# config.py is at: backend/cds_hooks/core/config.py
# Project root is: backend/cds_hooks/core/../../../
_current_file = Path(__file__).resolve()
_backend_dir = _current_file.parent.parent.parent
_project_root = _backend_dir.parent
ENV_FILE = _project_root / ".env"
# Fallback: try in backend/ directory if not found in project root
if not ENV_FILE.exists():
    ENV_FILE = _backend_dir / ".env"
if ENV_FILE.exists():
    load_dotenv(ENV_FILE, override=False)


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "CDS Hooks Orchestrator"
    app_env: str = Field(default="development", description="Application environment")
    allowed_origins: str = Field(
        default="http://localhost:3000",
        description="Allowed CORS origins (comma-separated)"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="json",
        description="Log format: 'json' for structured logging, 'text' for plain text"
    )
    log_module_levels: Optional[str] = Field(
        default=None,
        description='Module-specific log levels (JSON string, e.g., {"cds_hooks.services": "DEBUG"})'
    )
    log_file_enabled: bool = Field(default=False, description="Enable file logging")
    log_file_path: str = Field(
        default="logs/cds_hooks.log",
        description="Path to log file (relative to project root)"
    )
    log_file_retention: int = Field(
        default=14,
        ge=1,
        description="Number of days to keep log files"
    )
    log_sensitive_data: bool = Field(
        default=False,
        description="Enable logging of sensitive data (bearer tokens) - NOT RECOMMENDED"
    )

    # CDS Hooks endpoint
    cds_base_url: str = Field(
        default="http://localhost:8000/cds-hooks",
        description="Base URL of the CDS Hooks server (discovery lives at {base}/cds-services)"
    )
    cds_bearer_token: Optional[str] = Field(
        default=None,
        description="Opaque bearer token attached to every CDS request"
    )
    fhir_server: Optional[str] = Field(
        default=None,
        description="FHIR base URL forwarded to services as fhirServer"
    )

    # Caching and timing
    discovery_cache_ttl_seconds: float = Field(
        default=300,
        ge=0,
        description="How long a discovery result stays fresh (seconds)"
    )
    request_cache_ttl_seconds: float = Field(
        default=30,
        ge=0,
        description="How long a single service response stays cached (seconds)"
    )
    service_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=120,
        description="Timeout for one service call during a fan-out (seconds)"
    )
    debounce_delay_ms: int = Field(
        default=500,
        ge=0,
        description="Default debounce window for fire_debounced (milliseconds)"
    )

    # Manager defaults
    default_user_id: str = Field(default="current-user", description="userId used when a trigger carries none")
    cds_disabled: bool = Field(default=False, description="Disable all hook firing")

    # Static tables
    presentation_overrides: Optional[str] = Field(
        default=None,
        description='Presentation policy overrides (JSON string, e.g., {"order-sign": {"maxAlerts": 5}})'
    )
    workflow_trigger_overrides: Optional[str] = Field(
        default=None,
        description='Workflow event mapping overrides (JSON string, e.g., {"ALLERGY_ENTRY": "patient-view"})'
    )

    # Features
    enable_metrics: bool = Field(default=True, description="Expose Prometheus metrics")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Only json and text formatters exist"""
        value = v.strip().lower()
        if value not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return value

    @field_validator("cds_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
