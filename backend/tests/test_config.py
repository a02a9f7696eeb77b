"""
Tests for CDS Hooks configuration
"""
import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from cds_hooks.core.config import Settings, get_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    """Rebuild cached settings around each test"""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_cds_config_defaults():
    """Test default values for the CDS configuration"""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None)

        assert settings.cds_base_url == "http://localhost:8000/cds-hooks"
        assert settings.cds_bearer_token is None
        assert settings.discovery_cache_ttl_seconds == 300
        assert settings.request_cache_ttl_seconds == 30
        assert settings.service_timeout_seconds == 5.0
        assert settings.debounce_delay_ms == 500
        assert settings.default_user_id == "current-user"
        assert settings.cds_disabled is False
        assert settings.enable_metrics is True
        assert settings.log_format == "json"


def test_cds_config_custom_values():
    """Test custom values read from the environment"""
    with patch.dict(os.environ, {
        "CDS_BASE_URL": "https://cds.example.org/cds-hooks/",
        "CDS_BEARER_TOKEN": "opaque-token",
        "FHIR_SERVER": "https://fhir.example.org/R4",
        "DISCOVERY_CACHE_TTL_SECONDS": "60",
        "REQUEST_CACHE_TTL_SECONDS": "10",
        "SERVICE_TIMEOUT_SECONDS": "2.5",
        "DEBOUNCE_DELAY_MS": "250",
        "CDS_DISABLED": "true",
        "LOG_FORMAT": "TEXT",
        "ALLOWED_ORIGINS": "http://a.test, http://b.test",
    }):
        settings = get_settings()

        assert settings.cds_base_url == "https://cds.example.org/cds-hooks"
        assert settings.cds_bearer_token == "opaque-token"
        assert settings.fhir_server == "https://fhir.example.org/R4"
        assert settings.discovery_cache_ttl_seconds == 60
        assert settings.request_cache_ttl_seconds == 10
        assert settings.service_timeout_seconds == 2.5
        assert settings.debounce_delay_ms == 250
        assert settings.cds_disabled is True
        assert settings.log_format == "text"
        assert settings.allowed_origins_list == ["http://a.test", "http://b.test"]


@pytest.mark.parametrize("name,value", [
    ("SERVICE_TIMEOUT_SECONDS", "0"),
    ("DISCOVERY_CACHE_TTL_SECONDS", "-1"),
    ("REQUEST_CACHE_TTL_SECONDS", "-5"),
    ("DEBOUNCE_DELAY_MS", "-100"),
    ("LOG_FORMAT", "xml"),
])
def test_cds_config_validation(name, value):
    """Test out-of-range values are rejected"""
    with patch.dict(os.environ, {name: value}):
        with pytest.raises(ValidationError):
            get_settings()
