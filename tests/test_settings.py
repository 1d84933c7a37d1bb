from unittest.mock import patch

import pytest

from jobengine.config.settings import KVBackend, Settings, get_settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings(_env_file=None)

    assert settings.app_name == "Job Engine"
    assert settings.version == "1.0.0"
    assert settings.environment == "development"
    assert settings.kv_backend == KVBackend.SQL
    assert settings.job_concurrency == 5
    assert settings.job_poll_interval_ms == 1000
    assert settings.job_default_max_retries == 3
    assert settings.scheduler_default_timezone == "UTC"
    assert settings.strict_handler_validation is True


def test_backoff_base_must_not_exceed_cap():
    """Test that a base delay above the cap is rejected."""
    with pytest.raises(ValueError, match="JOB_BACKOFF_BASE_MS"):
        Settings(_env_file=None, job_backoff_base_ms=5000, job_max_backoff_ms=1000)


def test_production_blocks_memory_store():
    """Test that production environment blocks the in-process store."""
    with pytest.raises(ValueError, match="KV_BACKEND=memory is not allowed in production"):
        Settings(_env_file=None, environment="production", kv_backend=KVBackend.MEMORY)


def test_production_allows_sql_store():
    settings = Settings(_env_file=None, environment="production", kv_backend=KVBackend.SQL)
    assert settings.environment == "production"


def test_poll_interval_floor():
    with pytest.raises(ValueError):
        Settings(_env_file=None, job_poll_interval_ms=50)


def test_settings_dependency_injection():
    """Test the get_settings dependency function."""
    settings = get_settings()
    assert isinstance(settings, Settings)
    assert settings.app_name == "Job Engine"


@patch.dict("os.environ", {"JOB_CONCURRENCY": "12", "KV_BACKEND": "memory"})
def test_env_var_loading():
    """Test that environment variables are loaded correctly."""
    settings = Settings(_env_file=None)
    assert settings.job_concurrency == 12
    assert settings.kv_backend == KVBackend.MEMORY
