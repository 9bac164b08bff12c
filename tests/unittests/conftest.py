import pytest

from locallift.main.config import Settings, reset_settings, set_settings


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings with explicit values for unit tests.

    Provides a clean, isolated configuration that doesn't depend on the
    .env file or environment variables. Delays are zero so batches run
    instantly.
    """
    return Settings(
        _env_file=None,
        # Minimal database settings (not used in unit tests)
        postgres_user="unit_test_user",
        postgres_host="localhost",
        postgres_password="unit_test_password",
        postgres_port=5432,
        postgres_db="unit_test_db",
        # Redis settings (not used in unit tests)
        redis_host="localhost",
        redis_port=6379,
        # External APIs
        rank_check_api_url="https://rank-check.test/check",
        rank_check_api_key="test-rank-key",
        google_client_id="test-client-id",
        google_client_secret="test-client-secret",
        # No waiting in tests
        rank_check_min_delay_seconds=0,
        rank_check_delay_jitter_seconds=0,
        rank_check_error_cooldown_seconds=0,
        rank_check_initial_backoff_seconds=0,
        rank_check_backoff_jitter_seconds=0,
        rank_check_rate_limit_cooldown_seconds=0,
        post_publish_min_delay_seconds=0,
        post_publish_error_cooldown_seconds=0,
        post_publish_initial_backoff_seconds=0,
        post_publish_backoff_jitter_seconds=0,
        post_publish_rate_limit_cooldown_seconds=0,
    )


@pytest.fixture(autouse=True)
def _use_test_settings(test_settings):
    set_settings(test_settings)
    yield
    reset_settings()
