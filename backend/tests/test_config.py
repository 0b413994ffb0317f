"""Settings: production JWT checks and derived values."""

import pytest

from app.config import Settings


def test_development_allows_default_secrets():
    Settings(app_env="development").validate_jwt_config()


def test_production_requires_secrets():
    with pytest.raises(RuntimeError, match="JWT_ACCESS_SECRET"):
        Settings(app_env="production", jwt_access_secret="access-secret-change-me").validate_jwt_config()
    with pytest.raises(RuntimeError, match="JWT_REFRESH_SECRET"):
        Settings(
            app_env="production",
            jwt_access_secret="a" * 32,
            jwt_refresh_secret="refresh-secret-change-me",
        ).validate_jwt_config()


def test_production_requires_distinct_secrets():
    with pytest.raises(RuntimeError, match="must differ"):
        Settings(app_env="production", jwt_access_secret="same", jwt_refresh_secret="same").validate_jwt_config()
    Settings(app_env="production", jwt_access_secret="one", jwt_refresh_secret="two").validate_jwt_config()


def test_sync_database_url():
    assert (
        Settings(database_url="postgresql+asyncpg://u:p@db:5432/auth").sync_database_url
        == "postgresql://u:p@db:5432/auth"
    )
    s = Settings(database_url="sqlite+aiosqlite:///./auth.db")
    assert s.is_sqlite
    assert s.sync_database_url == "sqlite:///./auth.db"


def test_access_token_expire_seconds():
    assert Settings(access_token_expire_minutes=15).access_token_expire_seconds == 900
