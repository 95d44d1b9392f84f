"""Tests for database configuration and the engine manager."""

import pytest
from sqlalchemy.pool import StaticPool

from crosspost_core.config import DatabaseSettings
from crosspost_core.db import DatabaseConfig, DatabaseManager
from crosspost_core.exceptions import ErrorCode, ServiceError, ValidationError


class TestDatabaseConfig:
    def test_sqlite_file_url(self):
        config = DatabaseConfig(db_type="sqlite", database="/tmp/crosspost.db")
        assert config.get_connection_string() == "sqlite:////tmp/crosspost.db"
        assert not config.is_memory

    def test_explicit_url_wins(self):
        config = DatabaseConfig(connection_url="sqlite:///other.db")
        assert config.get_connection_string() == "sqlite:///other.db"

    def test_postgres_url_assembled(self):
        config = DatabaseConfig(
            db_type="postgres",
            database="crosspost",
            host="db",
            username="svc",
            password="pw",
        )
        assert (
            config.get_connection_string() == "postgresql+psycopg://svc:pw@db:5432/crosspost"
        )

    def test_postgres_missing_settings(self):
        config = DatabaseConfig(db_type="postgres", database="crosspost", host="db")

        with pytest.raises(ValidationError) as exc_info:
            config.get_connection_string()

        assert exc_info.value.error_code == ErrorCode.MISSING_REQUIRED
        assert exc_info.value.context["missing"] == ["username", "password"]

    def test_unknown_db_type(self):
        with pytest.raises(ValidationError) as exc_info:
            DatabaseConfig(db_type="oracle").get_connection_string()
        assert exc_info.value.error_code == ErrorCode.INVALID_FORMAT

    def test_repr_hides_password(self):
        config = DatabaseConfig(db_type="postgres", password="hunter2")
        assert "hunter2" not in repr(config)

    def test_from_app_config(self, app_config):
        app_config.database = DatabaseSettings(connection_string="sqlite:///./links.db")

        config = DatabaseConfig.from_app_config()

        assert config.db_type == "sqlite"
        assert config.database == "links.db"
        assert config.get_connection_string() == "sqlite:///./links.db"
        assert config.development_mode is False


class TestDatabaseManager:
    def test_memory_database_shares_one_connection(self, db_manager):
        assert isinstance(db_manager.engine.pool, StaticPool)

    def test_drop_tables_requires_development_mode(self):
        manager = DatabaseManager(DatabaseConfig(db_type="sqlite", database=":memory:"))
        try:
            with pytest.raises(ServiceError) as exc_info:
                manager.drop_tables()
            assert exc_info.value.error_code == ErrorCode.CONFIGURATION_ERROR
        finally:
            manager.close()
