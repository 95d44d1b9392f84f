"""
Engine and session setup for the SQL-backed key-value store.
"""

from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..exceptions import ErrorCode, ServiceError, ValidationError
from ..utils.logger import get_logger

Base: Any = declarative_base()

SQLITE_MEMORY = ":memory:"


class DatabaseConfig(BaseModel):
    """
    Where the store's table lives.

    Either ``connection_url`` is given outright, or it is assembled from the
    individual fields. ``development_mode`` is the only thing that permits
    ``drop_tables``.
    """

    db_type: str = "sqlite"
    database: str = SQLITE_MEMORY
    host: Optional[str] = None
    port: int = 5432
    username: Optional[str] = None
    password: Optional[str] = None
    connection_url: Optional[str] = None
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    echo: bool = False
    development_mode: bool = False

    @classmethod
    def from_app_config(cls, development_mode: bool = False) -> "DatabaseConfig":
        """Build from ``AppConfig.database`` (``DATABASE_URL``)."""
        from ..config import get_config

        settings = get_config().database
        db_type = "sqlite" if settings.connection_string.startswith("sqlite") else "postgres"
        return cls(
            db_type=db_type,
            database=settings.connection_string.rsplit("/", 1)[-1],
            connection_url=settings.connection_string,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            echo=settings.echo,
            development_mode=development_mode,
        )

    @property
    def is_memory(self) -> bool:
        return self.db_type.lower() == "sqlite" and self.database == SQLITE_MEMORY

    def get_connection_string(self) -> str:
        if self.connection_url:
            return self.connection_url

        db_type = self.db_type.lower()
        if db_type == "sqlite":
            return f"sqlite:///{self.database}"
        if db_type != "postgres":
            raise ValidationError(
                f"Unsupported database type: {self.db_type}",
                field="db_type",
                error_code=ErrorCode.INVALID_FORMAT,
                value=self.db_type,
            )

        missing = [
            name for name in ("host", "username", "password") if not getattr(self, name)
        ]
        if missing:
            raise ValidationError(
                "Postgres connection settings are incomplete",
                field="database_config",
                error_code=ErrorCode.MISSING_REQUIRED,
                missing=missing,
            )
        return (
            f"postgresql+psycopg://{self.username}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    def __repr__(self) -> str:
        # password stays out of logs and tracebacks
        return (
            f"DatabaseConfig(db_type={self.db_type!r}, host={self.host!r}, "
            f"port={self.port}, database={self.database!r}, username={self.username!r})"
        )


class DatabaseManager:
    """Owns the engine and hands out short-lived sessions."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.engine = self._create_engine()
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        get_logger().info(
            "Database engine created",
            extra={"db_type": config.db_type, "database": config.database},
        )

    def _create_engine(self) -> Engine:
        url = self.config.get_connection_string()
        options: dict = {"echo": self.config.echo}

        if url.startswith("sqlite"):
            # Sessions are opened from the orchestrator's worker threads
            options["connect_args"] = {"check_same_thread": False}
            if self.config.is_memory:
                # A second connection would see an empty database
                options["poolclass"] = StaticPool
        else:
            options.update(
                pool_size=self.config.pool_size,
                max_overflow=self.config.max_overflow,
                pool_timeout=self.config.pool_timeout,
                pool_pre_ping=True,
            )
        return create_engine(url, **options)

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        if not self.config.development_mode:
            raise ServiceError(
                "Refusing to drop tables outside development mode",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation="drop_tables",
            )
        Base.metadata.drop_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()


def import_all_models() -> None:
    """Register every mapped class on ``Base.metadata``."""
    from sqlalchemy.orm import configure_mappers

    from . import db_kv_models  # noqa: F401

    configure_mappers()
