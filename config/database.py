"""Database configuration for the content tracking store.

Supports SQLite (development) and PostgreSQL (production) backends
through SQLAlchemy.
"""

import os
import logging
from enum import Enum

from pydantic import BaseModel, Field
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class DatabaseType(str, Enum):
    """Supported database types."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class PostgresConfig(BaseModel):
    """PostgreSQL connection settings."""
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    database: str = Field(default="medfoundry", description="Database name")
    user: str = Field(default="medfoundry", description="Database user")
    password: str = Field(default="", description="Database password")


class DatabaseConfig(BaseModel):
    """Database configuration."""
    type: DatabaseType = Field(default=DatabaseType.SQLITE, description="Database type")

    # SQLite configuration
    sqlite_path: str = Field(default="medfoundry.db", description="SQLite database path, or :memory:")

    # PostgreSQL configuration
    postgres: PostgresConfig = Field(default_factory=PostgresConfig, description="PostgreSQL configuration")

    # Connection settings
    pool_size: int = Field(default=10, description="Connection pool size")
    max_overflow: int = Field(default=20, description="Maximum pool overflow")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    echo: bool = Field(default=False, description="Log emitted SQL")

    @classmethod
    def from_env(cls) -> 'DatabaseConfig':
        """Create configuration from environment variables."""
        db_type = os.getenv('MEDFOUNDRY_DB_TYPE', 'sqlite').lower()

        if db_type == 'postgresql':
            postgres_config = PostgresConfig(
                host=os.getenv('POSTGRES_HOST', 'localhost'),
                port=int(os.getenv('POSTGRES_PORT', '5432')),
                database=os.getenv('POSTGRES_DB', 'medfoundry'),
                user=os.getenv('POSTGRES_USER', 'medfoundry'),
                password=os.getenv('POSTGRES_PASSWORD', ''),
            )
            return cls(
                type=DatabaseType.POSTGRESQL,
                postgres=postgres_config,
                pool_size=int(os.getenv('DB_POOL_SIZE', '10')),
                max_overflow=int(os.getenv('DB_MAX_OVERFLOW', '20')),
                pool_timeout=int(os.getenv('DB_POOL_TIMEOUT', '30'))
            )

        return cls(
            type=DatabaseType.SQLITE,
            sqlite_path=os.getenv('SQLITE_PATH', 'medfoundry.db'),
        )

    @property
    def url(self) -> str:
        """SQLAlchemy connection URL."""
        if self.type == DatabaseType.POSTGRESQL:
            pg = self.postgres
            return f"postgresql://{pg.user}:{pg.password}@{pg.host}:{pg.port}/{pg.database}"
        return f"sqlite:///{self.sqlite_path}"


def build_engine(config: DatabaseConfig) -> Engine:
    """Create a SQLAlchemy engine for the configured backend."""
    if config.type == DatabaseType.POSTGRESQL:
        logger.info("Creating PostgreSQL engine")
        return create_engine(
            config.url,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_pre_ping=True,
            echo=config.echo,
        )

    logger.info(f"Creating SQLite engine at {config.sqlite_path}")
    # Worker threads share the engine during batch runs
    kwargs = {"connect_args": {"check_same_thread": False}, "echo": config.echo}
    if config.sqlite_path == ":memory:":
        # One connection, otherwise every checkout sees an empty database
        kwargs["poolclass"] = StaticPool
    return create_engine(config.url, **kwargs)


def create_session_factory(config: DatabaseConfig) -> sessionmaker:
    """Create a session factory bound to a fresh engine."""
    engine = build_engine(config)
    return sessionmaker(bind=engine, expire_on_commit=False)
