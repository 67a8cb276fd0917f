"""
Database connection management.

Production connects to Cloud SQL for PostgreSQL through the Cloud SQL Python
Connector (pg8000 driver, IAM auth). Setting DATABASE_URL bypasses the
connector and accepts any SQLAlchemy URL, which is how local development and
the test suite (in-memory SQLite) run.
"""

import os

from google.cloud.sql.connector import Connector
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

IN_MEMORY_SQLITE_URLS = ("sqlite://", "sqlite:///:memory:")


class DatabaseConnection:
    """
    Process-wide engine and session factory.

    Initialize once at service startup (the FastAPI lifespan does this),
    then open sessions through UnitOfWork:

        DatabaseConnection.initialize()
        with UnitOfWork() as uow:
            uow.evidence.get_by_id(17)
        DatabaseConnection.close()
    """

    _engine: Engine | None = None
    _connector: Connector | None = None
    _session_factory: sessionmaker | None = None

    @classmethod
    def initialize(
        cls,
        instance_connection_name: str | None = None,
        db_name: str | None = None,
        db_user: str | None = None,
        database_url: str | None = None,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        """
        Create the engine. Calling again while initialized is a no-op.

        Args:
            instance_connection_name: Cloud SQL instance (project:region:instance),
                default INSTANCE_CONNECTION_NAME
            db_name: Database name, default DB_NAME or "trackproof"
            db_user: IAM database user (service account email), default DB_USER
            database_url: SQLAlchemy URL, default DATABASE_URL; takes precedence
                over the Cloud SQL settings
            pool_size: Cloud SQL pool size
            max_overflow: Connections allowed beyond pool_size

        Raises:
            ValueError: If neither a URL nor the Cloud SQL settings are available
        """
        if cls._engine is not None:
            return

        database_url = database_url or os.getenv("DATABASE_URL")
        if database_url:
            cls._engine = cls._create_url_engine(database_url)
        else:
            cls._engine = cls._create_cloud_sql_engine(
                instance_connection_name or os.getenv("INSTANCE_CONNECTION_NAME"),
                db_name or os.getenv("DB_NAME", "trackproof"),
                db_user or os.getenv("DB_USER"),
                pool_size=pool_size,
                max_overflow=max_overflow,
            )

        cls._session_factory = sessionmaker(bind=cls._engine)

    @staticmethod
    def _create_url_engine(database_url: str) -> Engine:
        if database_url in IN_MEMORY_SQLITE_URLS:
            # One shared connection, otherwise every session sees an empty database
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(database_url, pool_pre_ping=True)

    @classmethod
    def _create_cloud_sql_engine(
        cls,
        instance_connection_name: str | None,
        db_name: str,
        db_user: str | None,
        pool_size: int,
        max_overflow: int,
    ) -> Engine:
        if not instance_connection_name:
            raise ValueError(
                "DATABASE_URL or INSTANCE_CONNECTION_NAME (project:region:instance) "
                "is required"
            )
        if not db_user:
            raise ValueError("DB_USER (service account email for IAM auth) is required")

        connector = Connector()
        cls._connector = connector

        def getconn():
            return connector.connect(
                instance_connection_name,
                "pg8000",
                user=db_user,
                db=db_name,
                enable_iam_auth=True,
            )

        return create_engine(
            "postgresql+pg8000://",
            creator=getconn,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=30,
            # Cloud SQL drops idle connections; recycle before that happens
            pool_recycle=1800,
            pool_pre_ping=True,
        )

    @classmethod
    def _require_factory(cls) -> sessionmaker:
        if cls._session_factory is None:
            raise RuntimeError(
                "Database not initialized. Call DatabaseConnection.initialize() first."
            )
        return cls._session_factory

    @classmethod
    def get_engine(cls) -> Engine:
        cls._require_factory()
        assert cls._engine is not None
        return cls._engine

    @classmethod
    def get_session(cls) -> Session:
        """New session; the caller commits and closes it (UnitOfWork does)."""
        return cls._require_factory()()

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._engine is not None

    @classmethod
    def close(cls):
        """Dispose the pool and the connector. Safe to call when not initialized."""
        if cls._engine is not None:
            cls._engine.dispose()
        if cls._connector is not None:
            cls._connector.close()

        cls._engine = None
        cls._connector = None
        cls._session_factory = None
