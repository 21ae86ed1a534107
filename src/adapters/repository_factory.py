"""Build the storage backend selected by ``database_type``."""

from datetime import timedelta
from typing import cast

from src.adapters.postgres_repository import PostgresRepository
from src.adapters.sqlite_repository import SQLiteRepository
from src.config.logging_config import get_logger
from src.config.settings import Settings
from src.domain.protocols import RepositoryProtocol

logger = get_logger(__name__)


def create_repository(settings: Settings) -> RepositoryProtocol:
    """Open the configured repository.

    Raises:
        ValueError: On an unknown backend or missing PostgreSQL password
        RepositoryError: If the database cannot be reached
    """
    backend = settings.database_type

    if backend == "sqlite":
        logger.info("repository_selected", backend=backend, path=settings.db_path)
        repository = SQLiteRepository(
            settings.db_path,
            queue_visibility_timeout=timedelta(
                seconds=settings.queue_visibility_timeout_seconds
            ),
        )
        return cast(RepositoryProtocol, repository)

    if backend == "postgres":
        password = (
            settings.postgres_password.get_secret_value()
            if settings.postgres_password is not None
            else ""
        )
        if not password:
            raise ValueError("POSTGRES_PASSWORD must be set when database_type=postgres")
        logger.info(
            "repository_selected",
            backend=backend,
            host=settings.postgres_host,
            database=settings.postgres_database,
        )
        repository = PostgresRepository(
            host=settings.postgres_host,
            port=settings.postgres_port,
            database=settings.postgres_database,
            user=settings.postgres_user,
            password=password,
            settings=settings,
        )
        return cast(RepositoryProtocol, repository)

    raise ValueError(f"Unsupported database type: {backend!r} (expected sqlite or postgres)")
