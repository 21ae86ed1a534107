"""Tests for repository selection."""

import pytest
from pydantic import SecretStr
from pytest_mock import MockerFixture

from src.adapters import repository_factory
from src.adapters.sqlite_repository import SQLiteRepository
from src.config.settings import Settings


def test_sqlite_backend(settings: Settings) -> None:
    repository = repository_factory.create_repository(settings)

    assert isinstance(repository, SQLiteRepository)


def test_postgres_requires_password(settings: Settings) -> None:
    settings = settings.model_copy(
        update={"database_type": "postgres", "postgres_password": None}
    )

    with pytest.raises(ValueError, match="POSTGRES_PASSWORD"):
        repository_factory.create_repository(settings)


def test_postgres_backend(settings: Settings, mocker: MockerFixture) -> None:
    postgres = mocker.patch.object(repository_factory, "PostgresRepository")
    settings = settings.model_copy(
        update={"database_type": "postgres", "postgres_password": SecretStr("pw")}
    )

    repository = repository_factory.create_repository(settings)

    assert repository is postgres.return_value
    assert postgres.call_args.kwargs["password"] == "pw"


def test_unknown_backend(settings: Settings) -> None:
    settings = settings.model_copy(update={"database_type": "mysql"})

    with pytest.raises(ValueError, match="Unsupported database type"):
        repository_factory.create_repository(settings)
