import pytest

from lectio.database import sync_database_url


@pytest.mark.parametrize("url", [
    "postgresql+asyncpg://u:p@db:5432/lectio",
    "postgresql+psycopg://u:p@db:5432/lectio",
    "postgresql://u:p@db:5432/lectio",
    "postgresql+psycopg2://u:p@db:5432/lectio",
])
def test_migrations_use_psycopg2(url):
    assert sync_database_url(url) == "postgresql+psycopg2://u:p@db:5432/lectio"


def test_other_backends_untouched():
    assert sync_database_url("sqlite+aiosqlite:///tmp/x.db") == "sqlite+aiosqlite:///tmp/x.db"
