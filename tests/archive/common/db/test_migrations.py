"""The Alembic history must build the schema the models describe."""

from pathlib import Path
from unittest.mock import patch

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import UniqueConstraint, create_engine, inspect

from archive.common import settings
from archive.common.db.models import Base

MIGRATIONS_DIR = Path(__file__).parents[4] / "db" / "migrations"


def alembic_config() -> Config:
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    return config


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'migrated.db'}"


@pytest.fixture
def migrated(db_url):
    with patch.object(settings, "DB_URL", db_url):
        command.upgrade(alembic_config(), "head")

    engine = create_engine(db_url)
    yield engine
    engine.dispose()


def test_tables_match_models(migrated):
    tables = set(inspect(migrated).get_table_names()) - {"alembic_version"}

    assert tables == set(Base.metadata.tables)


@pytest.mark.parametrize("table_name", sorted(Base.metadata.tables))
def test_columns_match_models(migrated, table_name):
    table = Base.metadata.tables[table_name]
    reflected = {c["name"]: c for c in inspect(migrated).get_columns(table_name)}

    assert set(reflected) == {c.name for c in table.columns}
    for column in table.columns:
        if column.primary_key:
            continue
        assert reflected[column.name]["nullable"] == column.nullable, column.name


@pytest.mark.parametrize("table_name", sorted(Base.metadata.tables))
def test_indexes_match_models(migrated, table_name):
    table = Base.metadata.tables[table_name]
    reflected = {
        i["name"]: tuple(i["column_names"])
        for i in inspect(migrated).get_indexes(table_name)
    }

    assert reflected == {i.name: tuple(c.name for c in i.columns) for i in table.indexes}


@pytest.mark.parametrize("table_name", sorted(Base.metadata.tables))
def test_constraints_match_models(migrated, table_name):
    table = Base.metadata.tables[table_name]
    inspector = inspect(migrated)

    unique = {
        tuple(sorted(u["column_names"]))
        for u in inspector.get_unique_constraints(table_name)
    }
    assert unique == {
        tuple(sorted(c.name for c in u.columns))
        for u in table.constraints
        if isinstance(u, UniqueConstraint)
    }

    foreign = {
        (tuple(fk["constrained_columns"]), fk["referred_table"])
        for fk in inspector.get_foreign_keys(table_name)
    }
    assert foreign == {
        (tuple(c.name for c in fk.columns), fk.referred_table.name)
        for fk in table.foreign_key_constraints
    }

    primary = inspector.get_pk_constraint(table_name)["constrained_columns"]
    assert set(primary) == {c.name for c in table.primary_key.columns}


def test_downgrade_removes_everything(db_url, migrated):
    with patch.object(settings, "DB_URL", db_url):
        command.downgrade(alembic_config(), "base")

    assert set(inspect(migrated).get_table_names()) == {"alembic_version"}
