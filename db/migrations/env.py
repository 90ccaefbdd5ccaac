"""
Alembic environment configuration.
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

from archive.common import settings
from archive.common.db.models import Base

# this is the Alembic Config object
config = context.config

# setup database URL from environment variables
config.set_main_option("sqlalchemy.url", settings.DB_URL)

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Tables to exclude from auto-generation - these are managed by Celery
excluded_tables = {
    "celery_taskmeta",
    "celery_tasksetmeta",
}


def include_object(object, name, type_, reflected, compare_to):
    if type_ == "table" and name in excluded_tables:
        return False
    return True


def run_migrations_offline() -> None:
    """
    Run migrations in 'offline' mode - emits SQL without a database connection.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """
    Run migrations in 'online' mode - directly against the database.
    """
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_object=include_object,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
