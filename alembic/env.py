"""Alembic environment for the placement state store."""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context

from placement_engine.config import settings
from placement_engine.infrastructure.sql.database import Base
from placement_engine.infrastructure.sql.models import PlacementORM, SchedulerStateORM  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# DATABASE_URL wins over alembic.ini
config.set_main_option("sqlalchemy.url", settings.database_url)


def _configure(is_sqlite: bool, **kwargs) -> None:
    # SQLite cannot ALTER most columns in place
    context.configure(
        target_metadata=Base.metadata,
        compare_type=True,
        render_as_batch=is_sqlite,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL for the placement tables without a live connection."""
    url = config.get_main_option("sqlalchemy.url")
    _configure(
        url.startswith("sqlite"),
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        _configure(connection.dialect.name == "sqlite", connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
