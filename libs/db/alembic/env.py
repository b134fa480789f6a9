# ruff: noqa: I001
"""Alembic environment for the ledger tables.

URL resolution matches ``db.client.resolve_database_url`` with the
``sqlalchemy.url`` entry of ``alembic.ini`` as the last resort. A ``.env``
found from the current directory upwards is loaded first.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from dotenv import find_dotenv, load_dotenv

from db import metadata
from db.client import resolve_database_url

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

_env_file = find_dotenv(usecwd=True)
if _env_file:
    load_dotenv(dotenv_path=_env_file, override=False)


def _database_url() -> str:
    try:
        return resolve_database_url()
    except RuntimeError:
        fallback = config.get_main_option("sqlalchemy.url")
        if fallback:
            return fallback
        raise


def _include_object(obj, name, type_, reflected, compare_to) -> bool:
    # Autogenerate only manages the ledger's own tables.
    if type_ == "table":
        return bool(name and name.startswith("cl_"))
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=metadata,
        compare_type=True,
        include_object=_include_object,
        **kwargs,
    )


url = _database_url()
config.set_main_option("sqlalchemy.url", url)

if context.is_offline_mode():
    _configure(url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()
else:
    engine = engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()
