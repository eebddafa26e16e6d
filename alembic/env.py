"""
Alembic environment for the CFP schema (teams, businesses, crawl jobs,
fingerprints, entity versions).

URL sources, first match wins:
    -x db_url=...            one-off migration target
    ALEMBIC_DATABASE_URL
    sqlalchemy.url           from alembic.ini
    db.config resolution     DATABASE_URL / CLOUD_DATABASE_URL / LOCAL_DATABASE_URL
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from db.base import Base
from db.config import is_sqlite_url, is_supported_url, load_env_files, normalize_postgres_url, resolve_database_url
from db.models import (  # noqa: F401  imports trigger Base.metadata registration
    Business,
    CrawlJob,
    Fingerprint,
    Team,
    WikidataEntity,
)

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _resolve_database_url() -> str:
    load_env_files()

    x_args = context.get_x_argument(as_dictionary=True)
    explicit = (
        x_args.get("db_url")
        or os.getenv("ALEMBIC_DATABASE_URL")
        or (config.get_main_option("sqlalchemy.url") or "").strip()
    )
    url = normalize_postgres_url(explicit) if explicit else resolve_database_url()

    if not is_supported_url(url):
        raise RuntimeError("Alembic is configured for PostgreSQL (or local SQLite) URLs only.")
    return url


def _configure_kwargs(url: str) -> dict[str, object]:
    # SQLite cannot ALTER most constraints in place; batch mode rebuilds tables.
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "compare_server_default": True,
        "render_as_batch": is_sqlite_url(url),
    }


def run_migrations_offline() -> None:
    url = _resolve_database_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(url),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = _resolve_database_url()
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = url

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_kwargs(url))

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
