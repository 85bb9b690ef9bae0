from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError

# `alembic` is run from `backend/`; make `lendops.*` importable from there.
sys.path.append(os.path.abspath(os.getcwd()))

from lendops.core.config import settings  # noqa: E402
from lendops.core.db.base import Base  # noqa: E402
from lendops.core.db.session import import_model_modules  # noqa: E402

import_model_modules()

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

VERSION_TABLE = "lendops_alembic_version"


def get_url() -> str:
    """DATABASE_URL wins over settings, settings over alembic.ini."""
    seen: list[str] = []
    for raw in (os.getenv("DATABASE_URL"), settings.database_url, config.get_main_option("sqlalchemy.url")):
        candidate = (raw or "").strip()
        if not candidate or candidate in seen:
            continue
        seen.append(candidate)
        try:
            make_url(candidate)
        except ArgumentError:
            print(f"[alembic] skipping unparseable database url: prefix={candidate[:32]!r}", file=sys.stderr)
            continue
        return candidate
    raise RuntimeError("No usable database URL for lendops migrations")


def _skip_empty_revisions(migration_context, revision, directives) -> None:
    # `alembic revision --autogenerate` with no model changes writes nothing.
    if getattr(config.cmd_opts, "autogenerate", False) and directives and directives[0].upgrade_ops.is_empty():
        directives[:] = []


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        version_table=VERSION_TABLE,
        compare_type=True,
        process_revision_directives=_skip_empty_revisions,
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(url=get_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = get_url()
    engine = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with engine.connect() as connection:
        # SQLite cannot ALTER most constraints in place.
        _configure(connection=connection, render_as_batch=connection.dialect.name == "sqlite")
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
