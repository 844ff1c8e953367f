"""
household_ledger/migrations/env.py — Alembic environment.

The target database comes from household_ledger.config (see database_url_for),
so dotenv loading and URL normalisation happen in one place.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from household_ledger.config import database_url_for
from household_ledger.app.extensions import db

# Importing the model modules registers their tables on db.metadata.
from household_ledger.app.models import (  # noqa: F401
    audit_entry,
    expense,
    household,
    household_member,
    obligation,
    periodic_record,
    user,
)


alembic_cfg = context.config
if alembic_cfg.config_file_name is not None:
    fileConfig(alembic_cfg.config_file_name)

DATABASE_URL = database_url_for()

_configure_opts = {
    "target_metadata": db.metadata,
    "compare_type": True,
    "compare_server_default": True,
    # SQLite cannot ALTER most constraints in place.
    "render_as_batch": DATABASE_URL.startswith("sqlite"),
}


def run_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    context.configure(
        url=DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_opts,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = create_engine(DATABASE_URL, poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, **_configure_opts)
        with context.begin_transaction():
            context.run_migrations()
    engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
