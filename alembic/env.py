"""Alembic environment for the ``financial_transactions`` ledger.

The database URL comes from ``sqlalchemy.url`` in ``alembic.ini`` when set,
otherwise from ``FIXED_EXPENSES_DATABASE_URL`` (a ``.env`` in the working
directory is honoured, as for the CLI).
"""

import logging
from logging.config import fileConfig
import sys
from pathlib import Path

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

# Project modules live in the repository root, one level above alembic/
BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)


def _configured_url() -> str:
    from config import get_settings

    return get_settings().database_url


def _ledger_metadata():
    from database import Base
    import models  # noqa: F401  registers LedgerTransaction on Base.metadata

    return Base.metadata


config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

db_url = config.get_main_option("sqlalchemy.url") or _configured_url()
config.set_main_option("sqlalchemy.url", db_url)
logger.info(f"ledger_migrations: url={db_url.split('@')[-1]}")

target_metadata = _ledger_metadata()

# SQLite cannot ALTER constraints in place; batch mode rebuilds the table.
render_as_batch = db_url.startswith("sqlite")


def run_migrations_offline() -> None:
    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=render_as_batch,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=render_as_batch,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
