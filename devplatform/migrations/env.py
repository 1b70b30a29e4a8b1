"""Alembic environment for the developer platform schema.

Migrations are plain SQL (``op.execute``); there is no ORM metadata, so
autogenerate is not used.
"""

from logging.config import fileConfig
import os

from dotenv import load_dotenv
from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Same .env the application reads.
load_dotenv()

# The app talks to Postgres with psycopg 3; SQLAlchemy must be told to use
# the same driver instead of its psycopg2 default:
#   postgresql://...  ->  postgresql+psycopg://...
raw_db_url = os.getenv("DATABASE_URL")
if not raw_db_url:
    raise RuntimeError("DATABASE_URL is not set. Export it before running Alembic.")

if raw_db_url.startswith("postgresql://"):
    sqlalchemy_url = raw_db_url.replace("postgresql://", "postgresql+psycopg://", 1)
else:
    sqlalchemy_url = raw_db_url

config.set_main_option("sqlalchemy.url", sqlalchemy_url)

target_metadata = None


def run_migrations_offline() -> None:
    """Emit the migration SQL to stdout without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations against the configured database."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
