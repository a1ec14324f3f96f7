"""
Alembic environment: the database URL comes from bizflow settings, never from alembic.ini
"""
import logging
from logging.config import fileConfig
from pathlib import Path
from urllib.parse import urlparse, urlunparse

from dotenv import load_dotenv

# .env must be loaded before bizflow settings are first read
load_dotenv(Path(__file__).resolve().parents[2] / ".env", override=True)

from alembic import context  # noqa: E402
from sqlalchemy import engine_from_config, pool  # noqa: E402

import bizflow.models  # noqa: E402,F401
from bizflow.core.config import get_settings  # noqa: E402
from bizflow.core.database import Base  # noqa: E402

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")
target_metadata = Base.metadata


def _masked(url: str) -> str:
    parsed = urlparse(url)
    if not parsed.password:
        return url
    host = parsed.hostname or ""
    if parsed.port:
        host = f"{host}:{parsed.port}"
    return urlunparse(parsed._replace(netloc=f"{parsed.username}:***@{host}"))


database_url = get_settings().database_url
config.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
logger.info(f"Migrating {_masked(database_url)}")

# SQLite cannot ALTER most constraints in place
_batch = database_url.startswith("sqlite")


def run_migrations_offline() -> None:
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_batch,
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
            render_as_batch=_batch,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
