"""Alembic env.py for the `stored_blobs` table of the database storage backend.

Usage (from backend/):
  alembic upgrade head                              # uses DATABASE_URL_SYNC
  alembic -x url=sqlite:///rbac.db upgrade head     # explicit target
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from sekolah_rbac.config import settings
from sekolah_rbac.database import Base
from sekolah_rbac.models import StoredBlob  # noqa: F401

config = context.config
url = context.get_x_argument(as_dictionary=True).get("url", settings.database_url_sync)
config.set_main_option("sqlalchemy.url", url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def run_migrations() -> None:
    if context.is_offline_mode():
        context.configure(url=url, target_metadata=Base.metadata, literal_binds=True)
        with context.begin_transaction():
            context.run_migrations()
        return

    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=Base.metadata)
        with context.begin_transaction():
            context.run_migrations()


run_migrations()
