"""
Alembic environment for the triage schema.

The URL comes from jobtriage settings (DATABASE_URL), so migrations and the
API always target the same database. SQLite is the default for local runs.
"""
import os
import sys

# alembic runs from backend/; the relative default sqlite:///./job_triage.db resolves there too
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)
os.chdir(backend_dir)

from logging.config import fileConfig
from alembic import context
from sqlalchemy import engine_from_config
from sqlalchemy.engine.url import make_url
from sqlalchemy.pool import NullPool
from jobtriage.config import settings
from jobtriage.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _sync_db_url() -> str:
    """Plain `postgresql://` URLs run through psycopg."""
    url = make_url(settings.database_url)
    if url.drivername == "postgresql":
        url = url.set(drivername="postgresql+psycopg")
    # str(URL) would render the password as '***'.
    return url.render_as_string(hide_password=False)


# Escape % for configparser
config.set_main_option("sqlalchemy.url", _sync_db_url().replace("%", "%%"))

target_metadata = Base.metadata


def run_migrations_offline():
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=url.startswith("sqlite"),
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    conf = config.get_section(config.config_ini_section, {}) or {}
    url = _sync_db_url()
    conf["sqlalchemy.url"] = url
    # SQLite cannot ALTER most column properties in place; batch mode rebuilds the table
    is_sqlite = url.startswith("sqlite")
    connectable = engine_from_config(
        conf,
        prefix="sqlalchemy.",
        poolclass=NullPool,
        connect_args={"check_same_thread": False} if is_sqlite else {},
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=is_sqlite, compare_type=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
