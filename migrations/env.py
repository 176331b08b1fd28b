# migrations/env.py
from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from kg_api.wsgi import app as flask_app
from kg_api.extensions import db
from kg_api.models import load_all

config = context.config

# dev alembic.ini files often ship without logger sections
if config.config_file_name is not None and config.get_section("loggers"):
    fileConfig(config.config_file_name, disable_existing_loggers=False)

with flask_app.app_context():
    load_all()
    db_uri = flask_app.config["SQLALCHEMY_DATABASE_URI"]

# the Flask config is the single source of the database URL
config.set_main_option("sqlalchemy.url", db_uri)
target_metadata = db.metadata


def _configure(**kw) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        # sqlite cannot ALTER most constraints in place
        render_as_batch=db_uri.startswith("sqlite"),
        **kw,
    )


def run_migrations_offline() -> None:
    _configure(url=config.get_main_option("sqlalchemy.url"), literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection, flask_app.app_context():
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
