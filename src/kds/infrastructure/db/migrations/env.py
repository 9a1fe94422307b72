from __future__ import annotations

from alembic import context
from sqlalchemy import create_engine, pool

from kds.infrastructure.db.models.order import Base
from kds.infrastructure.db.session import _connect_args, _database_url

config = context.config
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    database_url = _database_url()
    connectable = create_engine(
        database_url,
        poolclass=pool.NullPool,
        connect_args=_connect_args(database_url, connect_timeout=5),
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
