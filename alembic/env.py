"""Alembic environment: migrates the tables this service owns."""
import importlib
from logging.config import fileConfig

from alembic import context

from catalog_policy.database import Base, engine, url

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

for module in ('policy', 'evaluation', 'evaluation_run'):
    importlib.import_module(f'catalog_policy.models.{module}')

target_metadata = Base.metadata

# media_items / media_stats belong to the ingestion service
_FOREIGN_TABLES = {'media_items', 'media_stats'}


def include_object(obj, name, type_, reflected, compare_to):
    if type_ == 'table' and name in _FOREIGN_TABLES:
        return False
    return True


def run_migrations_offline():
    context.configure(url=url, target_metadata=target_metadata,
                      literal_binds=True, include_object=include_object)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata,
                          include_object=include_object)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
