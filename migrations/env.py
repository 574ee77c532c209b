import logging
from logging.config import fileConfig

from alembic import context
from flask import current_app

# Run through `flask db ...`, which provides the app context
config = context.config
fileConfig(config.config_file_name)
logger = logging.getLogger('alembic.env')

migrate_ext = current_app.extensions['migrate']
engine = migrate_ext.db.engine

# Password may contain '%', which ConfigParser would read as interpolation
config.set_main_option(
    'sqlalchemy.url',
    engine.url.render_as_string(hide_password=False).replace('%', '%%')
)
target_metadata = migrate_ext.db.metadata


def run_migrations_offline():
    """Emit the migration SQL as a script instead of running it."""
    context.configure(
        url=config.get_main_option('sqlalchemy.url'),
        target_metadata=target_metadata,
        literal_binds=True,
        **migrate_ext.configure_args
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    def skip_empty_revision(context, revision, directives):
        if getattr(config.cmd_opts, 'autogenerate', False) and directives[0].upgrade_ops.is_empty():
            directives[:] = []
            logger.info('Schema unchanged, no revision written.')

    conf_args = dict(migrate_ext.configure_args)
    conf_args.setdefault('process_revision_directives', skip_empty_revision)

    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, **conf_args)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
