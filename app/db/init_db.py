import logging

from sqlalchemy import inspect, text
from sqlalchemy.orm import Session

from app.db import models
from app.services.role_permissions import ensure_default_role_permissions

logger = logging.getLogger("compia")


def ensure_missing_columns(engine) -> None:
    if engine.dialect.name != "sqlite":
        return
    inspector = inspect(engine)
    preparer = engine.dialect.identifier_preparer
    existing_tables = set(inspector.get_table_names())
    for table_name, table in models.Base.metadata.tables.items():
        if table_name not in existing_tables:
            continue
        existing_columns = {col["name"] for col in inspector.get_columns(table_name)}
        for column in table.columns:
            if column.name in existing_columns:
                continue
            col_type = column.type.compile(dialect=engine.dialect)
            logger.info("adicionando coluna %s.%s", table_name, column.name)
            with engine.begin() as connection:
                connection.execute(
                    text(
                        f"ALTER TABLE {preparer.quote(table_name)} "
                        f"ADD COLUMN {preparer.quote(column.name)} {col_type}"
                    )
                )


def init_schema(engine) -> None:
    models.Base.metadata.create_all(bind=engine)
    ensure_missing_columns(engine)


def ensure_rbac_defaults(db: Session) -> None:
    created = ensure_default_role_permissions(db)
    if created:
        logger.info("permissoes padrao criadas total=%s", created)
