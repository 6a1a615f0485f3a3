# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
SQL database service layer: connection options, engine setup, schema checks
and a generic per-entity repository on top of SQLAlchemy.
"""

import os
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Type

from sqlalchemy import MetaData, create_engine, delete, inspect, select, update
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from ..errors import SchemaMismatchError

logger = logging.getLogger(__name__)

DEFAULT_DRIVER = "postgresql+psycopg"


@dataclass
class DatabaseOptions:
    """Connection and behaviour options of the database middleware."""

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    schema: str = "public"
    dbname: str = ""
    sslmode: str = "disable"
    # Full SQLAlchemy URL, overrides the parts above; defaults to DATABASE_URL
    url: str = ""
    # Echo every SQL statement through the sqlalchemy.engine logger
    trace: bool = False
    # Wrap every request in a transaction
    transactional: bool = False
    create_schema: bool = False
    check_schema: bool = False
    error_handler: Optional[Callable[[Exception], Any]] = None

    def get_url(self):
        """Return the configured URL, or build a PostgreSQL one from the parts."""
        url = self.url or os.getenv('DATABASE_URL', '')
        if url:
            return url

        return URL.create(
            DEFAULT_DRIVER,
            username=self.user,
            password=self.password or None,
            host=self.host,
            port=self.port,
            database=self.dbname or None,
            query={"sslmode": self.sslmode, "options": f"-csearch_path={self.schema}"}
        )


def build_engine(options: DatabaseOptions) -> Engine:
    """Create the SQLAlchemy engine described by the options."""
    return create_engine(options.get_url(), echo=options.trace)


def create_schema(engine: Engine, metadata: MetaData):
    """Create the tables that don't exist yet."""
    metadata.create_all(engine)
    logger.info(f"Database schema created for {len(metadata.tables)} tables")


def check_schema(engine: Engine, metadata: MetaData):
    """
    Verify that every mapped table and column exists in the database.

    Raises:
        SchemaMismatchError: Listing the missing tables and ``table.column`` names
    """
    inspector = inspect(engine)
    missing: List[str] = []

    for table in metadata.sorted_tables:
        if not inspector.has_table(table.name, schema=table.schema):
            missing.append(table.name)
            continue

        existing = {c["name"] for c in inspector.get_columns(table.name, schema=table.schema)}
        for column in table.columns:
            if column.name not in existing:
                missing.append(f"{table.name}.{column.name}")

    if missing:
        logger.error("Database schema mismatch", extra={"missing": missing})
        raise SchemaMismatchError(f"missing tables or columns: {', '.join(missing)}", missing)


def is_no_rows(error: BaseException) -> bool:
    """Check whether an error means that a lookup found nothing."""
    return isinstance(error, NoResultFound)


class Repository:
    """CRUD operations for one mapped entity class bound to a session."""

    def __init__(self, model: Type[Any], session: Session):
        self.model = model
        self.session = session
        self.mapper = inspect(model)

        if len(self.mapper.primary_key) != 1:
            raise ValueError(f"entity {model.__name__} must have a single-column primary key")

        self.primary_key = self.mapper.primary_key[0]
        self.primary_key_attr = self.mapper.get_property_by_column(self.primary_key).key

    @property
    def table_name(self) -> str:
        return self.mapper.local_table.name

    def column_names(self) -> List[str]:
        return [attr.key for attr in self.mapper.column_attrs]

    def values_of(self, entity: Any, columns: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        """Column values of an entity, without the primary key."""
        names = columns or self.column_names()
        unknown = set(names) - set(self.column_names())
        if unknown:
            raise ValueError(f"unknown columns for {self.table_name}: {', '.join(sorted(unknown))}")

        return {
            name: getattr(entity, name)
            for name in names
            if name != self.primary_key_attr
        }

    def primary_key_of(self, entity: Any) -> Any:
        return getattr(entity, self.primary_key_attr)

    def insert(self, entity: Any) -> Any:
        """Insert an entity and return its primary key."""
        self.session.add(entity)
        self.session.flush()
        return self.primary_key_of(entity)

    def select_by_id(self, id: Any) -> Any:
        """
        Load one entity by primary key.

        Raises:
            NoResultFound: When no row has that key
        """
        stmt = select(self.model).where(self.primary_key == id)
        return self.session.execute(stmt).scalar_one()

    def update(self, entity: Any) -> int:
        """Update every column of the row matching the entity's key; returns rows affected."""
        return self._update(entity, self.values_of(entity))

    def update_only_columns(self, columns: Sequence[str], entity: Any) -> int:
        """Update only the given columns; returns rows affected."""
        return self._update(entity, self.values_of(entity, columns))

    def _update(self, entity: Any, values: Dict[str, Any]) -> int:
        if not values:
            return 0

        stmt = (
            update(self.model)
            .where(self.primary_key == self.primary_key_of(entity))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        return result.rowcount

    def delete_by_id(self, id: Any) -> bool:
        """Delete the row with the given key; returns whether one was deleted."""
        stmt = (
            delete(self.model)
            .where(self.primary_key == id)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        return result.rowcount > 0

    def json_schema(self) -> Dict[str, Any]:
        """Describe the entity's fields for API clients."""
        fields = []
        for attr in self.mapper.column_attrs:
            column = attr.columns[0]
            try:
                python_type = column.type.python_type.__name__
            except NotImplementedError:
                python_type = "object"

            field = {
                "name": attr.key,
                "type": python_type,
                "data_type": str(column.type),
                "required": not column.nullable,
            }
            if column.comment:
                field["description"] = column.comment
            fields.append(field)

        schema: Dict[str, Any] = {"fields": fields}
        if self.mapper.local_table.comment:
            schema["description"] = self.mapper.local_table.comment
        return schema
