# SPDX-License-Identifier: Apache-2.0

"""
Database session middleware.

Binds a SQLAlchemy session to each request and, in transactional mode, wraps
the request in a transaction committed on success and rolled back on errors.
"""

from flask import Flask, g, make_response
from typing import Any, Optional, Type
from sqlalchemy import MetaData
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
import logging

from ..errors import IntentionalRollback, problem_response
from ..services.database import (
    DatabaseOptions,
    Repository,
    build_engine,
    check_schema,
    create_schema,
)

logger = logging.getLogger(__name__)

SESSION_CONTEXT_KEY = 'db_session'


def default_error_handler(error: Exception):
    return problem_response(500, "Internal Server Error", str(error), "database-error")


def get_session() -> Optional[Session]:
    """Return the session bound to the current request, if any."""
    return g.get(SESSION_CONTEXT_KEY)


def get_repository(model: Type[Any]) -> Optional[Repository]:
    """Return a repository of ``model`` on the current request's session."""
    session = get_session()
    if session is None:
        return None
    return Repository(model, session)


def rollback():
    """Roll back the current request's transaction instead of committing it."""
    g.db_rollback = True


class Database:
    """SQLAlchemy session-per-request middleware."""

    def __init__(
        self,
        metadata: MetaData,
        options: Optional[DatabaseOptions] = None,
        app: Optional[Flask] = None,
        engine: Optional[Engine] = None
    ):
        """
        Open the database and prepare the schema.

        Args:
            metadata: Metadata of the mapped tables
            options: Connection and behaviour options
            app: Flask application
            engine: Existing engine, connection options are then ignored

        Raises:
            SchemaMismatchError: When ``check_schema`` finds missing tables or columns
        """
        self.metadata = metadata
        self.options = options or DatabaseOptions()
        self.engine = engine or build_engine(self.options)
        self.error_handler = self.options.error_handler or default_error_handler

        if self.options.create_schema:
            create_schema(self.engine, self.metadata)
        if self.options.check_schema:
            check_schema(self.engine, self.metadata)

        bind = self.engine
        if not self.options.transactional:
            # Every statement commits on its own
            bind = self.engine.execution_options(isolation_level="AUTOCOMMIT")
        self.session_factory = sessionmaker(bind=bind, expire_on_commit=False)

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.before_request(self.open_session)
        app.after_request(self.finish_request)
        app.teardown_request(self.close_session)
        app.register_error_handler(IntentionalRollback, self.handle_intentional_rollback)

    def open_session(self):
        if get_session() is None:
            setattr(g, SESSION_CONTEXT_KEY, self.session_factory())
        return None

    def should_rollback(self, response) -> bool:
        return (
            g.get('db_rollback', False)
            or g.get('request_error') is not None
            or response.status_code >= 500
        )

    def finish_request(self, response):
        """Commit or roll back the request's transaction."""
        session = get_session()
        if session is None or not self.options.transactional:
            return response

        try:
            if self.should_rollback(response):
                session.rollback()
            else:
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Transaction completion failed: {str(e)}")
            session.rollback()
            return make_response(self.error_handler(e))

        return response

    @staticmethod
    def handle_intentional_rollback(error: IntentionalRollback):
        rollback()
        if error.response is not None:
            return error.response
        return '', 204

    @staticmethod
    def close_session(exc: Optional[BaseException] = None):
        session = g.pop(SESSION_CONTEXT_KEY, None)
        if session is None:
            return
        # Unhandled exceptions skip finish_request
        if exc is not None:
            session.rollback()
        session.close()

    def session(self) -> Session:
        """Open a session outside of a request."""
        return self.session_factory()

    def close(self):
        self.engine.dispose()
