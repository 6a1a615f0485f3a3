# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
REST endpoints for a single mapped entity, backed by the database middleware.

Routes:
    GET    /schema  field description of the entity
    POST   /        create, answers 201 {"id": ...}
    PUT    /        update (``?columns=a,b`` updates only those), 204
    GET    /<id>    fetch one entity
    DELETE /<id>    delete, 204
"""

from flask import Blueprint, request, jsonify
from sqlalchemy import Integer, Uuid, inspect
from sqlalchemy.exc import SQLAlchemyError
from pydantic import TypeAdapter, ValidationError
from opentelemetry import trace
from typing import Any, Callable, Dict, Optional, Tuple, Type
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
import logging

from ..errors import problem_response
from ..middleware.database import Database, get_session
from ..services.database import Repository, is_no_rows
from ..utils.request import RequestParser

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Returns the (possibly modified) entity and whether to continue
AfterPayloadRead = Callable[[Any], Tuple[Any, bool]]

# JSON carries these as strings; they are parsed before reaching the model
COERCED_TYPES = (UUID, datetime, date, Decimal)
_adapters: Dict[type, TypeAdapter] = {}


def coerce_value(python_type: type, value: Any) -> Any:
    """
    Parse a JSON value into the column's Python type.

    Raises:
        ValidationError: When the value doesn't parse
    """
    if value is None or python_type not in COERCED_TYPES or isinstance(value, python_type):
        return value
    if python_type not in _adapters:
        _adapters[python_type] = TypeAdapter(python_type)
    return _adapters[python_type].validate_python(value)


def column_python_type(column) -> Optional[type]:
    try:
        return column.type.python_type
    except NotImplementedError:
        return None


def serialize_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    return value


def not_found():
    return problem_response(404, "Not Found", "resource not found", "not-found")


class EntityController:
    """Blueprint factory exposing CRUD routes for one entity class."""

    def __init__(self, model: Type[Any], database: Database, name: Optional[str] = None):
        self.model = model
        self.database = database
        self.mapper = inspect(model)
        self.name = name or f"{self.mapper.local_table.name}_entity"
        self.schema_route = True
        self.after_payload_read: Optional[AfterPayloadRead] = None
        self.error_handler = database.error_handler

    def without_schema_route(self) -> 'EntityController':
        """Don't register ``GET /schema``."""
        self.schema_route = False
        return self

    def repository(self) -> Repository:
        session = get_session()
        if session is None:
            raise RuntimeError("no database session bound to the request, install the Database middleware")
        return Repository(self.model, session)

    def id_converter(self) -> str:
        pk_type = self.mapper.primary_key[0].type
        if isinstance(pk_type, Integer):
            return 'int'
        if isinstance(pk_type, Uuid):
            return 'uuid'
        return 'string'

    def blueprint(self, url_prefix: Optional[str] = None) -> Blueprint:
        """Build the blueprint; register it on an app that uses the database middleware."""
        bp = Blueprint(self.name, __name__, url_prefix=url_prefix)
        id_rule = f"/<{self.id_converter()}:entity_id>"

        if self.schema_route:
            bp.add_url_rule('/schema', 'schema', self.get_schema, methods=['GET'])
        bp.add_url_rule('/', 'create', self.create, methods=['POST'])
        bp.add_url_rule('/', 'update', self.update, methods=['PUT'])
        bp.add_url_rule(id_rule, 'get', self.get, methods=['GET'])
        bp.add_url_rule(id_rule, 'delete', self.delete, methods=['DELETE'])

        return bp

    def to_dict(self, entity: Any) -> Dict[str, Any]:
        return {attr.key: serialize_value(getattr(entity, attr.key)) for attr in self.mapper.column_attrs}

    def read_payload(self) -> Tuple[Any, Any]:
        """
        Build an entity from the JSON body.

        Returns:
            Tuple of the entity and None, or None and the error response
        """
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return None, problem_response(400, "Bad Request", "Request body must be a JSON object", "invalid-payload")

        columns = {attr.key for attr in self.mapper.column_attrs}
        unknown = set(data) - columns
        if unknown:
            return None, problem_response(
                400, "Bad Request", f"Unknown fields: {', '.join(sorted(unknown))}", "invalid-payload"
            )

        values = {}
        for key, value in data.items():
            column = self.mapper.column_attrs[key].columns[0]
            try:
                values[key] = coerce_value(column_python_type(column), value)
            except ValidationError:
                return None, problem_response(
                    400, "Bad Request", f"Invalid value for field {key}", "invalid-payload"
                )

        entity = self.model(**values)

        if self.after_payload_read is not None:
            entity, ok = self.after_payload_read(entity)
            if not ok:
                return None, problem_response(400, "Bad Request", "Payload rejected", "invalid-payload")

        return entity, None

    def handle_error(self, error: Exception):
        logger.error(f"Entity operation failed: {str(error)}", extra={"entity": self.name})
        return self.error_handler(error)

    def get_schema(self):
        return jsonify(self.repository().json_schema())

    def create(self):
        entity, failure = self.read_payload()
        if failure is not None:
            return failure

        with tracer.start_as_current_span("entity.create") as span:
            span.set_attribute("entity", self.name)
            try:
                entity_id = self.repository().insert(entity)
            except SQLAlchemyError as e:
                return self.handle_error(e)

        return jsonify({"id": serialize_value(entity_id)}), 201

    def update(self):
        entity, failure = self.read_payload()
        if failure is not None:
            return failure

        only_columns = RequestParser.get_list_param('columns')

        try:
            repo = self.repository()
            if only_columns:
                n = repo.update_only_columns(only_columns, entity)
            else:
                n = repo.update(entity)
        except ValueError as e:
            return problem_response(400, "Bad Request", str(e), "invalid-payload")
        except SQLAlchemyError as e:
            return self.handle_error(e)

        if n == 0:
            return not_found()

        return '', 204

    def get(self, entity_id):
        try:
            entity = self.repository().select_by_id(entity_id)
        except SQLAlchemyError as e:
            if is_no_rows(e):
                return not_found()
            return self.handle_error(e)

        return jsonify(self.to_dict(entity))

    def delete(self, entity_id):
        try:
            deleted = self.repository().delete_by_id(entity_id)
        except SQLAlchemyError as e:
            return self.handle_error(e)

        if not deleted:
            return not_found()

        return '', 204
