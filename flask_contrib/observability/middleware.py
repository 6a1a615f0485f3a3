"""
Observability Middleware

Request logging through structlog, with OpenTelemetry request attributes
and trace correlation, for every HTTP request served by a Flask app.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from flask import Flask, request, g
from opentelemetry import trace
from opentelemetry.instrumentation.flask import FlaskInstrumentor

from ..utils.request import RequestParser


@dataclass
class LoggerConfig:
    """Options of the request logger; every field is logged by default."""

    # strftime format of an extra ``time`` field, omitted when empty
    time_format: str = ''
    utc: bool = False
    skip_paths: List[str] = field(default_factory=list)
    # Extra fields computed from the request
    context: Optional[Callable[[Any], Dict[str, Any]]] = None
    status: bool = True
    ip: bool = True
    method: bool = True
    path: bool = True


class RequestLogger:
    """
    Log one structured line per request.

    Requests that recorded an error on ``g.request_error`` are logged at
    error level with the error message as event; other requests are logged
    at info level with the path as event.
    """

    def __init__(self, app: Optional[Flask] = None, logger: Any = None, config: Optional[LoggerConfig] = None):
        self.logger = logger or structlog.get_logger(__name__)
        self.config = config or LoggerConfig()
        self.skip_paths = set(self.config.skip_paths)

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.before_request(self.before_request)
        app.after_request(self.after_request)

    @staticmethod
    def before_request():
        """Set up request context and start timing."""
        g.log_start_time = time.perf_counter()
        # Later middlewares may rewrite these
        g.log_path = request.path
        g.log_query = request.query_string.decode('latin-1')

        span = trace.get_current_span()
        if span.is_recording():
            g.trace_id = format(span.get_span_context().trace_id, "032x")
            span.set_attributes({
                "http.method": request.method,
                "http.target": request.path,
                "http.user_agent": request.headers.get("User-Agent", ""),
            })

    def build_fields(self, response) -> Dict[str, Any]:
        start = g.get('log_start_time', time.perf_counter())
        latency = time.perf_counter() - start

        fields: Dict[str, Any] = {}
        if self.config.status:
            fields['status'] = response.status_code
        if self.config.method:
            fields['method'] = request.method
        if self.config.path:
            fields['path'] = g.get('log_path', request.path)
        fields['query'] = g.get('log_query', '')
        if self.config.ip:
            fields['ip'] = RequestParser.get_client_ip()
        fields['user-agent'] = request.headers.get('User-Agent', '')
        fields['latency'] = round(latency, 6)

        if self.config.time_format:
            end = datetime.now(timezone.utc) if self.config.utc else datetime.now()
            fields['time'] = end.strftime(self.config.time_format)

        if g.get('trace_id'):
            fields['trace_id'] = g.trace_id

        if self.config.context is not None:
            fields.update(self.config.context(request))

        return fields

    def after_request(self, response):
        """Log request completion."""
        path = g.get('log_path', request.path)
        if path in self.skip_paths:
            return response

        fields = self.build_fields(response)
        error = g.get('request_error')
        if error is not None:
            self.logger.error(str(error), **fields)
        else:
            self.logger.info(path, **fields)

        if g.get('trace_id'):
            response.headers['X-Trace-Id'] = g.trace_id

        return response


def add_observability_middleware(
    app: Flask,
    logger: Any = None,
    config: Optional[LoggerConfig] = None,
    instrument: bool = True
) -> RequestLogger:
    """Add OpenTelemetry instrumentation and request logging to a Flask app."""
    if instrument:
        FlaskInstrumentor().instrument_app(app)

    return RequestLogger(app, logger=logger, config=config)
