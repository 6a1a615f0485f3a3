# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Recovery middleware.

Catches exceptions escaping the handler chain, logs them with structlog and
answers with a 500 instead of letting the server drop the request.
"""

from flask import Flask, request, g
from werkzeug.exceptions import HTTPException
from typing import Any, Callable, Optional
from datetime import datetime, timezone
from opentelemetry import trace
import traceback

import structlog

from ..errors import MiddlewareError, problem_response
from ..utils.request import RequestParser

tracer = trace.get_tracer(__name__)

BROKEN_PIPE_MARKERS = ('broken pipe', 'connection reset by peer')


def default_handle_recovery(error: Exception):
    """Serve a 500 without exposing the error details."""
    return problem_response(500, "Internal Server Error", "An unexpected error occurred", "internal-server-error")


def is_broken_pipe(error: BaseException) -> bool:
    """Check for a dead client connection, which does not warrant a stack trace."""
    if isinstance(error, (BrokenPipeError, ConnectionResetError)):
        return True
    if isinstance(error, OSError):
        message = str(error).lower()
        return any(marker in message for marker in BROKEN_PIPE_MARKERS)
    return False


class Recovery:
    """Exception recovery middleware for Flask applications."""

    def __init__(
        self,
        app: Optional[Flask] = None,
        logger: Any = None,
        stack: bool = False,
        handler: Optional[Callable[[Exception], Any]] = None
    ):
        """
        Initialize the recovery middleware.

        Args:
            app: Flask application
            logger: structlog logger, defaults to one named after this module
            stack: Whether to log the stack trace
            handler: Builds the response from the exception, default 500
        """
        self.logger = logger or structlog.get_logger(__name__)
        self.stack = stack
        self.handler = handler or default_handle_recovery

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.register_error_handler(Exception, self.handle_exception)

    def handle_exception(self, error: Exception):
        """
        Handle an exception raised while serving the request.

        HTTP exceptions (404, 405, ...) and middleware errors keep their own
        status codes.
        """
        if isinstance(error, HTTPException):
            return error
        if isinstance(error, MiddlewareError):
            g.request_error = error
            return error.to_response()

        g.request_error = error

        with tracer.start_as_current_span("recovery.handle_exception") as span:
            span.record_exception(error)
            span.set_attributes({
                "error.class": error.__class__.__name__,
                "http.method": request.method,
                "http.path": request.path
            })

            http_request = RequestParser.dump_request()

            if is_broken_pipe(error):
                self.logger.error(
                    request.path,
                    error=str(error),
                    request=http_request
                )
                # The connection is dead, nothing can be written back
                return '', 500

            fields = {
                'time': datetime.now(timezone.utc).isoformat(),
                'error': f"{error.__class__.__name__}: {error}",
                'request': http_request
            }
            if self.stack:
                fields['stack'] = ''.join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )

            self.logger.error("[Recovery from panic]", **fields)

        return self.handler(error)
