# SPDX-License-Identifier: Apache-2.0

"""
Crash reporting middleware sending unhandled exceptions to Sentry.
"""

from flask import Flask, request, g
from werkzeug.exceptions import HTTPException
from typing import Any, Dict, Optional
import os
import logging

import sentry_sdk

from ..errors import problem_response

logger = logging.getLogger(__name__)


def request_context() -> Dict[str, Any]:
    """Describe the current request the way Sentry's request interface expects."""
    return {
        "url": request.base_url,
        "method": request.method,
        "query_string": request.query_string.decode('latin-1'),
        "headers": {
            k: v for k, v in request.headers.items()
            if k.lower() not in ('authorization', 'cookie')
        },
        "env": {"REMOTE_ADDR": request.remote_addr or ''}
    }


class SentryRecovery:
    """Capture unhandled exceptions with Sentry and answer 500."""

    def __init__(self, app: Optional[Flask] = None, dsn: Optional[str] = None, **sdk_options):
        """
        Initialize crash reporting.

        Args:
            app: Flask application
            dsn: Sentry DSN, defaults to ``SENTRY_DSN``; without one the SDK
                is assumed to be initialized elsewhere
            **sdk_options: Extra options for ``sentry_sdk.init``
        """
        self.dsn = dsn or os.getenv('SENTRY_DSN')
        if self.dsn:
            sdk_options.setdefault('environment', os.getenv('ENVIRONMENT', 'development'))
            sentry_sdk.init(dsn=self.dsn, **sdk_options)

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.register_error_handler(Exception, self.recovery_handler)

    def capture(self, error: Exception) -> Optional[str]:
        """Send the exception with the request attached; returns the event id."""
        with sentry_sdk.new_scope() as scope:
            scope.set_context("request", request_context())
            scope.set_tag("http.path", request.path)
            return sentry_sdk.capture_exception(error)

    def recovery_handler(self, error: Exception):
        if isinstance(error, HTTPException):
            return error

        logger.error(
            f"Unhandled exception: {error.__class__.__name__}",
            extra={"path": request.path, "method": request.method},
            exc_info=error
        )

        g.request_error = error
        g.sentry_event_id = self.capture(error)

        return problem_response(500, "Internal Server Error", "An unexpected error occurred", "internal-server-error")
