# SPDX-License-Identifier: Apache-2.0

"""
Authorization middleware backed by a casbin enforcer.

Every request is enforced as ``(username, path, method)``. The username
comes from a value set by a prior middleware (see ``set_username``) or from
HTTP Basic authentication.
"""

from functools import wraps
from flask import Flask, request, g
from typing import Callable, Optional
from opentelemetry import trace
import casbin
import logging

from ..errors import AuthorizationDenied

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

USERNAME_CONTEXT_KEY = 'casbin_username'


def get_username() -> str:
    """
    Get the username to enforce.

    Returns:
        The username set by ``set_username``, or the Basic auth username,
        or an empty string
    """
    username = g.get(USERNAME_CONTEXT_KEY, '')
    if not username and request.authorization is not None:
        username = request.authorization.username or ''
    return username


def set_username(username: str):
    """Set a custom username for the casbin middleware on the current request."""
    setattr(g, USERNAME_CONTEXT_KEY, username)


def forbidden():
    """Default denial handler."""
    return AuthorizationDenied("Access to this resource is denied").to_response()


class CasbinMiddleware:
    """
    Casbin authorization middleware for Flask applications.

    Adapt with ``init_app`` for the entire application or ``protect`` for
    specific routes.
    """

    def __init__(
        self,
        enforcer: casbin.Enforcer,
        app: Optional[Flask] = None,
        error_handler: Optional[Callable] = None
    ):
        """
        Initialize the authorization middleware.

        Args:
            enforcer: Configured casbin enforcer (model + policy)
            app: Flask application; when given, every request is enforced
            error_handler: Called without arguments on denial
        """
        self.enforcer = enforcer
        self.error_handler = error_handler or forbidden

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.before_request(self.serve)

    def check(self) -> bool:
        """
        Check the username, request's path and method against the policy.

        Returns:
            True if permission is granted
        """
        with tracer.start_as_current_span("casbin.middleware.check") as span:
            username = get_username()
            span.set_attributes({
                "auth.operation": "enforce",
                "http.method": request.method,
                "http.path": request.path
            })

            try:
                allowed = bool(self.enforcer.enforce(username, request.path, request.method))
            except Exception as e:
                # Enforcer errors (bad model, adapter failures) deny access
                span.record_exception(e)
                logger.error(f"Casbin enforce failed: {str(e)}")
                allowed = False

            span.set_attribute("auth.permission_result", "granted" if allowed else "denied")
            if not allowed:
                logger.warning(
                    "Authorization failed",
                    extra={
                        "username": username,
                        "path": request.path,
                        "method": request.method
                    }
                )
            return allowed

    def serve(self):
        """Before-request hook; returns a response to stop the chain on denial."""
        if not self.check():
            return self.error_handler()
        return None

    def protect(self, f: Callable) -> Callable:
        """Decorator enforcing the policy for a single route."""
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not self.check():
                return self.error_handler()
            return f(*args, **kwargs)

        return decorated_function
