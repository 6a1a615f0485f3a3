# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
CORS (Cross-Origin Resource Sharing) middleware.

Negotiates preflight and actual cross-origin requests following the
W3C CORS recommendation.
"""

from dataclasses import dataclass, field
from functools import wraps
from flask import Flask, request, make_response
from typing import Callable, List, Optional
import os
import logging

logger = logging.getLogger(__name__)

DEFAULT_METHODS = ['GET', 'POST', 'HEAD']
DEFAULT_HEADERS = ['Origin', 'Accept', 'Content-Type', 'X-Requested-With']
PREFLIGHT_VARY = 'Origin, Access-Control-Request-Method, Access-Control-Request-Headers'


def _default_origins() -> List[str]:
    custom_origins = os.getenv('CORS_ALLOWED_ORIGINS')
    if custom_origins:
        return [o.strip() for o in custom_origins.split(',') if o.strip()]
    return []


@dataclass
class CORSOptions:
    """Configuration container for the CORS middleware."""

    # Empty means all origins are allowed.
    allowed_origins: List[str] = field(default_factory=_default_origins)
    # Takes precedence over allowed_origins when set.
    allow_origin_func: Optional[Callable[[str], bool]] = None
    allowed_methods: List[str] = field(default_factory=lambda: list(DEFAULT_METHODS))
    allowed_headers: List[str] = field(default_factory=lambda: list(DEFAULT_HEADERS))
    exposed_headers: List[str] = field(default_factory=list)
    allow_credentials: bool = False
    max_age: int = 0
    options_passthrough: bool = False
    options_success_status: int = 200


def _canonical_header(name: str) -> str:
    return '-'.join(part.capitalize() for part in name.strip().split('-'))


class _Wildcard:
    """An origin pattern with a single ``*``."""

    def __init__(self, pattern: str):
        self.prefix, self.suffix = pattern.split('*', 1)

    def match(self, origin: str) -> bool:
        return (
            len(origin) >= len(self.prefix) + len(self.suffix)
            and origin.startswith(self.prefix)
            and origin.endswith(self.suffix)
        )


class CORSMiddleware:
    """CORS middleware for Flask applications."""

    def __init__(self, app: Optional[Flask] = None, options: Optional[CORSOptions] = None):
        """
        Initialize CORS middleware.

        Args:
            app: Flask application; when given, handlers are registered globally
            options: CORS configuration, defaults to ``CORSOptions()``
        """
        self.options = options or CORSOptions()

        self.allowed_origins_all = False
        self.allowed_origins: List[str] = []
        self.allowed_wildcard_origins: List[_Wildcard] = []
        for origin in self.options.allowed_origins:
            origin = origin.lower()
            if origin == '*':
                self.allowed_origins_all = True
                break
            if '*' in origin:
                self.allowed_wildcard_origins.append(_Wildcard(origin))
            else:
                self.allowed_origins.append(origin)
        if not self.options.allowed_origins and self.options.allow_origin_func is None:
            self.allowed_origins_all = True

        self.allowed_headers_all = False
        self.allowed_headers = ['Origin']
        for header in self.options.allowed_headers:
            if header == '*':
                self.allowed_headers_all = True
                break
            canonical = _canonical_header(header)
            if canonical not in self.allowed_headers:
                self.allowed_headers.append(canonical)

        self.allowed_methods = [m.upper() for m in self.options.allowed_methods]
        self.exposed_headers = [_canonical_header(h) for h in self.options.exposed_headers]

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        """Register CORS handlers with Flask application."""

        @app.before_request
        def handle_cors_request():
            return self.process_request()

        @app.after_request
        def add_cors_headers_to_response(response):
            return self.process_response(response)

    def is_origin_allowed(self, origin: str) -> bool:
        """
        Check if origin is allowed.

        Args:
            origin: Request origin

        Returns:
            True if origin is allowed
        """
        if self.options.allow_origin_func is not None:
            return bool(self.options.allow_origin_func(origin))

        if self.allowed_origins_all:
            return True

        origin = origin.lower()
        if origin in self.allowed_origins:
            return True

        return any(w.match(origin) for w in self.allowed_wildcard_origins)

    def is_method_allowed(self, method: str) -> bool:
        if not self.allowed_methods:
            return False

        method = method.upper()
        if method == 'OPTIONS':
            # Preflight is always allowed
            return True

        return method in self.allowed_methods

    def are_headers_allowed(self, requested_headers: List[str]) -> bool:
        if self.allowed_headers_all or not requested_headers:
            return True

        return all(_canonical_header(h) in self.allowed_headers for h in requested_headers)

    def _allow_origin_value(self, origin: str) -> str:
        if self.allowed_origins_all and not self.options.allow_credentials:
            return '*'
        return origin

    def _is_preflight(self) -> bool:
        return request.method == 'OPTIONS' and 'Access-Control-Request-Method' in request.headers

    def handle_preflight(self):
        """
        Compute preflight response headers.

        Returns:
            Tuple of (allowed, headers dict)
        """
        headers = {'Vary': PREFLIGHT_VARY}
        origin = request.headers.get('Origin', '')

        if not origin:
            logger.debug("CORS preflight aborted: empty origin")
            return None, headers

        if not self.is_origin_allowed(origin):
            logger.warning(f"CORS preflight rejected for origin: {origin}")
            return False, headers

        request_method = request.headers.get('Access-Control-Request-Method', '')
        if not self.is_method_allowed(request_method):
            logger.warning(f"CORS preflight rejected, method not allowed: {request_method}")
            return False, headers

        requested_headers = [
            h for h in request.headers.get('Access-Control-Request-Headers', '').split(',') if h.strip()
        ]
        if not self.are_headers_allowed(requested_headers):
            logger.warning(f"CORS preflight rejected, headers not allowed: {requested_headers}")
            return False, headers

        headers['Access-Control-Allow-Origin'] = self._allow_origin_value(origin)
        # Reflecting the requested method and headers is enough, the allowed
        # lists can be unbounded.
        headers['Access-Control-Allow-Methods'] = request_method.upper()
        if requested_headers:
            headers['Access-Control-Allow-Headers'] = ', '.join(
                _canonical_header(h) for h in requested_headers
            )
        if self.options.allow_credentials:
            headers['Access-Control-Allow-Credentials'] = 'true'
        if self.options.max_age > 0:
            headers['Access-Control-Max-Age'] = str(self.options.max_age)

        logger.debug(f"CORS preflight handled for origin: {origin}")
        return True, headers

    def handle_actual_request(self):
        """
        Compute actual (non preflight) response headers.

        Returns:
            Tuple of (allowed, headers dict); allowed is None when the
            request carries no Origin header
        """
        headers = {'Vary': 'Origin'}
        origin = request.headers.get('Origin', '')

        if not origin:
            return None, headers

        if not self.is_origin_allowed(origin):
            logger.warning(f"CORS rejected for origin: {origin}")
            return False, headers

        if not self.is_method_allowed(request.method):
            logger.warning(f"CORS rejected, method not allowed: {request.method}")
            return False, headers

        headers['Access-Control-Allow-Origin'] = self._allow_origin_value(origin)
        if self.exposed_headers:
            headers['Access-Control-Expose-Headers'] = ', '.join(self.exposed_headers)
        if self.options.allow_credentials:
            headers['Access-Control-Allow-Credentials'] = 'true'

        return True, headers

    def process_request(self):
        """Before-request step; returns a response to stop the chain or None."""
        if self._is_preflight():
            allowed, headers = self.handle_preflight()
            if allowed is False:
                return self._forbidden(headers)
            if allowed and not self.options.options_passthrough:
                response = make_response('', self.options.options_success_status)
                response.headers.extend(headers)
                return response
            return None

        allowed, headers = self.handle_actual_request()
        if allowed is False:
            return self._forbidden(headers)
        return None

    def process_response(self, response):
        """After-request step adding CORS headers to the view's response."""
        if 'Access-Control-Allow-Origin' in response.headers:
            return response

        if self._is_preflight():
            allowed, headers = self.handle_preflight()
        else:
            allowed, headers = self.handle_actual_request()

        if allowed is False:
            return response

        for key, value in headers.items():
            if key == 'Vary':
                response.vary.update(v.strip() for v in value.split(','))
            else:
                response.headers[key] = value

        return response

    @staticmethod
    def _forbidden(headers):
        response = make_response('', 403)
        response.vary.update(v.strip() for v in headers['Vary'].split(','))
        return response


def configure_cors(app: Flask, **kwargs) -> CORSMiddleware:
    """
    Configure CORS for Flask application.

    Args:
        app: Flask application
        **kwargs: ``CORSOptions`` fields

    Returns:
        Configured CORSMiddleware instance
    """
    return CORSMiddleware(app, CORSOptions(**kwargs))


def cross_origin(options: Optional[CORSOptions] = None) -> Callable:
    """
    Decorator applying CORS negotiation to a single route.

    The route must accept ``OPTIONS`` for preflight requests to reach it.
    """
    middleware = CORSMiddleware(options=options)

    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            early = middleware.process_request()
            if early is not None:
                return early

            response = make_response(f(*args, **kwargs))
            return middleware.process_response(response)

        return decorated_function
    return decorator
