# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Cross-Site Request Forgery protection.

The real token lives in a cookie signed with itsdangerous. Every response
gets a freshly masked copy of it, and unsafe requests must echo the masked
token back in a header or form field.
"""

from base64 import b64decode, b64encode
from binascii import Error as BinasciiError
from functools import wraps
from flask import Flask, current_app, make_response, request, g
from itsdangerous import BadSignature, URLSafeTimedSerializer
from markupsafe import Markup, escape
from opentelemetry import trace
from typing import Callable, List, Optional
from urllib.parse import urlsplit
import hmac
import logging
import secrets

from ..errors import (
    CSRFError, NoRefererError, BadRefererError, NoTokenError, BadTokenError
)
from ..utils.request import RequestParser

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

TOKEN_LENGTH = 32
DEFAULT_FIELD_NAME = 'csrf.Token'
DEFAULT_HEADER_NAME = 'X-CSRF-Token'
DEFAULT_COOKIE_NAME = '_flask_csrf'
DEFAULT_MAX_AGE = 3600 * 12
# Idempotent (safe) methods as defined by RFC7231 section 4.2.2.
SAFE_METHODS = ('GET', 'HEAD', 'OPTIONS', 'TRACE')
TEMPLATE_TAG = 'csrf_field'


def generate_random_bytes(n: int) -> bytes:
    return secrets.token_bytes(n)


def xor_token(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))


def mask(real_token: bytes) -> str:
    """
    Return a unique-per-request token to mitigate BREACH attacks.

    The one-time pad is prepended to the XORed token so the receiver can
    recover the real token.
    """
    one_time_pad = generate_random_bytes(TOKEN_LENGTH)
    return b64encode(one_time_pad + xor_token(one_time_pad, real_token)).decode('ascii')


def unmask(issued: bytes) -> Optional[bytes]:
    """Recover the real token from a masked one; None when malformed."""
    if len(issued) != TOKEN_LENGTH * 2:
        return None

    one_time_pad, masked = issued[:TOKEN_LENGTH], issued[TOKEN_LENGTH:]
    return xor_token(one_time_pad, masked)


def compare_tokens(a: Optional[bytes], b: Optional[bytes]) -> bool:
    if not a or not b or len(a) != len(b):
        return False
    return hmac.compare_digest(a, b)


class CookieStore:
    """Signed cookie session store for CSRF tokens."""

    def __init__(
        self,
        serializer: URLSafeTimedSerializer,
        name: str,
        max_age: int,
        secure: bool,
        http_only: bool,
        path: str,
        domain: Optional[str],
        same_site: Optional[str]
    ):
        self.serializer = serializer
        self.name = name
        self.max_age = max_age
        self.secure = secure
        self.http_only = http_only
        self.path = path
        self.domain = domain
        self.same_site = same_site

    def get(self) -> Optional[bytes]:
        """
        Retrieve the real token from the session cookie.

        Returns:
            The token, or None if the cookie is missing, expired or fails
            signature validation
        """
        value = request.cookies.get(self.name)
        if not value:
            return None

        try:
            encoded = self.serializer.loads(value, max_age=self.max_age or None)
            return b64decode(encoded)
        except (BadSignature, BinasciiError, TypeError) as e:
            logger.debug(f"CSRF cookie rejected: {str(e)}")
            return None

    def save(self, response, token: bytes):
        """Write the signed token cookie to the response."""
        response.set_cookie(
            self.name,
            self.serializer.dumps(b64encode(token).decode('ascii')),
            # A max age of zero keeps the cookie session-only
            max_age=self.max_age if self.max_age > 0 else None,
            secure=self.secure,
            httponly=self.http_only,
            path=self.path,
            domain=self.domain,
            samesite=self.same_site
        )


class CSRFProtect:
    """
    Cross-Site Request Forgery protection middleware.

    Generates a masked (unique-per-request) token that can be embedded in
    the response (form field or header). The original token is stored in an
    authenticated cookie; unsafe requests that do not echo a matching token
    are served with a 403 by default.
    """

    def __init__(
        self,
        auth_key: bytes,
        app: Optional[Flask] = None,
        field_name: str = DEFAULT_FIELD_NAME,
        request_header: str = DEFAULT_HEADER_NAME,
        cookie_name: str = DEFAULT_COOKIE_NAME,
        max_age: int = DEFAULT_MAX_AGE,
        domain: Optional[str] = None,
        path: str = '/',
        secure: bool = True,
        http_only: bool = True,
        same_site: Optional[str] = None,
        trusted_origins: Optional[List[str]] = None,
        error_handler: Optional[Callable] = None
    ):
        """
        Initialize CSRF protection.

        Args:
            auth_key: Secret used to authenticate the token cookie
            app: Flask application; when given, protection is global
            field_name: Form field inspected for the token
            request_header: Header inspected for the token
            cookie_name: Name of the token cookie
            max_age: Cookie lifetime in seconds, 0 for session cookies,
                negative for the 12 hour default
            domain: Cookie domain
            path: Cookie path
            secure: Set the cookie ``Secure`` flag
            http_only: Set the cookie ``HttpOnly`` flag
            same_site: Cookie ``SameSite`` attribute
            trusted_origins: Hosts allowed as Referer besides the request host
            error_handler: Called with the CSRFError on failure
        """
        if max_age < 0:
            max_age = DEFAULT_MAX_AGE

        self.field_name = field_name
        self.request_header = request_header
        self.trusted_origins = [o.lower() for o in (trusted_origins or [])]
        self.error_handler = error_handler or self.default_error_handler
        self.store = CookieStore(
            URLSafeTimedSerializer(auth_key, salt=cookie_name),
            name=cookie_name,
            max_age=max_age,
            secure=secure,
            http_only=http_only,
            path=path,
            domain=domain,
            same_site=same_site
        )

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        """Register CSRF handlers with Flask application."""
        app.before_request(self.protect_request)
        app.after_request(self.save_token)
        app.jinja_env.globals[TEMPLATE_TAG] = template_field

    @staticmethod
    def default_error_handler(error: CSRFError):
        """Serve 403 with the failure reason as plain text."""
        return error.message, error.status_code, {'Content-Type': 'text/plain; charset=utf-8'}

    def _fail(self, error: CSRFError):
        g.csrf_error = error
        logger.warning(
            f"CSRF check failed: {error.message}",
            extra={"path": request.path, "method": request.method}
        )
        return self.error_handler(error)

    def _request_token(self) -> bytes:
        issued = request.headers.get(self.request_header, '')
        if not issued and request.method in ('POST', 'PUT', 'PATCH'):
            issued = request.form.get(self.field_name, '')

        try:
            return b64decode(issued, validate=True)
        except (BinasciiError, ValueError):
            return b''

    def _check_referer(self) -> Optional[CSRFError]:
        referer = request.referrer
        if not referer:
            return NoRefererError()

        if RequestParser.same_origin(request.url, referer):
            return None

        if urlsplit(referer).netloc.lower() in self.trusted_origins:
            return None

        return BadRefererError()

    def protect_request(self):
        """
        Validate the current request.

        Returns:
            None to continue the chain, or the error handler's response
        """
        view = current_app.view_functions.get(request.endpoint) if request.endpoint else None
        if g.get('csrf_skip', False) or getattr(view, 'csrf_exempt', False):
            return None

        with tracer.start_as_current_span("csrf.middleware.protect_request") as span:
            real_token = self.store.get()
            if real_token is None or len(real_token) != TOKEN_LENGTH:
                # The new token will (correctly) fail validation below as it
                # no longer matches the request token.
                real_token = generate_random_bytes(TOKEN_LENGTH)
                g.csrf_new_token = real_token

            g.csrf_real_token = real_token
            g.csrf_token = mask(real_token)
            g.csrf_field_name = self.field_name

            if request.method in SAFE_METHODS:
                span.set_attribute("csrf.result", "safe_method")
                return None

            # Enforce an origin check for HTTPS connections, the Referer
            # header is almost always present for same-domain requests.
            if request.scheme == 'https':
                error = self._check_referer()
                if error is not None:
                    span.set_attribute("csrf.result", "bad_referer")
                    return self._fail(error)

            issued = self._request_token()
            if not issued:
                span.set_attribute("csrf.result", "no_token")
                return self._fail(NoTokenError())

            if not compare_tokens(unmask(issued), real_token):
                span.set_attribute("csrf.result", "bad_token")
                return self._fail(BadTokenError())

            span.set_attribute("csrf.result", "success")
            return None

    def save_token(self, response):
        """Persist a newly generated token and mark the response as cookie dependent."""
        new_token = g.get('csrf_new_token')
        if new_token is not None:
            self.store.save(response, new_token)

        if g.get('csrf_real_token') is not None:
            response.vary.add('Cookie')
        return response

    def protect(self, f: Callable) -> Callable:
        """Decorator applying CSRF protection to a single route."""
        @wraps(f)
        def decorated_function(*args, **kwargs):
            failure = self.protect_request()
            if failure is not None:
                response = make_response(failure)
            else:
                response = make_response(f(*args, **kwargs))
            return self.save_token(response)

        return decorated_function


def generate_token() -> str:
    """Return the masked CSRF token for the current request."""
    return g.get('csrf_token', '')


def template_field() -> Markup:
    """Return a hidden input field carrying the masked token."""
    field_name = g.get('csrf_field_name', DEFAULT_FIELD_NAME)
    return Markup(
        f'<input type="hidden" name="{escape(field_name)}" value="{escape(generate_token())}">'
    )


def failure_reason() -> Optional[CSRFError]:
    """Return the reason the current request failed CSRF validation."""
    return g.get('csrf_error')


def unsafe_skip_check():
    """
    Exempt the current request from CSRF validation.

    Must run before the protection hook, e.g. in an earlier before_request.
    """
    g.csrf_skip = True


def exempt(f: Callable) -> Callable:
    """Decorator excluding a route from global CSRF protection."""
    f.csrf_exempt = True
    return f
