# SPDX-License-Identifier: Apache-2.0

"""
JSON Web Token authentication middleware.

Extracts a token from the request, parses and verifies it with PyJWT and
stores the result on ``flask.g`` for the rest of the handler chain.
"""

from dataclasses import dataclass, field
from functools import wraps
from flask import Flask, request, g
from typing import Any, Callable, Dict, List, Optional
from opentelemetry import trace
import jwt
import logging

from ..errors import TokenExtractionError, TokenValidationError, problem_response
from ..services.jwt_keys import KeyGetter

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_KEY = 'jwt'
DEFAULT_ALGORITHMS = [
    'HS256', 'HS384', 'HS512',
    'RS256', 'RS384', 'RS512',
    'PS256', 'PS384', 'PS512',
    'ES256', 'ES384', 'ES512',
    'EdDSA'
]

# Returns a token, or '' when none is present. Raises TokenExtractionError
# only when a token was supplied but malformed.
TokenExtractor = Callable[[], str]


def on_error(message: str):
    """Default error handler: 401 with the failure message."""
    return problem_response(401, "Unauthorized", message, "invalid-token")


def from_auth_header() -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    auth_header = request.headers.get('Authorization', '')
    if not auth_header:
        return ''

    parts = auth_header.split(' ')
    if len(parts) != 2 or parts[0].lower() != 'bearer':
        raise TokenExtractionError("Authorization header format must be Bearer {token}")

    return parts[1]


def from_parameter(param: str) -> TokenExtractor:
    """Return an extractor reading the token from a query string parameter."""
    def extractor() -> str:
        return request.args.get(param, '')
    return extractor


def from_first(*extractors: TokenExtractor) -> TokenExtractor:
    """Return an extractor running ``extractors`` in order, first token wins."""
    def extractor() -> str:
        for ex in extractors:
            token = ex()
            if token:
                return token
        return ''
    return extractor


@dataclass
class Token:
    """A parsed and verified JWT."""

    raw: str
    header: Dict[str, Any]
    claims: Dict[str, Any]


@dataclass
class JWTConfig:
    """Configuration of the JWT middleware."""

    # Required: resolves the verification key for a token
    validation_key_getter: Optional[KeyGetter] = None
    # Expected ``alg`` header; tokens signed otherwise are rejected
    signing_method: Optional[str] = None
    algorithms: List[str] = field(default_factory=lambda: list(DEFAULT_ALGORITHMS))
    extractor: TokenExtractor = from_auth_header
    credentials_optional: bool = False
    enable_auth_on_options: bool = False
    error_handler: Callable[[str], Any] = on_error
    context_key: str = DEFAULT_CONTEXT_KEY
    debug: bool = False
    audience: Optional[str] = None
    issuer: Optional[str] = None
    leeway: float = 0


class JWTMiddleware:
    """
    JWT authentication middleware for Flask applications.

    Use ``init_app`` to protect every route or ``require_jwt`` for specific
    routes.
    """

    def __init__(self, config: Optional[JWTConfig] = None, app: Optional[Flask] = None):
        self.config = config or JWTConfig()

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        """Register the JWT check as a global before-request hook."""
        app.before_request(self.serve)

    def logf(self, message: str, *args):
        if self.config.debug:
            logger.debug(message, *args)

    def get(self) -> Optional[Token]:
        """Return the token stored for the current request."""
        return g.get(self.config.context_key)

    def serve(self):
        """Before-request hook; returns the error response to stop the chain."""
        try:
            self.check_jwt()
        except (TokenExtractionError, TokenValidationError) as e:
            return self.config.error_handler(e.message)
        return None

    def _parse(self, token: str) -> Token:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise TokenValidationError(str(e))

        alg = header.get('alg')
        if self.config.signing_method and self.config.signing_method != alg:
            message = f"Expected {self.config.signing_method} signing method but token specified {alg}"
            self.logf("Error validating token algorithm: %s", message)
            raise TokenValidationError(message)

        if self.config.validation_key_getter is None:
            raise TokenValidationError("no validation key getter configured")

        try:
            unverified = jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            self.logf("Error parsing token: %s", e)
            raise TokenValidationError(str(e) or "The token isn't valid")

        try:
            key = self.config.validation_key_getter(header, unverified)
        except Exception as e:
            # Key store failures (unknown kid, unreachable JWKS) reject the token
            self.logf("Error resolving validation key: %s", e)
            raise TokenValidationError(f"Error resolving validation key: {str(e)}")

        try:
            algorithms = [self.config.signing_method] if self.config.signing_method else self.config.algorithms
            options = {"verify_aud": self.config.audience is not None}
            claims = jwt.decode(
                token,
                key,
                algorithms=algorithms,
                audience=self.config.audience,
                issuer=self.config.issuer,
                leeway=self.config.leeway,
                options=options
            )
        except jwt.PyJWTError as e:
            self.logf("Error parsing token: %s", e)
            raise TokenValidationError(str(e) or "The token isn't valid")

        return Token(raw=token, header=header, claims=claims)

    def check_jwt(self) -> Optional[Token]:
        """
        Extract, parse and verify the request's token.

        Returns:
            The verified Token, or None when the request carries no
            credentials and they are optional (or it is an OPTIONS request)

        Raises:
            TokenExtractionError: If the token is present but malformed
            TokenValidationError: If the token is missing or invalid
        """
        if not self.config.enable_auth_on_options and request.method == 'OPTIONS':
            return None

        with tracer.start_as_current_span("jwt.middleware.check_jwt") as span:
            try:
                token = self.config.extractor()
            except TokenExtractionError as e:
                span.set_attribute("auth.result", "malformed_token")
                self.logf("Error extracting JWT: %s", e.message)
                raise

            self.logf("Token extracted: %s", token)

            if not token:
                if self.config.credentials_optional:
                    self.logf("  No credentials found (credentials_optional=True)")
                    span.set_attribute("auth.result", "anonymous")
                    return None

                span.set_attribute("auth.result", "missing_token")
                logger.warning("Authentication failed: missing token")
                raise TokenValidationError("Required authorization token not found")

            try:
                parsed = self._parse(token)
            except TokenValidationError as e:
                span.set_attribute("auth.result", "invalid_token")
                logger.warning(f"Authentication failed: {e.message}")
                raise

            span.set_attributes({
                "auth.result": "success",
                "auth.algorithm": str(parsed.header.get('alg')),
            })
            self.logf("JWT: %s", parsed.claims)

            setattr(g, self.config.context_key, parsed)
            return parsed

    def require_jwt(self, f: Callable) -> Callable:
        """Decorator requiring a valid JWT for a single route."""
        @wraps(f)
        def decorated_function(*args, **kwargs):
            failure = self.serve()
            if failure is not None:
                return failure
            return f(*args, **kwargs)

        return decorated_function


def get_token(context_key: str = DEFAULT_CONTEXT_KEY) -> Optional[Token]:
    """Return the verified token of the current request, if any."""
    return g.get(context_key)
