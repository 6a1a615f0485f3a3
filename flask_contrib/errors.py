# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Exception hierarchy and RFC 7807 problem responses shared by the adapters.

Every adapter maps whatever its wrapped library reports to one of these
exceptions (or directly to a status code) and, by default, answers with a
problem document built by :func:`problem_response`.
"""

from typing import Any, Dict, List, Optional

from flask import jsonify, request

PROBLEM_BASE_URL = "https://flask-contrib.dev/problems"


def build_problem(
    error_type: str,
    title: str,
    status: int,
    detail: str,
    instance: Optional[str] = None,
    errors: Optional[List[Dict[str, Any]]] = None
) -> Dict[str, Any]:
    """Build an RFC 7807 compliant error body."""
    problem = {
        'type': f"{PROBLEM_BASE_URL}/{error_type}",
        'title': title,
        'status': status,
        'detail': detail,
        'instance': instance if instance is not None else request.path
    }

    if errors:
        problem['errors'] = errors

    return problem


def problem_response(
    status: int,
    title: str,
    detail: str,
    error_type: Optional[str] = None
):
    """
    Build a JSON problem response for the current request.

    Args:
        status: HTTP status code
        title: Short human readable summary
        detail: Explanation specific to this occurrence
        error_type: Problem type slug, derived from the title when omitted

    Returns:
        Flask response with ``application/problem+json`` content type
    """
    error_type = error_type or title.lower().replace(' ', '-')
    response = jsonify(build_problem(error_type, title, status, detail))
    response.status_code = status
    response.mimetype = 'application/problem+json'
    return response


class MiddlewareError(Exception):
    """Base class for errors reported by the middleware adapters."""

    status_code = 500
    error_type = "middleware-error"
    title = "Middleware Error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_response(self):
        return problem_response(self.status_code, self.title, self.message, self.error_type)


class TokenExtractionError(MiddlewareError):
    """A credential was present in the request but malformed."""

    status_code = 401
    error_type = "invalid-authorization-header"
    title = "Invalid Authorization Header"


class TokenValidationError(MiddlewareError):
    """Raised when token validation fails."""

    status_code = 401
    error_type = "invalid-token"
    title = "Invalid Token"


class AuthorizationDenied(MiddlewareError):
    status_code = 403
    error_type = "insufficient-permissions"
    title = "Forbidden"


class CSRFError(MiddlewareError):
    """Base class for CSRF validation failures."""

    status_code = 403
    error_type = "csrf-failure"
    title = "Forbidden"


class NoRefererError(CSRFError):
    def __init__(self, message: str = "referer not supplied"):
        super().__init__(message)


class BadRefererError(CSRFError):
    def __init__(self, message: str = "referer invalid"):
        super().__init__(message)


class NoTokenError(CSRFError):
    def __init__(self, message: str = "CSRF token not found in request"):
        super().__init__(message)


class BadTokenError(CSRFError):
    def __init__(self, message: str = "CSRF token invalid"):
        super().__init__(message)


class RateLimitExceeded(MiddlewareError):
    status_code = 429
    error_type = "rate-limit-exceeded"
    title = "Too Many Requests"


class RecaptchaError(MiddlewareError):
    """Raised when Google reCAPTCHA verification fails."""

    status_code = 401
    error_type = "recaptcha-failed"
    title = "Unauthorized"


class SchemaMismatchError(MiddlewareError):
    """Raised when mapped tables or columns are missing from the database."""

    error_type = "schema-mismatch"
    title = "Schema Mismatch"

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = missing or []


class IntentionalRollback(Exception):
    """
    Raise inside a transactional request to roll back without reporting an error.

    The optional ``response`` is served instead of the view's result,
    ``204 No Content`` otherwise.
    """

    def __init__(self, response: Any = None):
        super().__init__("intentional rollback")
        self.response = response
