# SPDX-License-Identifier: Apache-2.0

"""
Google reCAPTCHA verification middleware.

Reads the client's reCAPTCHA token from the request, verifies it against
Google's siteverify API and only lets verified requests through.
"""

from flask import Flask, request, g
from functools import wraps
from typing import Any, Callable, Optional
from pydantic import ValidationError
import os
import logging

import requests

from ..errors import RecaptchaError
from ..models.recaptcha import RecaptchaResponse

logger = logging.getLogger(__name__)

RESPONSE_KEY = "g-recaptcha-response"
API_URL = "https://www.google.com/recaptcha/api/siteverify"
DEFAULT_TIMEOUT = 20

TokenExtractor = Callable[[], str]


def from_header() -> str:
    """Token from the ``g-recaptcha-response`` header; empty when absent."""
    return request.headers.get(RESPONSE_KEY, '')


def from_form() -> str:
    """Token from the ``g-recaptcha-response`` form field; empty when absent."""
    return request.form.get(RESPONSE_KEY, '')


def on_error(message: str):
    """Default error handler: 401 with the message as text."""
    return message, 401, {"Content-Type": "text/plain; charset=utf-8"}


class Recaptcha:
    """reCAPTCHA verification middleware."""

    def __init__(
        self,
        secret: Optional[str] = None,
        app: Optional[Flask] = None,
        extractor: Optional[TokenExtractor] = None,
        error_handler: Optional[Callable[[str], Any]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the middleware.

        Args:
            secret: reCAPTCHA secret key, defaults to ``RECAPTCHA_SECRET``
            app: Flask application to protect globally
            extractor: Reads the client token from the request
            error_handler: Builds the response for a failed verification
            timeout: siteverify request timeout in seconds
            session: requests session used to call the API
        """
        self.secret = secret if secret is not None else os.getenv('RECAPTCHA_SECRET', '')
        self.extractor = extractor or from_header
        self.error_handler = error_handler or on_error
        self.timeout = timeout
        self.session = session or requests.Session()

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.before_request(self.serve)

    def site_verify(self) -> RecaptchaResponse:
        """
        Verify the token of the current request.

        Returns:
            The siteverify response, ``success`` is always True

        Raises:
            RecaptchaError: When the token is missing, the secret is not
                configured, the API can't be reached or rejects the token
        """
        token = self.extractor()
        if not token:
            raise RecaptchaError("captcha response not found")

        if not self.secret:
            raise RecaptchaError("no secret is given")

        try:
            r = self.session.post(
                API_URL,
                data={"secret": self.secret, "response": token},
                timeout=self.timeout
            )
            response = RecaptchaResponse.model_validate(r.json())
        except (requests.RequestException, ValueError, ValidationError) as e:
            logger.warning(f"reCAPTCHA verification request failed: {str(e)}")
            raise RecaptchaError(str(e))

        if not response.success:
            logger.info(
                "reCAPTCHA verification failed",
                extra={"error_codes": response.error_codes, "hostname": response.hostname}
            )
            raise RecaptchaError("google verification response failed")

        g.recaptcha_response = response
        return response

    def serve(self):
        """before_request hook: None when verified, otherwise the error response."""
        try:
            self.site_verify()
        except RecaptchaError as e:
            return self.error_handler(e.message)
        return None

    def protect(self, f):
        """Decorator verifying the token before the view runs."""
        @wraps(f)
        def decorated_function(*args, **kwargs):
            failure = self.serve()
            if failure is not None:
                return failure
            return f(*args, **kwargs)

        return decorated_function


def get_response() -> Optional[RecaptchaResponse]:
    """Return the verification result of the current request."""
    return g.get('recaptcha_response')
