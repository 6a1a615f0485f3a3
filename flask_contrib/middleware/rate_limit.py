# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Rate limiting middleware backed by the ``limits`` library.

Requests that are not limited pass to the handler unchanged. Limited
requests go to the denied handler. ``X-RateLimit-Limit``,
``X-RateLimit-Remaining``, ``X-RateLimit-Reset`` and ``Retry-After``
headers are written from the limiter's window statistics.
"""

from dataclasses import dataclass, field
from functools import wraps
from flask import Flask, request, g, make_response
from typing import Any, Callable, Dict, List, Optional, Union
from limits import RateLimitItem, parse, storage, strategies
import math
import os
import time
import logging

from ..errors import RateLimitExceeded, problem_response
from ..utils.request import RequestParser

logger = logging.getLogger(__name__)


def default_denied_handler():
    """Serve 429 with a generic message."""
    return "limit exceeded", 429, {'Content-Type': 'text/plain; charset=utf-8'}


def default_error(error: Exception):
    """Serve 500 when the limiter store fails."""
    return problem_response(500, "Internal Server Error", str(error), "rate-limiter-error")


def get_storage_uri() -> str:
    """
    Get storage URI for the limiter.

    Uses ``RATE_LIMIT_STORAGE_URI``, then ``REDIS_URL``, then in-memory storage.
    """
    return os.getenv('RATE_LIMIT_STORAGE_URI') or os.getenv('REDIS_URL') or "memory://"


@dataclass
class VaryBy:
    """Build the limiter key from parts of the request."""

    remote_addr: bool = False
    method: bool = False
    path: bool = False
    headers: List[str] = field(default_factory=list)
    params: List[str] = field(default_factory=list)
    cookies: List[str] = field(default_factory=list)
    separator: str = "\n"

    def key(self) -> str:
        parts = []
        if self.remote_addr:
            parts.append(RequestParser.get_client_ip())
        if self.method:
            parts.append(request.method.upper())
        if self.path:
            parts.append(request.path.lower())
        for header in self.headers:
            parts.append(request.headers.get(header, ''))
        for param in self.params:
            parts.append(request.values.get(param, ''))
        for cookie in self.cookies:
            parts.append(request.cookies.get(cookie, ''))
        return self.separator.join(parts)


@dataclass
class RateLimitResult:
    limited: bool
    limit: int
    remaining: int
    reset_after: float
    retry_after: float


class RateLimiter:
    """Rate limiting middleware for Flask applications."""

    def __init__(
        self,
        limit: Union[str, RateLimitItem],
        app: Optional[Flask] = None,
        storage_uri: Optional[str] = None,
        strategy: str = "fixed-window",
        vary_by: Optional[Union[VaryBy, Callable[[], str]]] = None,
        denied_handler: Optional[Callable] = None,
        error_handler: Optional[Callable[[Exception], Any]] = None,
        storage_options: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize the rate limiter.

        Args:
            limit: Rate as ``"20 per minute"`` or a parsed RateLimitItem
            app: Flask application; when given, every request is limited
            storage_uri: limits storage URI, see ``get_storage_uri``
            strategy: ``fixed-window``, ``moving-window`` or
                ``sliding-window-counter``
            vary_by: Key builder; all requests share one key when omitted
            denied_handler: Called without arguments for limited requests
            error_handler: Called with the storage exception
            storage_options: Extra options passed to the storage backend
        """
        self.item = parse(limit) if isinstance(limit, str) else limit
        self.storage = storage.storage_from_string(storage_uri or get_storage_uri(), **(storage_options or {}))
        if strategy not in strategies.STRATEGIES:
            raise ValueError(f"Unknown rate limiting strategy: {strategy}")
        self.limiter = strategies.STRATEGIES[strategy](self.storage)
        self.vary_by = vary_by
        self.denied_handler = denied_handler or default_denied_handler
        self.error_handler = error_handler or default_error

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.before_request(self.serve)
        app.after_request(self.add_rate_limit_headers)

    def get_key(self) -> str:
        if self.vary_by is None:
            return ''
        if isinstance(self.vary_by, VaryBy):
            return self.vary_by.key()
        return self.vary_by()

    def rate_limit(self, key: str, quantity: int = 1) -> RateLimitResult:
        """
        Consume ``quantity`` units for ``key``.

        Raises:
            Exception: Whatever the storage backend raises
        """
        allowed = self.limiter.hit(self.item, key, cost=quantity)
        stats = self.limiter.get_window_stats(self.item, key)

        reset_after = max(stats.reset_time - time.time(), 0)
        return RateLimitResult(
            limited=not allowed,
            limit=self.item.amount,
            remaining=max(stats.remaining, 0),
            reset_after=reset_after,
            retry_after=reset_after if not allowed else -1
        )

    def check(self):
        """
        Rate limit the current request.

        Returns:
            None to continue the chain, or the denied/error handler response
        """
        key = self.get_key()

        try:
            result = self.rate_limit(key)
        except Exception as e:
            logger.error(f"Rate limit check failed: {str(e)}")
            return self.error_handler(e)

        g.rate_limit_result = result

        logger.debug(
            "Rate limit check",
            extra={
                'key': key,
                'limit': result.limit,
                'remaining': result.remaining,
                'limited': result.limited
            }
        )

        if result.limited:
            logger.warning(
                "Rate limit exceeded",
                extra={
                    'key': key,
                    'path': request.path,
                    'limit': result.limit,
                    'retry_after': result.retry_after
                }
            )
            g.request_error = RateLimitExceeded(f"Rate limit of {self.item} exceeded")
            return self.denied_handler()

        return None

    def serve(self):
        return self.check()

    @staticmethod
    def add_rate_limit_headers(response):
        """Write rate limit headers from the current request's result."""
        result = g.get('rate_limit_result')
        if result is None:
            return response

        if result.limit >= 0:
            response.headers['X-RateLimit-Limit'] = str(result.limit)
        if result.remaining >= 0:
            response.headers['X-RateLimit-Remaining'] = str(result.remaining)
        if result.reset_after >= 0:
            response.headers['X-RateLimit-Reset'] = str(int(math.ceil(result.reset_after)))
        if result.retry_after >= 0:
            response.headers['Retry-After'] = str(int(math.ceil(result.retry_after)))

        return response

    def limit(self, f: Callable) -> Callable:
        """Decorator limiting a single route."""
        @wraps(f)
        def decorated_function(*args, **kwargs):
            failure = self.check()
            if failure is not None:
                response = make_response(failure)
            else:
                response = make_response(f(*args, **kwargs))
            return self.add_rate_limit_headers(response)

        return decorated_function

    def reset(self):
        """Clear all counters of the underlying storage."""
        self.storage.reset()
