# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the rate limiting middleware.
"""

import pytest
from unittest.mock import patch
from flask import Flask

from flask_contrib.middleware.rate_limit import RateLimiter, VaryBy, get_storage_uri


class TestRateLimiter:
    """Test global rate limiting."""

    def setup_method(self):
        """Set up test fixtures."""
        self.app = Flask(__name__)

        @self.app.route('/')
        def index():
            return 'ok'

        self.limiter = RateLimiter(
            "2 per minute",
            self.app,
            storage_uri="memory://",
            vary_by=VaryBy(remote_addr=True)
        )
        self.client = self.app.test_client()

    def test_headers_on_allowed_request(self):
        response = self.client.get('/')

        assert response.status_code == 200
        assert response.headers['X-RateLimit-Limit'] == '2'
        assert response.headers['X-RateLimit-Remaining'] == '1'
        assert 0 < int(response.headers['X-RateLimit-Reset']) <= 60
        assert 'Retry-After' not in response.headers

    def test_limit_exceeded(self):
        self.client.get('/')
        self.client.get('/')

        response = self.client.get('/')

        assert response.status_code == 429
        assert response.data == b'limit exceeded'
        assert response.headers['X-RateLimit-Remaining'] == '0'
        assert 0 < int(response.headers['Retry-After']) <= 60

    def test_keys_vary_by_remote_addr(self):
        self.client.get('/')
        self.client.get('/')

        other = self.client.get('/', environ_base={'REMOTE_ADDR': '10.0.0.9'})

        assert other.status_code == 200

    def test_forwarded_for_is_used(self):
        for _ in range(2):
            self.client.get('/', headers={'X-Forwarded-For': '203.0.113.7'})

        assert self.client.get('/', headers={'X-Forwarded-For': '203.0.113.7'}).status_code == 429
        assert self.client.get('/').status_code == 200

    def test_reset(self):
        self.client.get('/')
        self.client.get('/')

        self.limiter.reset()

        assert self.client.get('/').status_code == 200

    def test_storage_error_goes_to_error_handler(self):
        with patch.object(self.limiter.limiter, 'hit', side_effect=ConnectionError("storage down")):
            response = self.client.get('/')

        assert response.status_code == 500
        assert response.get_json()["detail"] == "storage down"


class TestRateLimiterOptions:
    """Test decorators, key builders and handlers."""

    def test_limit_decorator(self):
        app = Flask(__name__)
        limiter = RateLimiter("1/second", storage_uri="memory://")

        @app.route('/limited')
        @limiter.limit
        def limited():
            return 'limited'

        @app.route('/free')
        def free():
            return 'free'

        client = app.test_client()

        first = client.get('/limited')
        assert first.status_code == 200
        assert first.headers['X-RateLimit-Limit'] == '1'

        assert client.get('/limited').status_code == 429
        assert client.get('/free').status_code == 200
        assert 'X-RateLimit-Limit' not in client.get('/free').headers

    def test_custom_denied_handler_and_callable_key(self):
        app = Flask(__name__)
        RateLimiter(
            "1 per hour",
            app,
            storage_uri="memory://",
            vary_by=lambda: 'shared',
            denied_handler=lambda: ("slow down", 503)
        )

        @app.route('/')
        def index():
            return 'ok'

        client = app.test_client()
        client.get('/')

        response = client.get('/')

        assert response.status_code == 503
        assert response.data == b'slow down'

    def test_vary_by_parts(self):
        app = Flask(__name__)
        vary = VaryBy(method=True, path=True, headers=['X-Api-Key'], params=['tenant'])

        with app.test_request_context('/Items?tenant=acme', method='POST', headers={'X-Api-Key': 'k1'}):
            assert vary.key() == "POST\n/items\nk1\nacme"

    def test_moving_window_strategy(self):
        limiter = RateLimiter("1/minute", storage_uri="memory://", strategy="moving-window")

        first = limiter.rate_limit('key')
        second = limiter.rate_limit('key')

        assert first.limited is False
        assert second.limited is True
        assert second.retry_after > 0

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            RateLimiter("1/minute", storage_uri="memory://", strategy="leaky-bucket")

    def test_get_storage_uri(self, monkeypatch):
        monkeypatch.delenv('RATE_LIMIT_STORAGE_URI', raising=False)
        monkeypatch.delenv('REDIS_URL', raising=False)
        assert get_storage_uri() == "memory://"

        monkeypatch.setenv('REDIS_URL', 'redis://localhost:6379/0')
        assert get_storage_uri() == 'redis://localhost:6379/0'

        monkeypatch.setenv('RATE_LIMIT_STORAGE_URI', 'memcached://localhost:11211')
        assert get_storage_uri() == 'memcached://localhost:11211'
