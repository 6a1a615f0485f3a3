# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for request logging and observability configuration.
"""

import pytest
import structlog
from flask import Flask, g
from structlog.testing import capture_logs

from flask_contrib.observability.config import setup_observability, setup_structured_logging
from flask_contrib.observability.middleware import (
    LoggerConfig, RequestLogger, add_observability_middleware
)


def build_app(config=None):
    app = Flask(__name__)
    RequestLogger(app, config=config)

    @app.route('/')
    def index():
        return 'ok'

    @app.route('/health')
    def health():
        return 'healthy'

    @app.route('/fail')
    def fail():
        g.request_error = RuntimeError("backend unavailable")
        return 'failed', 502

    return app


class TestRequestLogger:
    """Test the per-request structured log line."""

    def test_logs_request_fields(self):
        with capture_logs() as logs:
            app = build_app()
            app.test_client().get('/?q=1', headers={'User-Agent': 'pytest-agent'})

        assert len(logs) == 1
        entry = logs[0]
        assert entry['event'] == '/'
        assert entry['log_level'] == 'info'
        assert entry['status'] == 200
        assert entry['method'] == 'GET'
        assert entry['path'] == '/'
        assert entry['query'] == 'q=1'
        assert entry['ip'] == '127.0.0.1'
        assert entry['user-agent'] == 'pytest-agent'
        assert entry['latency'] >= 0
        assert 'time' not in entry

    def test_request_error_logs_at_error_level(self):
        with capture_logs() as logs:
            app = build_app()
            app.test_client().get('/fail')

        assert logs[0]['log_level'] == 'error'
        assert logs[0]['event'] == 'backend unavailable'
        assert logs[0]['status'] == 502

    def test_skip_paths(self):
        with capture_logs() as logs:
            app = build_app(LoggerConfig(skip_paths=['/health']))
            client = app.test_client()
            client.get('/health')
            client.get('/')

        assert [e['path'] for e in logs] == ['/']

    def test_disabled_fields_time_and_context(self):
        config = LoggerConfig(
            time_format='%Y-%m-%d',
            utc=True,
            status=False,
            ip=False,
            context=lambda request: {"request_id": request.headers.get('X-Request-Id')}
        )

        with capture_logs() as logs:
            app = build_app(config)
            app.test_client().get('/', headers={'X-Request-Id': 'req-42'})

        entry = logs[0]
        assert 'status' not in entry
        assert 'ip' not in entry
        assert len(entry['time']) == 10
        assert entry['request_id'] == 'req-42'

    def test_add_observability_middleware_without_instrumentation(self):
        app = Flask(__name__)

        logger = add_observability_middleware(app, instrument=False)

        assert isinstance(logger, RequestLogger)


class TestObservabilityConfig:
    """Test structlog and tracing setup."""

    def teardown_method(self):
        structlog.reset_defaults()

    def test_otel_disabled_by_default(self, monkeypatch):
        monkeypatch.delenv('OTEL_ENABLED', raising=False)

        assert setup_observability() is None

    @pytest.mark.parametrize("environment,renderer", [
        ('production', structlog.processors.JSONRenderer),
        ('development', structlog.dev.ConsoleRenderer),
    ])
    def test_renderer_per_environment(self, environment, renderer):
        setup_structured_logging(environment)

        processors = structlog.get_config()['processors']
        assert isinstance(processors[-1], renderer)
