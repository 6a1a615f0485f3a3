# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for exception recovery, crash reporting and APM middleware.
"""

from unittest.mock import MagicMock, Mock, patch
from flask import Flask, abort, g
from structlog.testing import capture_logs

from flask_contrib.errors import RateLimitExceeded
from flask_contrib.middleware import crash_reporting, newrelic_apm
from flask_contrib.middleware.crash_reporting import SentryRecovery
from flask_contrib.middleware.newrelic_apm import NewRelic
from flask_contrib.middleware.recovery import Recovery, is_broken_pipe


def build_app():
    app = Flask(__name__)

    @app.route('/')
    def index():
        return 'ok'

    @app.route('/panic')
    def panic():
        raise ValueError("something went wrong")

    @app.route('/missing')
    def missing():
        abort(404)

    @app.route('/limited')
    def limited():
        raise RateLimitExceeded("slow down")

    @app.route('/pipe')
    def pipe():
        raise BrokenPipeError("[Errno 32] Broken pipe")

    return app


class TestRecovery:
    """Test the structlog based recovery middleware."""

    def test_exception_becomes_500(self):
        with capture_logs() as logs:
            app = build_app()
            Recovery(app)
            response = app.test_client().get('/panic')

        assert response.status_code == 500
        assert response.get_json()["title"] == "Internal Server Error"

        entry = next(e for e in logs if e['event'] == '[Recovery from panic]')
        assert entry['log_level'] == 'error'
        assert entry['error'] == 'ValueError: something went wrong'
        assert entry['request'].startswith('GET /panic')
        assert 'stack' not in entry

    def test_stack_is_logged_when_enabled(self):
        with capture_logs() as logs:
            app = build_app()
            Recovery(app, stack=True)
            app.test_client().get('/panic')

        entry = next(e for e in logs if e['event'] == '[Recovery from panic]')
        assert 'Traceback' in entry['stack']

    def test_http_exceptions_pass_through(self):
        app = build_app()
        Recovery(app)

        assert app.test_client().get('/missing').status_code == 404
        assert app.test_client().get('/').status_code == 200

    def test_middleware_errors_keep_status(self):
        app = build_app()
        Recovery(app)

        response = app.test_client().get('/limited')

        assert response.status_code == 429
        assert response.get_json()["detail"] == "slow down"

    def test_broken_pipe_has_no_body(self):
        with capture_logs() as logs:
            app = build_app()
            Recovery(app)
            response = app.test_client().get('/pipe')

        assert response.status_code == 500
        assert response.data == b''
        assert any(e['event'] == '/pipe' for e in logs)

    def test_custom_handler(self):
        app = build_app()
        Recovery(app, handler=lambda error: (f"recovered: {error}", 503))

        response = app.test_client().get('/panic')

        assert response.status_code == 503
        assert response.data == b'recovered: something went wrong'

    def test_error_is_recorded_on_request(self):
        app = build_app()
        Recovery(app)
        seen = {}

        @app.after_request
        def record(response):
            seen['error'] = g.get('request_error')
            return response

        app.test_client().get('/panic')

        assert isinstance(seen['error'], ValueError)

    def test_is_broken_pipe(self):
        assert is_broken_pipe(BrokenPipeError()) is True
        assert is_broken_pipe(ConnectionResetError()) is True
        assert is_broken_pipe(OSError("write: connection reset by peer")) is True
        assert is_broken_pipe(OSError("disk full")) is False
        assert is_broken_pipe(ValueError("broken pipe")) is False


class TestSentryRecovery:
    """Test crash reporting with a mocked Sentry SDK."""

    def test_init_without_dsn_does_not_start_sdk(self, monkeypatch):
        monkeypatch.delenv('SENTRY_DSN', raising=False)

        with patch.object(crash_reporting.sentry_sdk, 'init') as init:
            SentryRecovery(build_app())

        init.assert_not_called()

    def test_init_with_dsn(self):
        with patch.object(crash_reporting.sentry_sdk, 'init') as init:
            SentryRecovery(dsn='https://key@sentry.example.com/1', traces_sample_rate=0.5)

        init.assert_called_once()
        kwargs = init.call_args.kwargs
        assert kwargs['dsn'] == 'https://key@sentry.example.com/1'
        assert kwargs['traces_sample_rate'] == 0.5
        assert kwargs['environment'] == 'test'

    def test_exception_is_captured(self):
        app = build_app()
        scope = MagicMock()

        with patch.object(crash_reporting.sentry_sdk, 'new_scope') as new_scope, \
                patch.object(crash_reporting.sentry_sdk, 'capture_exception', return_value='evt-1') as capture:
            new_scope.return_value.__enter__.return_value = scope
            SentryRecovery(app)
            response = app.test_client().get('/panic?debug=1')

        assert response.status_code == 500
        capture.assert_called_once()
        assert isinstance(capture.call_args.args[0], ValueError)

        context_name, context = scope.set_context.call_args.args
        assert context_name == 'request'
        assert context['method'] == 'GET'
        assert context['query_string'] == 'debug=1'
        scope.set_tag.assert_called_once_with('http.path', '/panic')

    def test_http_exceptions_are_not_captured(self):
        app = build_app()

        with patch.object(crash_reporting.sentry_sdk, 'capture_exception') as capture:
            SentryRecovery(app)
            response = app.test_client().get('/missing')

        assert response.status_code == 404
        capture.assert_not_called()

    def test_sensitive_headers_are_dropped(self):
        app = Flask(__name__)

        with app.test_request_context('/', headers={'Authorization': 'Bearer x', 'X-Trace': '1'}):
            context = crash_reporting.request_context()

        assert 'Authorization' not in context['headers']
        assert context['headers']['X-Trace'] == '1'


class TestNewRelic:
    """Test the New Relic agent wiring with a mocked agent."""

    def test_wraps_application_and_names_transactions(self):
        app = build_app()
        original_wsgi = app.wsgi_app

        with patch.object(newrelic_apm.newrelic, 'agent') as agent:
            agent.WSGIApplicationWrapper.side_effect = lambda wsgi, **kwargs: wsgi
            NewRelic(app, config_file='newrelic.ini', environment='staging')

            response = app.test_client().get('/')

        assert response.status_code == 200
        agent.initialize.assert_called_once_with('newrelic.ini', 'staging')
        agent.register_application.assert_called_once()
        agent.WSGIApplicationWrapper.assert_called_once_with(
            original_wsgi,
            application=agent.register_application.return_value,
            framework='Flask'
        )
        agent.set_transaction_name.assert_called_once_with('/')

    def test_app_name_and_license_from_arguments(self, monkeypatch):
        monkeypatch.delenv('NEW_RELIC_APP_NAME', raising=False)
        monkeypatch.delenv('NEW_RELIC_LICENSE_KEY', raising=False)

        with patch.object(newrelic_apm.newrelic, 'agent'):
            NewRelic(app_name='flask-contrib-test', license_key='license')

            assert newrelic_apm.os.environ['NEW_RELIC_APP_NAME'] == 'flask-contrib-test'
            assert newrelic_apm.os.environ['NEW_RELIC_LICENSE_KEY'] == 'license'

        monkeypatch.delenv('NEW_RELIC_APP_NAME', raising=False)
        monkeypatch.delenv('NEW_RELIC_LICENSE_KEY', raising=False)

    def test_current_transaction(self):
        with patch.object(newrelic_apm.newrelic, 'agent') as agent:
            agent.current_transaction.return_value = Mock(name='transaction')

            assert newrelic_apm.current_transaction() is agent.current_transaction.return_value
