# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the casbin authorization middleware.
"""

import base64
import casbin
from unittest.mock import Mock
from flask import Flask

from flask_contrib.middleware.authorization import (
    CasbinMiddleware, get_username, set_username
)


def basic(username, password='secret'):
    credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {'Authorization': f'Basic {credentials}'}


class TestCasbinMiddleware:
    """Test global enforcement of a RESTful policy."""

    def setup_method(self):
        """Set up test fixtures."""
        self.app = Flask(__name__)

        @self.app.route('/')
        def index():
            return 'index'

        @self.app.route('/dataset1/<item>', methods=['GET', 'POST'])
        def dataset1(item):
            return item

        @self.app.route('/dataset2/resource1', methods=['GET', 'POST', 'DELETE'])
        def dataset2():
            return 'resource1'

    def install(self, casbin_files):
        model, policy = casbin_files
        self.middleware = CasbinMiddleware(casbin.Enforcer(model, policy), self.app)
        self.client = self.app.test_client()

    def test_alice(self, casbin_files):
        self.install(casbin_files)

        assert self.client.get('/dataset1/item', headers=basic('alice')).status_code == 200
        assert self.client.post('/dataset1/item', headers=basic('alice')).status_code == 403
        assert self.client.get('/dataset2/resource1', headers=basic('alice')).status_code == 403

    def test_bob(self, casbin_files):
        self.install(casbin_files)

        assert self.client.get('/dataset2/resource1', headers=basic('bob')).status_code == 200
        assert self.client.delete('/dataset2/resource1', headers=basic('bob')).status_code == 200
        assert self.client.get('/dataset1/item', headers=basic('bob')).status_code == 403

    def test_role_inheritance(self, casbin_files):
        self.install(casbin_files)

        response = self.client.delete('/dataset2/resource1', headers=basic('cathrin'))

        assert response.status_code == 200

    def test_denied_response_is_problem(self, casbin_files):
        self.install(casbin_files)

        response = self.client.get('/')

        assert response.status_code == 403
        assert response.mimetype == "application/problem+json"
        body = response.get_json()
        assert body["title"] == "Forbidden"
        assert body["type"].endswith("/insufficient-permissions")
        assert body["detail"] == "Access to this resource is denied"

    def test_anonymous_basic_user(self, casbin_files):
        self.install(casbin_files)

        assert self.client.get('/', headers=basic('anonymous')).status_code == 200


class TestCasbinOptions:
    """Test username resolution, decorators and failures."""

    def test_set_username_overrides_basic_auth(self, casbin_files):
        model, policy = casbin_files
        app = Flask(__name__)

        @app.before_request
        def identify():
            set_username('alice')

        CasbinMiddleware(casbin.Enforcer(model, policy), app)

        @app.route('/dataset1/<item>')
        def dataset1(item):
            return get_username()

        response = app.test_client().get('/dataset1/x', headers=basic('bob'))

        assert response.status_code == 200
        assert response.data == b'alice'

    def test_get_username_without_credentials(self):
        app = Flask(__name__)

        with app.test_request_context('/'):
            assert get_username() == ''

    def test_protect_decorator(self, casbin_files):
        model, policy = casbin_files
        app = Flask(__name__)
        middleware = CasbinMiddleware(casbin.Enforcer(model, policy))

        @app.route('/dataset2/resource1')
        @middleware.protect
        def protected():
            return 'protected'

        @app.route('/public')
        def public():
            return 'public'

        client = app.test_client()

        assert client.get('/dataset2/resource1').status_code == 403
        assert client.get('/dataset2/resource1', headers=basic('bob')).status_code == 200
        assert client.get('/public').status_code == 200

    def test_enforcer_error_denies(self):
        enforcer = Mock()
        enforcer.enforce.side_effect = RuntimeError("adapter failure")
        app = Flask(__name__)
        CasbinMiddleware(enforcer, app)

        @app.route('/')
        def index():
            return 'index'

        assert app.test_client().get('/').status_code == 403

    def test_custom_error_handler(self):
        enforcer = Mock()
        enforcer.enforce.return_value = False
        app = Flask(__name__)
        CasbinMiddleware(enforcer, app, error_handler=lambda: ("go away", 401))

        @app.route('/')
        def index():
            return 'index'

        response = app.test_client().get('/', headers=basic('alice'))

        assert response.status_code == 401
        assert response.data == b'go away'
        enforcer.enforce.assert_called_once_with('alice', '/', 'GET')
