# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.
"""

import os
import pytest
from flask import Flask, jsonify

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ.pop('CORS_ALLOWED_ORIGINS', None)
os.environ.pop('RATE_LIMIT_STORAGE_URI', None)
os.environ.pop('REDIS_URL', None)
os.environ.pop('DATABASE_URL', None)


@pytest.fixture
def app():
    """Bare Flask application with a couple of routes."""
    app = Flask(__name__)
    app.config['TESTING'] = True

    @app.route('/', methods=['GET', 'POST', 'PUT', 'DELETE'])
    def index():
        return 'hello'

    @app.route('/json')
    def json_route():
        return jsonify({"ok": True})

    return app


@pytest.fixture
def casbin_files(tmp_path):
    """Write a RESTful casbin model and policy; returns (model path, policy path)."""
    model = tmp_path / "model.conf"
    model.write_text(
        "[request_definition]\n"
        "r = sub, obj, act\n"
        "\n"
        "[policy_definition]\n"
        "p = sub, obj, act\n"
        "\n"
        "[role_definition]\n"
        "g = _, _\n"
        "\n"
        "[policy_effect]\n"
        "e = some(where (p.eft == allow))\n"
        "\n"
        "[matchers]\n"
        "m = g(r.sub, p.sub) && keyMatch(r.obj, p.obj) && "
        "(r.act == p.act || p.act == \"*\")\n"
    )

    policy = tmp_path / "policy.csv"
    policy.write_text(
        "p, admin, /*, *\n"
        "p, anonymous, /, GET\n"
        "p, alice, /dataset1/*, GET\n"
        "p, bob, /dataset2/resource1, *\n"
        "g, cathrin, admin\n"
    )

    return str(model), str(policy)


@pytest.fixture
def locales_dir(tmp_path):
    """Translation catalogs for en-US (YAML), el-GR (YAML) and zh-CN (JSON)."""
    directory = tmp_path / "locales"
    directory.mkdir()

    (directory / "active.en-US.yaml").write_text(
        "hi: \"hi {{.Name}}\"\n"
        "menu:\n"
        "  home: Home\n"
        "items:\n"
        "  one: \"{{.PluralCount}} item\"\n"
        "  other: \"{{.PluralCount}} items\"\n"
        "only_default: Only in English\n",
        encoding='utf-8'
    )
    (directory / "active.el-GR.yaml").write_text(
        "hi: \"γεια σου {{.Name}}\"\n"
        "menu:\n"
        "  home: Αρχική\n",
        encoding='utf-8'
    )
    (directory / "active.zh-CN.json").write_text(
        '{"hi": "您好 {{.Name}}"}',
        encoding='utf-8'
    )

    return directory


@pytest.fixture
def secret_key():
    return "a-test-secret-that-is-at-least-32-bytes-long"
