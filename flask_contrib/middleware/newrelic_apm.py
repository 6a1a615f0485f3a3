# SPDX-License-Identifier: Apache-2.0

"""
New Relic APM middleware.

Starts the Python agent, wraps the WSGI application so each request is a
web transaction and names the transaction after the request path.
"""

from flask import Flask, request
from typing import Optional
import os
import logging

import newrelic.agent

logger = logging.getLogger(__name__)


class NewRelic:
    """New Relic transaction middleware."""

    def __init__(
        self,
        app: Optional[Flask] = None,
        config_file: Optional[str] = None,
        environment: Optional[str] = None,
        app_name: Optional[str] = None,
        license_key: Optional[str] = None
    ):
        """
        Initialize the New Relic agent.

        Args:
            app: Flask application
            config_file: Agent ini file, defaults to ``NEW_RELIC_CONFIG_FILE``
            environment: Section of the ini file, defaults to ``NEW_RELIC_ENVIRONMENT``
            app_name: Application name when no config file is used
            license_key: License key when no config file is used
        """
        self.config_file = config_file or os.getenv('NEW_RELIC_CONFIG_FILE')
        self.environment = environment or os.getenv('NEW_RELIC_ENVIRONMENT')

        # The agent reads these when no config file provides them
        if app_name:
            os.environ.setdefault('NEW_RELIC_APP_NAME', app_name)
        if license_key:
            os.environ.setdefault('NEW_RELIC_LICENSE_KEY', license_key)

        newrelic.agent.initialize(self.config_file, self.environment)
        self.application = newrelic.agent.register_application()

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        """Wrap the WSGI app and name transactions by path."""
        app.wsgi_app = newrelic.agent.WSGIApplicationWrapper(
            app.wsgi_app,
            application=self.application,
            framework='Flask'
        )
        app.before_request(self._name_transaction)
        logger.info(
            "New Relic agent attached",
            extra={"config_file": self.config_file, "environment": self.environment}
        )

    @staticmethod
    def _name_transaction():
        newrelic.agent.set_transaction_name(request.path)
        return None


def current_transaction():
    """Return the agent transaction of the current request, if any."""
    return newrelic.agent.current_transaction()
