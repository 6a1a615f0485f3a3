# SPDX-License-Identifier: Apache-2.0

"""
AWS CloudWatch latency metrics middleware.
"""

from datetime import datetime, timezone
from flask import Flask, request, g
from typing import Any, Callable, Dict, List, Optional, Sequence
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
import boto3
import os
import time
import logging

from ..utils.request import RequestParser

logger = logging.getLogger(__name__)

PUT_METRIC_CONTEXT_KEY = 'cloudwatch_put_metric'

MetricData = List[Dict[str, Any]]


def get_put_func() -> Optional[Callable[[MetricData], None]]:
    """
    Return the put function bound to the current request.

    Handlers can call it to publish more metrics while the request is served.
    """
    return g.get(PUT_METRIC_CONTEXT_KEY)


def default_before(cw: 'CloudWatch'):
    """Default before hook: expose ``put_metric`` on the request context."""
    setattr(g, PUT_METRIC_CONTEXT_KEY, cw.put_metric)


def default_after(latency: float, cw: 'CloudWatch'):
    """Default after hook: publish the request latency in microseconds."""
    cw.put_metric([
        {
            'MetricName': cw.latency_metric_name,
            'Dimensions': [
                {'Name': 'RequestURI', 'Value': request.full_path.rstrip('?')},
                {'Name': 'RemoteAddr', 'Value': RequestParser.get_client_ip() or 'unknown'},
            ],
            'Timestamp': datetime.now(timezone.utc),
            'Unit': 'Microseconds',
            'Value': latency * 1_000_000,
        }
    ])
    g.pop(PUT_METRIC_CONTEXT_KEY, None)


class CloudWatch:
    """CloudWatch metrics middleware."""

    def __init__(
        self,
        region: Optional[str] = None,
        namespace: str = 'flask-contrib',
        app: Optional[Flask] = None,
        client: Any = None,
        latency_metric_name: str = 'Latency',
        exclude_urls: Sequence[str] = (),
        before: Optional[Callable[['CloudWatch'], None]] = None,
        after: Optional[Callable[[float, 'CloudWatch'], None]] = None
    ):
        """
        Initialize CloudWatch middleware.

        Args:
            region: AWS region, defaults to ``AWS_REGION``
            namespace: CloudWatch namespace of the metrics
            app: Flask application
            client: Pre-built boto3 CloudWatch client
            latency_metric_name: Name of the latency metric
            exclude_urls: Paths that are not measured
            before: Called before the request is served
            after: Called with the latency (seconds) after it is served
        """
        self.region = region or os.getenv('AWS_REGION', 'us-east-1')
        self.namespace = namespace
        self.client = client or boto3.client(
            'cloudwatch',
            region_name=self.region,
            config=Config(retries={'max_attempts': 5})
        )
        self.latency_metric_name = latency_metric_name
        self.exclude_urls = list(exclude_urls)
        self.before = before or default_before
        self.after = after or default_after

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.before_request(self._before_request)
        app.after_request(self._after_request)

    def is_excluded_url(self, path: str) -> bool:
        return path in self.exclude_urls

    def put_metric(self, data: MetricData):
        """Publish metric data; AWS errors are logged and never raised."""
        try:
            self.client.put_metric_data(Namespace=self.namespace, MetricData=data)
        except ClientError as e:
            logger.error(
                f"CloudWatch put_metric_data failed: {e.response.get('Error', {}).get('Code')}",
                extra={"namespace": self.namespace}
            )
        except BotoCoreError as e:
            logger.error(f"CloudWatch put_metric_data failed: {str(e)}")

    def _before_request(self):
        if self.is_excluded_url(request.path):
            return None

        g.cloudwatch_start_time = time.perf_counter()
        self.before(self)
        return None

    def _after_request(self, response):
        start = g.get('cloudwatch_start_time')
        if start is not None:
            self.after(time.perf_counter() - start, self)
        return response
