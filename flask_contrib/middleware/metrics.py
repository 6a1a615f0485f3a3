# SPDX-License-Identifier: Apache-2.0

"""
Prometheus metrics middleware.

Exposes the number of requests and their latency, partitioned by status
code, method and path.
"""

import time
import logging
from typing import Optional, Sequence

from flask import Flask, Response, request, g
from prometheus_client import (
    CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, REGISTRY, generate_latest
)

logger = logging.getLogger(__name__)

DEFAULT_BUCKETS = (0.3, 1.2, 5.0)

REQUESTS_NAME = 'http_requests_total'
LATENCY_NAME = 'http_request_duration_seconds'
LABELS = ['service', 'code', 'method', 'path']


class PrometheusMetrics:
    """
    Request counter and latency histogram for a Flask application.

    Metrics are registered on construction; constructing two instances on
    the same registry raises ``ValueError`` (duplicated timeseries).
    """

    def __init__(
        self,
        name: str,
        app: Optional[Flask] = None,
        buckets: Optional[Sequence[float]] = None,
        registry: Optional[CollectorRegistry] = None
    ):
        self.name = name
        self.registry = registry or REGISTRY

        self.requests = Counter(
            REQUESTS_NAME,
            'How many HTTP requests processed, partitioned by status code, method and HTTP path.',
            LABELS,
            registry=self.registry
        )
        self.latency = Histogram(
            LATENCY_NAME,
            'How long it took to process the request, partitioned by status code, method and HTTP path.',
            LABELS,
            buckets=tuple(buckets) if buckets else DEFAULT_BUCKETS,
            registry=self.registry
        )

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.before_request(self._start_timer)
        app.after_request(self._record)

    @staticmethod
    def _start_timer():
        g.prometheus_start_time = time.perf_counter()

    def _record(self, response):
        start = g.get('prometheus_start_time')
        if start is None:
            return response

        labels = (self.name, str(response.status_code), request.method, request.path)
        self.requests.labels(*labels).inc()
        self.latency.labels(*labels).observe(time.perf_counter() - start)
        return response

    def metrics_view(self):
        """Serve the metrics in the Prometheus exposition format."""
        return Response(generate_latest(self.registry), content_type=CONTENT_TYPE_LATEST)

    def register_endpoint(self, app: Flask, path: str = '/metrics'):
        """Expose ``metrics_view`` on the application."""
        app.add_url_rule(path, 'prometheus_metrics', self.metrics_view)
