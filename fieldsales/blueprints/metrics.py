"""
Prometheus metrics blueprint.

Exposes /metrics with HTTP request metrics, latency of calls to the internal
API and the ERP gateway, open compose sessions and order commit outcomes.
Restrict the endpoint to the monitoring network in production.
"""
import os
import re
import time
from contextlib import contextmanager

from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share samples through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

LATENCY_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0, 30.0)

_ID_SEGMENT = re.compile(r'/\d+(?=/|$)')


def _register(metric_cls, name, documentation, labelnames=(), **kwargs):
    return metric_cls(
        name, documentation, labelnames,
        registry=None if MULTIPROCESS_MODE else registry,
        **kwargs
    )


http_requests_total = _register(
    Counter, 'http_requests_total', 'HTTP requests by endpoint and status',
    ['method', 'endpoint', 'http_status'],
)
http_request_duration_seconds = _register(
    Histogram, 'http_request_duration_seconds', 'HTTP request latency in seconds',
    ['method', 'endpoint'], buckets=LATENCY_BUCKETS,
)
http_requests_in_flight = _register(
    Gauge, 'http_requests_in_flight', 'HTTP requests being processed', multiprocess_mode='livesum',
)

# system is api or erp; ids in the path are collapsed to :id
remote_call_duration_seconds = _register(
    Histogram, 'remote_call_duration_seconds', 'Latency of outbound calls in seconds',
    ['system', 'endpoint', 'outcome'], buckets=LATENCY_BUCKETS,
)

compose_sessions_open = _register(
    Gauge, 'compose_sessions_open', 'Compose sessions held in memory', multiprocess_mode='livesum',
)

# kind is compose or warehouse; outcome is committed, rejected, partial or failed
order_commits_total = _register(
    Counter, 'sales_order_commits', 'Two-phase sales order commits by outcome',
    ['kind', 'outcome'],
)


def normalize_endpoint(endpoint: str) -> str:
    """'/sales/42/warehouse' -> '/sales/:id/warehouse'"""
    return _ID_SEGMENT.sub('/:id', endpoint)


@contextmanager
def track_remote_call(system: str, endpoint: str):
    """Time one outbound call; the outcome label is error when the block raises."""
    started = time.perf_counter()
    outcome = 'error'
    try:
        yield
        outcome = 'ok'
    finally:
        remote_call_duration_seconds.labels(
            system=system, endpoint=normalize_endpoint(endpoint), outcome=outcome
        ).observe(time.perf_counter() - started)


def setup_metrics_instrumentation(app):
    """Count and time every request handled by ``app``."""

    @app.before_request
    def start_request_timer():
        g._metrics_started = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def record_request(response):
        started = g.pop('_metrics_started', None)
        if started is None:
            return response
        endpoint = request.endpoint or 'unknown'
        try:
            http_request_duration_seconds.labels(
                method=request.method, endpoint=endpoint
            ).observe(time.perf_counter() - started)
            http_requests_total.labels(
                method=request.method, endpoint=endpoint, http_status=response.status_code
            ).inc()
        except ValueError as e:
            app.logger.warning(f"Failed to record metrics: {e}")
        finally:
            http_requests_in_flight.dec()
        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus text exposition. Not authenticated."""
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
