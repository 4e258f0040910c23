"""
Prometheus metrics for the tenant lifecycle service.

HTTP traffic is labelled by route and by whether the caller acted inside a
tenant; the lifecycle counters (cache outcomes, provisioning, application
transitions, dropped audit entries) are incremented by the services.
/metrics and /health are not instrumented. Restrict /metrics to the
monitoring network.
"""
from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY
import time
import os

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share metrics through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
    _metric_registry = None
else:
    registry = REGISTRY
    _metric_registry = REGISTRY

UNINSTRUMENTED_PATHS = ('/metrics', '/health')

# HTTP
http_requests_total = Counter(
    'http_requests_total',
    'API requests by route, method, status and tenant scope',
    ['method', 'endpoint', 'http_status', 'tenant_scoped'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'API request latency in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

# Tenant lifecycle
cache_requests_total = Counter(
    'tenant_cache_requests_total',
    'Tenant metadata cache lookups by result (hit, miss, degraded)',
    ['result'],
    registry=_metric_registry
)

tenants_provisioned_total = Counter(
    'tenants_provisioned_total',
    'Tenants provisioned, by plan',
    ['plan'],
    registry=_metric_registry
)

application_transitions_total = Counter(
    'farm_application_transitions_total',
    'Farm application status changes, by target status',
    ['status'],
    registry=_metric_registry
)

audit_write_failures_total = Counter(
    'audit_write_failures_total',
    'Audit entries dropped because the write failed',
    registry=_metric_registry
)


def setup_metrics_instrumentation(app):
    """Time every API request and count it once the response is ready."""

    @app.before_request
    def start_request_timer():
        if request.path not in UNINSTRUMENTED_PATHS:
            g._request_started_at = time.perf_counter()

    @app.after_request
    def record_request(response):
        started_at = g.pop('_request_started_at', None)
        if started_at is None:
            return response
        # 'applications.submit', 'admin.review', ... or 'unknown' for 404s
        endpoint = request.endpoint or 'unknown'
        try:
            http_request_duration_seconds.labels(
                method=request.method, endpoint=endpoint
            ).observe(time.perf_counter() - started_at)
            http_requests_total.labels(
                method=request.method,
                endpoint=endpoint,
                http_status=response.status_code,
                tenant_scoped='yes' if g.get('tenant_id') else 'no',
            ).inc()
        except ValueError as e:
            app.logger.warning(f"Failed to record metrics: {e}")
        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus exposition of every metric above (all workers in multiprocess mode)."""
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
