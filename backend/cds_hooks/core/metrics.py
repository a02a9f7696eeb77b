"""
Prometheus metrics configuration
"""
import os

from prometheus_client import (CONTENT_TYPE_LATEST, Counter, Gauge, Histogram,
                               Info, generate_latest)
from prometheus_client.multiprocess import MultiProcessCollector
from prometheus_client.registry import REGISTRY

from cds_hooks import __version__
from cds_hooks.core.config import get_settings

# Check if we're in multiprocess mode
if os.environ.get('PROMETHEUS_MULTIPROC_DIR'):
    MultiProcessCollector(REGISTRY)

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint', 'status_code'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

http_errors_total = Counter(
    'http_errors_total',
    'Total number of HTTP errors',
    ['method', 'endpoint', 'status_code', 'error_type']
)

# ============================================================================
# CDS Hooks Metrics
# ============================================================================

cds_hook_firings_total = Counter(
    'cds_hook_firings_total',
    'Hook firings by outcome (fired, deduplicated, skipped, stale, error)',
    ['hook_type', 'outcome']
)

cds_service_requests_total = Counter(
    'cds_service_requests_total',
    'Per-service hook executions by outcome (success, cached, failure, timeout)',
    ['service_id', 'outcome']
)

cds_service_request_duration_seconds = Histogram(
    'cds_service_request_duration_seconds',
    'Per-service hook execution duration in seconds',
    ['service_id'],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

cds_discovery_requests_total = Counter(
    'cds_discovery_requests_total',
    'Service discovery lookups by outcome (success, cached, failure)',
    ['outcome']
)

cds_feedback_total = Counter(
    'cds_feedback_total',
    'Card feedback submissions by outcome (sent, skipped, failure)',
    ['outcome']
)

cds_active_alerts = Gauge(
    'cds_active_alerts',
    'Cards currently published per hook type',
    ['hook_type']
)

# ============================================================================
# System Info
# ============================================================================

app_info = Info(
    'app_info',
    'Application information'
)

_settings = get_settings()
app_info.info({
    'app_name': _settings.app_name,
    'app_env': _settings.app_env,
    'version': __version__
})

# ============================================================================
# Helper Functions
# ============================================================================

def get_metrics():
    """
    Get Prometheus metrics in text format

    Returns:
        bytes: Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def get_metrics_content_type():
    """
    Get content type for Prometheus metrics

    Returns:
        str: Content type for metrics endpoint
    """
    return CONTENT_TYPE_LATEST
