"""
Prometheus counters for objects written by the operator

The core only sees plain recorder callbacks of the form
record(operation, namespace, name); the functions below are those callbacks.
"""

import logging
from typing import Callable, Optional

from prometheus_client import Counter

logger = logging.getLogger(__name__)

RecordMetric = Callable[[str, str, str], None]

GATEWAY_RESOURCES_TOTAL = Counter(
    'ingress_operator_gateway_resources_total',
    'Total number of Gateway resources created or updated by the ingress operator',
    ['operation', 'namespace', 'name'],
)

HTTPROUTE_RESOURCES_TOTAL = Counter(
    'ingress_operator_httproute_resources_total',
    'Total number of HTTPRoute resources created, updated or deleted by the ingress operator',
    ['operation', 'namespace', 'name'],
)

REFERENCE_GRANT_RESOURCES_TOTAL = Counter(
    'ingress_operator_referencegrant_resources_total',
    'Total number of ReferenceGrant resources created, updated or deleted by the ingress operator',
    ['operation', 'namespace', 'name'],
)

RECONCILE_SKIPS_TOTAL = Counter(
    'ingress_operator_reconcile_skips_total',
    'Total number of ingress reconciles skipped',
    ['reason', 'namespace', 'name'],
)


def record_gateway(operation: str, namespace: str, name: str) -> None:
    GATEWAY_RESOURCES_TOTAL.labels(operation, namespace, name).inc()


def record_httproute(operation: str, namespace: str, name: str) -> None:
    HTTPROUTE_RESOURCES_TOTAL.labels(operation, namespace, name).inc()


def record_reference_grant(operation: str, namespace: str, name: str) -> None:
    REFERENCE_GRANT_RESOURCES_TOTAL.labels(operation, namespace, name).inc()


def record_reconcile_skip(reason: str, namespace: str, name: str) -> None:
    RECONCILE_SKIPS_TOTAL.labels(reason, namespace, name).inc()


def safe_record(record_metric: Optional[RecordMetric], operation: str, namespace: str, name: str) -> None:
    """Invoke a recorder callback; metrics never fail a reconciliation"""
    if record_metric is None:
        return
    try:
        record_metric(operation, namespace, name)
    except Exception as e:
        logger.warning(f"Failed to record metric {operation} for {namespace}/{name}: {e}")
