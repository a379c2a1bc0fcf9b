"""Error taxonomy for store interactions"""

from kubernetes.client.rest import ApiException


class ReconcileError(Exception):
    """A store operation failed; fatal to the current pass only"""


class ConflictError(ReconcileError):
    """A write was rejected because the object changed underneath us; retry the whole pass"""


def is_not_found(exc):
    return isinstance(exc, ApiException) and exc.status == 404


def is_conflict(exc):
    return isinstance(exc, ApiException) and exc.status == 409


def wrap_api_error(message, exc):
    """Wrap an ApiException with operation context, keeping conflicts retryable"""
    if is_conflict(exc):
        return ConflictError(f"{message}: {exc.reason}")
    return ReconcileError(f"{message}: {exc}")
