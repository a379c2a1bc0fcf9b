"""
Ownership guard
An object is ours only if it carries our managed-by annotation. Anything else
sharing a name with one of our objects is left untouched.
"""

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from kubernetes.client.rest import ApiException

from .constants import (
    MANAGED_BY_ANNOTATION,
    MANAGED_BY_VALUE,
    SOURCE_ANNOTATION,
    ingress_identity,
)
from .errors import is_not_found

logger = logging.getLogger(__name__)


def get_annotations(obj) -> Dict[str, str]:
    """Return annotations of a typed Kubernetes model or a custom object dict"""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj.get('metadata', {}).get('annotations') or {}
    metadata = getattr(obj, 'metadata', None)
    if metadata is None:
        return {}
    return metadata.annotations or {}


def is_managed_by_us(obj) -> bool:
    return get_annotations(obj).get(MANAGED_BY_ANNOTATION) == MANAGED_BY_VALUE


def is_managed_by_us_for_ingress(obj, namespace: str, name: str) -> bool:
    """True if the object is ours and was derived from exactly this Ingress"""
    if not is_managed_by_us(obj):
        return False
    return get_annotations(obj).get(SOURCE_ANNOTATION, '').strip() == ingress_identity(namespace, name)


def is_managed_by_us_with_ingress(obj, namespace: str, name: str) -> bool:
    """True if the object is ours and this Ingress is one of its contributors"""
    if not is_managed_by_us(obj):
        return False
    sources = get_annotations(obj).get(SOURCE_ANNOTATION, '')
    identity = ingress_identity(namespace, name)
    return any(token.strip() == identity for token in sources.split(','))


def can_update_resource(
    getter: Callable[[], Any],
    kind: str,
    namespace: str,
    name: str,
) -> Tuple[bool, Optional[Any]]:
    """
    Check whether we may create or update a resource.
    Returns (allowed, existing). A missing resource may be created, an existing
    one only when it is managed by us. Errors other than not-found propagate.
    """
    try:
        existing = getter()
    except ApiException as e:
        if is_not_found(e):
            return True, None
        raise

    if not is_managed_by_us(existing):
        logger.info(f"{kind} {namespace}/{name} exists but is not managed by us, skipping")
        return False, existing

    return True, existing
