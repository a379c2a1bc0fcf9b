"""
ReferenceGrant lifecycle
A grant exists in every namespace with at least one TLS Ingress so the shared
Gateway may reference the TLS secrets there. It is removed once the last such
Ingress is gone, but only if we created it.
"""

import logging
from typing import Iterable, Optional

from kubernetes.client.rest import ApiException

from .constants import (
    GATEWAY_GROUP,
    REFERENCE_GRANT_NAME,
    REFERENCE_GRANT_PLURAL,
    REFERENCE_GRANT_VERSION,
)
from .errors import ReconcileError, is_not_found, wrap_api_error
from .metrics import RecordMetric, safe_record
from .ownership import is_managed_by_us
from .translator import Translator

logger = logging.getLogger(__name__)


def _get_reference_grant(custom_api, namespace: str):
    """Return the ReferenceGrant in the namespace, or None if it does not exist"""
    try:
        return custom_api.get_namespaced_custom_object(
            group=GATEWAY_GROUP,
            version=REFERENCE_GRANT_VERSION,
            namespace=namespace,
            plural=REFERENCE_GRANT_PLURAL,
            name=REFERENCE_GRANT_NAME,
        )
    except ApiException as e:
        if is_not_found(e):
            return None
        raise wrap_api_error(f"failed to get ReferenceGrant {namespace}/{REFERENCE_GRANT_NAME}", e) from e


def ensure_reference_grants(
    custom_api,
    translator: Translator,
    ingresses: Iterable,
    record_metric: Optional[RecordMetric] = None,
) -> None:
    """Create or update a ReferenceGrant in every namespace holding a TLS Ingress"""
    for namespace in translator.get_namespaces_with_tls(ingresses):
        try:
            apply_reference_grant(custom_api, translator, namespace, record_metric)
        except ReconcileError as e:
            logger.error(f"Failed to apply ReferenceGrant in namespace {namespace}: {e}")
            raise


def apply_reference_grant(
    custom_api,
    translator: Translator,
    namespace: str,
    record_metric: Optional[RecordMetric] = None,
) -> None:
    """Create or update the ReferenceGrant in a namespace, never touching foreign grants"""
    desired = translator.create_reference_grant(namespace)
    existing = _get_reference_grant(custom_api, namespace)

    if existing is None:
        logger.info(f"Creating ReferenceGrant {namespace}/{REFERENCE_GRANT_NAME}")
        try:
            custom_api.create_namespaced_custom_object(
                group=GATEWAY_GROUP,
                version=REFERENCE_GRANT_VERSION,
                namespace=namespace,
                plural=REFERENCE_GRANT_PLURAL,
                body=desired,
            )
        except ApiException as e:
            raise wrap_api_error(f"failed to create ReferenceGrant {namespace}/{REFERENCE_GRANT_NAME}", e) from e
        safe_record(record_metric, 'create', namespace, REFERENCE_GRANT_NAME)
        return

    if not is_managed_by_us(existing):
        logger.info(f"ReferenceGrant {namespace}/{REFERENCE_GRANT_NAME} exists but is not managed by us, skipping")
        return

    existing['spec'] = desired['spec']
    logger.info(f"Updating ReferenceGrant {namespace}/{REFERENCE_GRANT_NAME}")
    try:
        custom_api.replace_namespaced_custom_object(
            group=GATEWAY_GROUP,
            version=REFERENCE_GRANT_VERSION,
            namespace=namespace,
            plural=REFERENCE_GRANT_PLURAL,
            name=REFERENCE_GRANT_NAME,
            body=existing,
        )
    except ApiException as e:
        raise wrap_api_error(f"failed to update ReferenceGrant {namespace}/{REFERENCE_GRANT_NAME}", e) from e
    safe_record(record_metric, 'update', namespace, REFERENCE_GRANT_NAME)


def cleanup_reference_grant_if_needed(
    networking_v1,
    custom_api,
    namespace: str,
    record_metric: Optional[RecordMetric] = None,
) -> None:
    """Delete our ReferenceGrant once no Ingress with TLS remains in the namespace"""
    try:
        ingresses = networking_v1.list_namespaced_ingress(namespace=namespace)
    except ApiException as e:
        raise wrap_api_error(f"failed to list Ingresses in namespace {namespace}", e) from e

    for ingress in ingresses.items:
        if ingress.spec is not None and ingress.spec.tls:
            logger.debug(f"ReferenceGrant in {namespace} still needed by Ingress {ingress.metadata.name}")
            return

    existing = _get_reference_grant(custom_api, namespace)
    if existing is None:
        return

    if not is_managed_by_us(existing):
        logger.info(
            f"ReferenceGrant {namespace}/{REFERENCE_GRANT_NAME} exists but is not managed by us, skipping deletion")
        return

    logger.info(f"Deleting ReferenceGrant {namespace}/{REFERENCE_GRANT_NAME} (no Ingresses with TLS remain)")
    try:
        custom_api.delete_namespaced_custom_object(
            group=GATEWAY_GROUP,
            version=REFERENCE_GRANT_VERSION,
            namespace=namespace,
            plural=REFERENCE_GRANT_PLURAL,
            name=REFERENCE_GRANT_NAME,
        )
    except ApiException as e:
        if is_not_found(e):
            return
        raise wrap_api_error(f"failed to delete ReferenceGrant {namespace}/{REFERENCE_GRANT_NAME}", e) from e
    safe_record(record_metric, 'delete', namespace, REFERENCE_GRANT_NAME)
