"""
Shared Gateway merge

Many Ingresses fold into one Gateway. Listeners are keyed by name (the
transformed hostname), so applying an Ingress twice is idempotent and
removing it is a plain key deletion. The listener-sources annotation records
which hostnames every Ingress contributed, so a hostname shared by two
Ingresses survives the removal of one of them and hostnames an Ingress stops
declaring are pruned on its next pass.
"""

import copy
import logging
from typing import Callable, Dict, Hashable, Iterable, List, Optional

from kubernetes.client.rest import ApiException

from .annotations import (
    ListenerSources,
    format_listener_sources,
    merge_annotations,
    parse_listener_sources,
    remove_annotation_value,
    remove_cert_mismatch_entries,
)
from .constants import (
    GATEWAY_GROUP,
    GATEWAY_PLURAL,
    GATEWAY_VERSION,
    LISTENER_SOURCES_ANNOTATION,
    MISMATCHED_CERT_ANNOTATION,
    SOURCE_ANNOTATION,
    ingress_identity,
)
from .errors import is_not_found, wrap_api_error
from .metrics import RecordMetric, safe_record
from .ownership import can_update_resource, is_managed_by_us
from .translator import Translator

logger = logging.getLogger(__name__)


def merge_by_key(existing: Iterable[Dict], desired: Iterable[Dict], key: Callable[[Dict], Hashable]) -> List[Dict]:
    """Index existing items by key, overlay desired items, return the values"""
    merged = {key(item): item for item in existing}
    for item in desired:
        merged[key(item)] = item
    return list(merged.values())


def _listener_name(listener: Dict) -> str:
    return listener.get('name', '')


def merge_gateway_spec(existing: Dict, desired: Dict) -> None:
    """Merge the desired Gateway into the existing one in place"""
    metadata = existing.setdefault('metadata', {})
    if metadata.get('annotations') is None:
        metadata['annotations'] = {}
    merge_annotations(metadata['annotations'], desired.get('metadata', {}).get('annotations') or {})

    spec = existing.setdefault('spec', {})
    desired_spec = desired.get('spec', {})

    spec['gatewayClassName'] = desired_spec.get('gatewayClassName')

    desired_infra = desired_spec.get('infrastructure')
    if desired_infra is not None:
        if spec.get('infrastructure') is None:
            spec['infrastructure'] = {}
        if spec['infrastructure'].get('annotations') is None:
            spec['infrastructure']['annotations'] = {}
        spec['infrastructure']['annotations'].update(desired_infra.get('annotations') or {})

    spec['listeners'] = merge_by_key(
        spec.get('listeners') or [],
        desired_spec.get('listeners') or [],
        key=_listener_name,
    )


def _listener_sources(gateway: Dict) -> ListenerSources:
    annotations = gateway.get('metadata', {}).get('annotations') or {}
    return parse_listener_sources(annotations.get(LISTENER_SOURCES_ANNOTATION, ''))


def release_hostnames(gateway: Dict, hostname_mappings: Dict[str, str]) -> None:
    """
    Drop listeners and certificate-mismatch records for the given
    {original: transformed} hostnames, keeping whatever another Ingress in the
    listener-sources record still contributes.
    """
    claimed_pairs = {
        pair for mappings in _listener_sources(gateway).values() for pair in mappings.items()
    }
    claimed_names = {transformed for _, transformed in claimed_pairs}
    names_to_remove = {
        transformed for transformed in hostname_mappings.values() if transformed not in claimed_names
    }

    spec = gateway.setdefault('spec', {})
    spec['listeners'] = [
        listener for listener in spec.get('listeners') or []
        if _listener_name(listener) not in names_to_remove
    ]

    released = {
        original: transformed for original, transformed in hostname_mappings.items()
        if (original, transformed) not in claimed_pairs
    }
    annotations = gateway.get('metadata', {}).get('annotations')
    if released and annotations and MISMATCHED_CERT_ANNOTATION in annotations:
        annotations[MISMATCHED_CERT_ANNOTATION] = remove_cert_mismatch_entries(
            annotations[MISMATCHED_CERT_ANNOTATION], released)


def remove_ingress_listeners(gateway: Dict, ingress, translator: Translator) -> None:
    """
    Remove the listeners contributed by an Ingress and the matching
    certificate-mismatch records. Hostnames still served by another Ingress stay.
    """
    identity = ingress_identity(ingress.metadata.namespace, ingress.metadata.name)
    record = _listener_sources(gateway)
    # The recorded hostnames cover renames the current object no longer shows
    hostname_mappings = translator.hostname_mappings(ingress)
    hostname_mappings.update(record.pop(identity, {}))

    annotations = gateway.get('metadata', {}).get('annotations')
    if annotations and LISTENER_SOURCES_ANNOTATION in annotations:
        annotations[LISTENER_SOURCES_ANNOTATION] = format_listener_sources(record)

    release_hostnames(gateway, hostname_mappings)


def stale_hostnames(existing: Dict, desired: Dict) -> Dict[str, str]:
    """Hostnames an Ingress contributed before but no longer declares"""
    previous = _listener_sources(existing)
    stale = {}
    for identity, mappings in _listener_sources(desired).items():
        for original, transformed in previous.get(identity, {}).items():
            if mappings.get(original) != transformed:
                stale[original] = transformed
    return stale


def _get_gateway(custom_api, namespace: str, name: str) -> Dict:
    return custom_api.get_namespaced_custom_object(
        group=GATEWAY_GROUP,
        version=GATEWAY_VERSION,
        namespace=namespace,
        plural=GATEWAY_PLURAL,
        name=name,
    )


def apply_gateway(custom_api, desired: Dict, record_metric: Optional[RecordMetric] = None) -> bool:
    """
    Create the shared Gateway or merge the desired contribution into it.
    Returns False when the Gateway exists but is not managed by us.
    """
    namespace = desired['metadata']['namespace']
    name = desired['metadata']['name']

    try:
        allowed, existing = can_update_resource(
            lambda: _get_gateway(custom_api, namespace, name), 'Gateway', namespace, name)
    except ApiException as e:
        raise wrap_api_error(f"failed to get Gateway {namespace}/{name}", e) from e

    if not allowed:
        return False

    if existing is None:
        logger.info(f"Creating Gateway {namespace}/{name}")
        try:
            custom_api.create_namespaced_custom_object(
                group=GATEWAY_GROUP,
                version=GATEWAY_VERSION,
                namespace=namespace,
                plural=GATEWAY_PLURAL,
                body=desired,
            )
        except ApiException as e:
            raise wrap_api_error(f"failed to create Gateway {namespace}/{name}", e) from e
        safe_record(record_metric, 'create', namespace, name)
        return True

    merged = copy.deepcopy(existing)
    merge_gateway_spec(merged, desired)
    release_hostnames(merged, stale_hostnames(existing, desired))
    if merged == existing:
        logger.debug(f"Gateway {namespace}/{name} already up to date")
        return True

    logger.info(f"Updating Gateway {namespace}/{name}")
    try:
        # metadata.resourceVersion from the read makes this a conflict-checked write
        custom_api.replace_namespaced_custom_object(
            group=GATEWAY_GROUP,
            version=GATEWAY_VERSION,
            namespace=namespace,
            plural=GATEWAY_PLURAL,
            name=name,
            body=merged,
        )
    except ApiException as e:
        raise wrap_api_error(f"failed to update Gateway {namespace}/{name}", e) from e
    safe_record(record_metric, 'update', namespace, name)
    return True


def detach_ingress_from_gateway(
    custom_api,
    translator: Translator,
    ingress,
    record_metric: Optional[RecordMetric] = None,
) -> bool:
    """
    Remove an Ingress's listeners and source entry from the shared Gateway.
    The Gateway itself is never deleted. Returns False if nothing was changed.
    """
    namespace = translator.gateway_namespace
    name = translator.gateway_name

    try:
        gateway = _get_gateway(custom_api, namespace, name)
    except ApiException as e:
        if is_not_found(e):
            return False
        raise wrap_api_error(f"failed to get Gateway {namespace}/{name}", e) from e

    if not is_managed_by_us(gateway):
        logger.info(f"Gateway {namespace}/{name} is not managed by us, leaving listeners in place")
        return False

    updated = copy.deepcopy(gateway)
    remove_ingress_listeners(updated, ingress, translator)
    annotations = updated.get('metadata', {}).get('annotations') or {}
    if SOURCE_ANNOTATION in annotations:
        annotations[SOURCE_ANNOTATION] = remove_annotation_value(
            annotations[SOURCE_ANNOTATION],
            ingress_identity(ingress.metadata.namespace, ingress.metadata.name),
        )

    if updated == gateway:
        return False

    logger.info(
        f"Removing listeners of Ingress {ingress.metadata.namespace}/{ingress.metadata.name} "
        f"from Gateway {namespace}/{name}")
    try:
        custom_api.replace_namespaced_custom_object(
            group=GATEWAY_GROUP,
            version=GATEWAY_VERSION,
            namespace=namespace,
            plural=GATEWAY_PLURAL,
            name=name,
            body=updated,
        )
    except ApiException as e:
        raise wrap_api_error(f"failed to update Gateway {namespace}/{name}", e) from e
    safe_record(record_metric, 'update', namespace, name)
    return True
