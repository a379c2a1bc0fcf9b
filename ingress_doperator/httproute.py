"""
Objects derived per Ingress: HTTPRoutes and the automatic SnippetsFilter

HTTPRoutes derived from an Ingress are named with the Ingress name as prefix
and carry the Ingress identity in the source annotation.
"""

import logging
from typing import Dict, List, Optional, Tuple

from kubernetes.client.rest import ApiException

from .constants import (
    GATEWAY_GROUP,
    GATEWAY_PLURAL,
    GATEWAY_VERSION,
    HTTPROUTE_PLURAL,
    NGINX_GATEWAY_GROUP,
    SNIPPETS_FILTER_CRD_NAME,
    SNIPPETS_FILTER_PLURAL,
    automatic_snippets_filter_name,
)
from .errors import is_not_found, wrap_api_error
from .metrics import RecordMetric, safe_record
from .ownership import is_managed_by_us, is_managed_by_us_for_ingress, is_managed_by_us_with_ingress

logger = logging.getLogger(__name__)


def get_httproutes_with_prefix(custom_api, namespace: str, prefix: str) -> List[Dict]:
    try:
        result = custom_api.list_namespaced_custom_object(
            group=GATEWAY_GROUP,
            version=GATEWAY_VERSION,
            namespace=namespace,
            plural=HTTPROUTE_PLURAL,
        )
    except ApiException as e:
        if is_not_found(e):
            return []
        raise wrap_api_error(f"failed to list HTTPRoutes in namespace {namespace}", e) from e

    return [
        route for route in result.get('items', [])
        if route.get('metadata', {}).get('name', '').startswith(prefix)
    ]


def get_managed_httproutes(custom_api, ingress) -> List[Dict]:
    namespace = ingress.metadata.namespace
    name = ingress.metadata.name
    return [
        route for route in get_httproutes_with_prefix(custom_api, namespace, name)
        if is_managed_by_us_for_ingress(route, namespace, name)
    ]


def remove_managed_httproutes(custom_api, ingress, record_metric: Optional[RecordMetric] = None) -> int:
    """Delete the HTTPRoutes we derived from this Ingress; returns how many were deleted"""
    namespace = ingress.metadata.namespace
    deleted = 0
    for route in get_managed_httproutes(custom_api, ingress):
        route_name = route['metadata']['name']
        logger.info(f"Deleting HTTPRoute {namespace}/{route_name}")
        try:
            custom_api.delete_namespaced_custom_object(
                group=GATEWAY_GROUP,
                version=GATEWAY_VERSION,
                namespace=namespace,
                plural=HTTPROUTE_PLURAL,
                name=route_name,
            )
        except ApiException as e:
            if is_not_found(e):
                continue
            raise wrap_api_error(f"failed to delete HTTPRoute {namespace}/{route_name}", e) from e
        safe_record(record_metric, 'delete', namespace, route_name)
        deleted += 1
    return deleted


def has_managed_resources(custom_api, ingress) -> Tuple[bool, bool]:
    """
    Return (has_route, has_gateway): whether we own at least one HTTPRoute
    derived from the Ingress and a Gateway listing it as a source.
    """
    has_route = bool(get_managed_httproutes(custom_api, ingress))

    try:
        gateways = custom_api.list_cluster_custom_object(
            group=GATEWAY_GROUP,
            version=GATEWAY_VERSION,
            plural=GATEWAY_PLURAL,
        )
    except ApiException as e:
        raise wrap_api_error("failed to list Gateways", e) from e

    namespace = ingress.metadata.namespace
    name = ingress.metadata.name
    for gateway in gateways.get('items', []):
        if is_managed_by_us_with_ingress(gateway, namespace, name):
            return has_route, True
    return has_route, False


def get_crd_version(apiextensions_v1, crd_name: str) -> Tuple[str, bool]:
    """
    Return (version, found) for the served storage version of a CRD.
    A missing CRD is not an error.
    """
    try:
        crd = apiextensions_v1.read_custom_resource_definition(name=crd_name)
    except ApiException as e:
        if is_not_found(e):
            return '', False
        raise wrap_api_error(f"failed to read CustomResourceDefinition {crd_name}", e) from e

    served = [version for version in crd.spec.versions or [] if version.served]
    for version in served:
        if version.storage:
            return version.name, True
    if served:
        return served[0].name, True
    return '', False


def remove_automatic_snippets_filter(custom_api, apiextensions_v1, ingress) -> bool:
    """Delete the SnippetsFilter generated for the Ingress if we own it"""
    namespace = ingress.metadata.namespace
    filter_name = automatic_snippets_filter_name(ingress.metadata.name)

    version, found = get_crd_version(apiextensions_v1, SNIPPETS_FILTER_CRD_NAME)
    if not found:
        return False

    try:
        snippets_filter = custom_api.get_namespaced_custom_object(
            group=NGINX_GATEWAY_GROUP,
            version=version,
            namespace=namespace,
            plural=SNIPPETS_FILTER_PLURAL,
            name=filter_name,
        )
    except ApiException as e:
        if is_not_found(e):
            return False
        raise wrap_api_error(f"failed to get SnippetsFilter {namespace}/{filter_name}", e) from e

    if not is_managed_by_us(snippets_filter):
        return False

    logger.info(f"Deleting SnippetsFilter {namespace}/{filter_name}")
    try:
        custom_api.delete_namespaced_custom_object(
            group=NGINX_GATEWAY_GROUP,
            version=version,
            namespace=namespace,
            plural=SNIPPETS_FILTER_PLURAL,
            name=filter_name,
        )
    except ApiException as e:
        if is_not_found(e):
            return False
        raise wrap_api_error(f"failed to delete SnippetsFilter {namespace}/{filter_name}", e) from e
    return True
