#!/usr/bin/env python3
"""
Ingress Re-enabler
Undoes the operator's overrides on disabled Ingresses: restores the original
ingress class and external-dns annotations, optionally removes derived
resources, or (with an explicit flag) deletes Ingresses that are fully
served by Gateway API resources we own.
"""

import argparse
import copy
import logging
import sys
from typing import Dict, Optional, Tuple

from kubernetes.client.rest import ApiException

from .config import KubeClients, setup_logging
from .constants import (
    DISABLED_INGRESS_CLASS_NAME,
    EXTERNAL_DNS_HOSTNAME_ANNOTATION,
    EXTERNAL_DNS_INGRESS_HOSTNAME_SOURCE,
    INGRESS_CLASS_ANNOTATION,
    INGRESS_DISABLED_ANNOTATION,
    INGRESS_DISABLED_REASON_EXTERNAL_DNS,
    INGRESS_DISABLED_REASON_NORMAL,
    ORIGINAL_EXTERNAL_DNS_HOSTNAME,
    ORIGINAL_EXTERNAL_DNS_INGRESS_HOSTNAME_SOURCE,
    ORIGINAL_INGRESS_CLASS_ANNOTATION,
    ORIGINAL_INGRESS_CLASS_NAME_ANNOTATION,
)
from .errors import ReconcileError, wrap_api_error
from .httproute import has_managed_resources, remove_automatic_snippets_filter, remove_managed_httproutes
from .metrics import record_httproute

logger = logging.getLogger(__name__)


def _annotations(ingress) -> Dict[str, str]:
    if ingress is None or ingress.metadata is None:
        return {}
    return ingress.metadata.annotations or {}


def is_disabled_ingress(ingress) -> bool:
    """An Ingress is disabled when its class points at the disabled class or it carries our disabled marker"""
    if ingress is None:
        return False
    annotations = _annotations(ingress)
    if annotations.get(INGRESS_DISABLED_ANNOTATION):
        return True
    if ingress.spec is not None and ingress.spec.ingress_class_name == DISABLED_INGRESS_CLASS_NAME:
        return True
    return annotations.get(INGRESS_CLASS_ANNOTATION) == DISABLED_INGRESS_CLASS_NAME


def needs_external_dns_restore(ingress) -> bool:
    annotations = _annotations(ingress)
    return (
        ORIGINAL_EXTERNAL_DNS_HOSTNAME in annotations
        or ORIGINAL_EXTERNAL_DNS_INGRESS_HOSTNAME_SOURCE in annotations
        or EXTERNAL_DNS_INGRESS_HOSTNAME_SOURCE in annotations
    )


def _restore_annotation(annotations: Dict[str, str], shadow_key: str, live_key: str) -> bool:
    """
    Move a shadow annotation back to its live key. An empty shadow value means
    the live annotation was unset before we touched it.
    """
    if shadow_key not in annotations:
        return False
    original = annotations.pop(shadow_key)
    if original:
        annotations[live_key] = original
    else:
        annotations.pop(live_key, None)
    return True


def _class_overridden(ingress, annotations: Dict[str, str]) -> bool:
    if ORIGINAL_INGRESS_CLASS_NAME_ANNOTATION in annotations or ORIGINAL_INGRESS_CLASS_ANNOTATION in annotations:
        return True
    if ingress.spec is not None and ingress.spec.ingress_class_name == DISABLED_INGRESS_CLASS_NAME:
        return True
    return annotations.get(INGRESS_CLASS_ANNOTATION) == DISABLED_INGRESS_CLASS_NAME


def restore_ingress_state(networking_v1, ingress, restore_class: bool, restore_hostname: bool) -> bool:
    """
    Restore the requested dimensions of an Ingress from its shadow annotations.
    Returns True if the Ingress was written.
    """
    if ingress is None:
        return False

    updated = copy.deepcopy(ingress)
    annotations = dict(updated.metadata.annotations or {})
    original_class_name = updated.spec.ingress_class_name if updated.spec is not None else None
    original_annotations = dict(annotations)

    if restore_class and _class_overridden(updated, annotations):
        # A missing shadow is treated like an empty one: the class was unset
        class_name = annotations.pop(ORIGINAL_INGRESS_CLASS_NAME_ANNOTATION, '')
        class_annotation = annotations.pop(ORIGINAL_INGRESS_CLASS_ANNOTATION, '')

        if updated.spec is not None:
            updated.spec.ingress_class_name = class_name or None

        if class_annotation:
            annotations[INGRESS_CLASS_ANNOTATION] = class_annotation
        else:
            annotations.pop(INGRESS_CLASS_ANNOTATION, None)

    if restore_class and annotations.get(INGRESS_DISABLED_ANNOTATION) != INGRESS_DISABLED_REASON_EXTERNAL_DNS:
        annotations.pop(INGRESS_DISABLED_ANNOTATION, None)

    if restore_hostname:
        _restore_annotation(annotations, ORIGINAL_EXTERNAL_DNS_HOSTNAME, EXTERNAL_DNS_HOSTNAME_ANNOTATION)
        if not _restore_annotation(
                annotations, ORIGINAL_EXTERNAL_DNS_INGRESS_HOSTNAME_SOURCE, EXTERNAL_DNS_INGRESS_HOSTNAME_SOURCE):
            # The source marker is ours when no original was recorded
            annotations.pop(EXTERNAL_DNS_INGRESS_HOSTNAME_SOURCE, None)
        if annotations.get(INGRESS_DISABLED_ANNOTATION) == INGRESS_DISABLED_REASON_EXTERNAL_DNS:
            annotations.pop(INGRESS_DISABLED_ANNOTATION)

    new_class_name = updated.spec.ingress_class_name if updated.spec is not None else None
    if annotations == original_annotations and new_class_name == original_class_name:
        return False

    updated.metadata.annotations = annotations
    namespace = updated.metadata.namespace
    name = updated.metadata.name
    try:
        networking_v1.replace_namespaced_ingress(name=name, namespace=namespace, body=updated)
    except ApiException as e:
        raise wrap_api_error(f"failed to update Ingress {namespace}/{name}", e) from e
    return True


def should_delete_ingress(ingress) -> bool:
    """True only for Ingresses we disabled for a known reason and actually mutated"""
    annotations = _annotations(ingress)
    reason = annotations.get(INGRESS_DISABLED_ANNOTATION, '')

    if reason == INGRESS_DISABLED_REASON_NORMAL:
        return is_disabled_ingress(ingress)

    if reason == INGRESS_DISABLED_REASON_EXTERNAL_DNS:
        if not annotations.get(EXTERNAL_DNS_INGRESS_HOSTNAME_SOURCE):
            return False
        return (
            ORIGINAL_EXTERNAL_DNS_HOSTNAME in annotations
            or ORIGINAL_EXTERNAL_DNS_INGRESS_HOSTNAME_SOURCE in annotations
        )

    return False


def check_delete_eligibility(custom_api, ingress) -> Tuple[bool, str]:
    """
    Decide whether an Ingress may be deleted. Returns (eligible, reason); the
    reason explains every refusal. Store failures propagate.
    """
    if ingress is None:
        return False, 'missing ingress'
    if not _annotations(ingress).get(INGRESS_DISABLED_ANNOTATION):
        return False, 'missing ingress-doperator disabled annotation'
    if not should_delete_ingress(ingress):
        return False, 'disabled annotation does not satisfy delete criteria'

    has_route, has_gateway = has_managed_resources(custom_api, ingress)
    if not has_route and not has_gateway:
        return False, 'missing managed HTTPRoute and Gateway'
    if not has_route:
        return False, 'missing managed HTTPRoute'
    if not has_gateway:
        return False, 'missing managed Gateway'
    return True, ''


def _list_ingresses(networking_v1, namespace: Optional[str]):
    try:
        if namespace:
            return networking_v1.list_namespaced_ingress(namespace=namespace).items
        return networking_v1.list_ingress_for_all_namespaces().items
    except ApiException as e:
        raise wrap_api_error('failed to list Ingresses', e) from e


def _delete_ingress(networking_v1, custom_api, ingress) -> None:
    namespace = ingress.metadata.namespace
    name = ingress.metadata.name
    try:
        eligible, reason = check_delete_eligibility(custom_api, ingress)
    except ReconcileError as e:
        logger.error(f"Failed to verify managed resources for Ingress {namespace}/{name}: {e}")
        return
    if not eligible:
        logger.info(f"Skipping deletion of Ingress {namespace}/{name}: {reason}")
        return

    try:
        networking_v1.delete_namespaced_ingress(name=name, namespace=namespace)
    except ApiException as e:
        logger.error(f"Failed to delete Ingress {namespace}/{name}: {e}")
        return
    logger.info(f"Deleted disabled Ingress {namespace}/{name}")


def run_reenabler(
    clients: KubeClients,
    namespace: Optional[str] = None,
    remove_derived_resources: bool = False,
    restore_class: bool = True,
    restore_external_dns: bool = True,
    dangerously_delete_ingresses: bool = False,
) -> None:
    """Sweep all Ingresses once; per-Ingress failures are logged and skipped"""
    networking_v1 = clients.networking_v1
    custom_api = clients.custom_api

    for ingress in _list_ingresses(networking_v1, namespace):
        ns = ingress.metadata.namespace
        name = ingress.metadata.name

        if dangerously_delete_ingresses:
            if should_delete_ingress(ingress):
                _delete_ingress(networking_v1, custom_api, ingress)
            continue

        disabled = is_disabled_ingress(ingress)
        if not disabled and not (restore_external_dns and needs_external_dns_restore(ingress)):
            continue

        reenable = disabled and restore_class
        try:
            written = restore_ingress_state(networking_v1, ingress, reenable, restore_external_dns)
        except ReconcileError as e:
            logger.error(f"Failed to restore state of Ingress {ns}/{name}: {e}", exc_info=True)
            continue

        if reenable and remove_derived_resources:
            try:
                remove_managed_httproutes(custom_api, ingress, record_httproute)
                remove_automatic_snippets_filter(custom_api, clients.apiextensions_v1, ingress)
            except ReconcileError as e:
                logger.error(f"Failed to remove derived resources of Ingress {ns}/{name}: {e}", exc_info=True)
                continue
        elif reenable:
            logger.info(f"Leaving derived resources of Ingress {ns}/{name} in place")

        if not written:
            logger.debug(f"Nothing to restore for Ingress {ns}/{name}")
        elif reenable:
            logger.info(f"Re-enabled Ingress {ns}/{name}")
        else:
            logger.info(f"Restored external-dns annotations for Ingress {ns}/{name}")


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ('1', 't', 'true', 'yes', 'y'):
        return True
    if lowered in ('0', 'f', 'false', 'no', 'n'):
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value '{value}'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Restore Ingresses disabled by ingress-doperator")
    parser.add_argument('--namespace', default='', help="If set, only process Ingresses in this namespace")
    parser.add_argument(
        '--remove-derived-resources', action='store_true',
        help="Remove managed HTTPRoutes and automatic SnippetsFilters derived from re-enabled Ingresses")
    # Tri-state flags: None means "not given on the command line"
    parser.add_argument(
        '--restore', type=_parse_bool, nargs='?', const=True, default=None,
        help="Restore both ingress class and external-dns annotations (default: true)")
    parser.add_argument(
        '--restore-class', type=_parse_bool, nargs='?', const=True, default=None,
        help="Restore ingress class settings saved by ingress-doperator")
    parser.add_argument(
        '--restore-external-dns', type=_parse_bool, nargs='?', const=True, default=None,
        help="Restore external-dns annotations saved by ingress-doperator")
    parser.add_argument(
        '--dangerously-delete-ingresses', action='store_true',
        help="Delete disabled Ingresses that are fully served by managed Gateway API resources")
    parser.add_argument('-v', '--verbose', action='count', default=0, help="Increase log verbosity")
    return parser


class FlagError(ValueError):
    """Invalid flag combination"""


def resolve_flags(args) -> Tuple[bool, bool]:
    """Return (restore_class, restore_external_dns) for the parsed arguments"""
    partial = args.restore_class is not None or args.restore_external_dns is not None

    if args.dangerously_delete_ingresses:
        if partial or args.restore:
            raise FlagError("--dangerously-delete-ingresses cannot be combined with restore flags")
        if args.remove_derived_resources:
            raise FlagError("--dangerously-delete-ingresses cannot be combined with --remove-derived-resources")
        return False, False

    if args.remove_derived_resources:
        if partial or args.restore is False:
            raise FlagError("--remove-derived-resources requires a full restore")
        return True, True

    if partial:
        return bool(args.restore_class), bool(args.restore_external_dns)

    restore = True if args.restore is None else args.restore
    return restore, restore


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        restore_class, restore_external_dns = resolve_flags(args)
    except FlagError as e:
        logger.error(f"Invalid flag combination: {e}")
        return 1

    try:
        clients = KubeClients.create()
        run_reenabler(
            clients,
            namespace=args.namespace or None,
            remove_derived_resources=args.remove_derived_resources,
            restore_class=restore_class,
            restore_external_dns=restore_external_dns,
            dangerously_delete_ingresses=args.dangerously_delete_ingresses,
        )
    except Exception as e:
        logger.error(f"Re-enabler failed: {e}", exc_info=True)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
