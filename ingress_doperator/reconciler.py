"""
Reconciliation pass for a single Ingress

Each pass is synchronous. Conflicts on shared objects surface as
ConflictError so the caller can re-run the whole pass.
"""

import logging
from typing import Optional

from .constants import INGRESS_CLASS_ANNOTATION, ingress_identity
from .gateway import apply_gateway, detach_ingress_from_gateway
from .metrics import (
    RecordMetric,
    record_gateway,
    record_reconcile_skip,
    record_reference_grant,
    safe_record,
)
from .reconcile_cache import ReconcileCache, reconcile_cache_key
from .reenabler import is_disabled_ingress
from .reference_grant import cleanup_reference_grant_if_needed, ensure_reference_grants
from .translator import Translator

logger = logging.getLogger(__name__)


def ingress_class_of(ingress) -> Optional[str]:
    if ingress.spec is not None and ingress.spec.ingress_class_name:
        return ingress.spec.ingress_class_name
    return (ingress.metadata.annotations or {}).get(INGRESS_CLASS_ANNOTATION)


class IngressReconciler:
    """Folds Ingresses into the shared Gateway and per-namespace ReferenceGrants"""

    def __init__(
        self,
        networking_v1,
        custom_api,
        translator: Translator,
        cache: Optional[ReconcileCache] = None,
        ingress_class_filter: Optional[str] = None,
        record_gateway_metric: Optional[RecordMetric] = record_gateway,
        record_grant_metric: Optional[RecordMetric] = record_reference_grant,
        record_skip_metric: Optional[RecordMetric] = record_reconcile_skip,
    ):
        self.networking_v1 = networking_v1
        self.custom_api = custom_api
        self.translator = translator
        self.cache = cache
        self.ingress_class_filter = ingress_class_filter
        self.record_gateway_metric = record_gateway_metric
        self.record_grant_metric = record_grant_metric
        self.record_skip_metric = record_skip_metric

    def _skip(self, reason: str, namespace: str, name: str) -> bool:
        logger.debug(f"Skipping Ingress {namespace}/{name}: {reason}")
        safe_record(self.record_skip_metric, reason, namespace, name)
        return False

    def reconcile(self, ingress) -> bool:
        """Apply one Ingress. Returns True if the shared objects were (re)applied"""
        namespace = ingress.metadata.namespace
        name = ingress.metadata.name

        if is_disabled_ingress(ingress):
            return self._skip('disabled', namespace, name)

        if self.ingress_class_filter and ingress_class_of(ingress) != self.ingress_class_filter:
            return self._skip('class', namespace, name)

        key = reconcile_cache_key(ingress_identity(namespace, name))
        resource_version = ingress.metadata.resource_version
        if self.cache is not None and self.cache.is_current(key, resource_version):
            return self._skip('cache', namespace, name)

        logger.info(f"Reconciling Ingress {namespace}/{name}")

        desired = self.translator.build_gateway(ingress)
        if not apply_gateway(self.custom_api, desired, self.record_gateway_metric):
            # Someone else owns the Gateway; nothing of ours to attach to
            return self._skip('gateway-not-managed', namespace, name)

        ensure_reference_grants(self.custom_api, self.translator, [ingress], self.record_grant_metric)

        if self.cache is not None:
            self.cache.mark(key, resource_version)

        logger.info(f"✓ Successfully reconciled Ingress {namespace}/{name}")
        return True

    def remove(self, ingress) -> None:
        """Detach a deleted Ingress from the shared Gateway and drop unneeded grants"""
        namespace = ingress.metadata.namespace
        name = ingress.metadata.name
        logger.info(f"Removing Ingress {namespace}/{name} from shared Gateway")

        detach_ingress_from_gateway(self.custom_api, self.translator, ingress, self.record_gateway_metric)
        cleanup_reference_grant_if_needed(
            self.networking_v1, self.custom_api, namespace, self.record_grant_metric)
