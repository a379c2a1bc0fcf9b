"""
Translation of Ingress resources into Gateway API objects

Only the parts needed by the shared Gateway and ReferenceGrants live here:
listeners per hostname, contributed annotations and the grant template.
"""

from typing import Dict, Iterable, List, Optional

from .annotations import format_listener_sources
from .config import OperatorConfig
from .constants import (
    ANNOTATION_PREFIX,
    GATEWAY_GROUP,
    GATEWAY_VERSION,
    LISTENER_SOURCES_ANNOTATION,
    MANAGED_BY_ANNOTATION,
    MANAGED_BY_VALUE,
    MISMATCHED_CERT_ANNOTATION,
    REFERENCE_GRANT_NAME,
    REFERENCE_GRANT_VERSION,
    SOURCE_ANNOTATION,
    ingress_identity,
)


# Ingress annotations that never make sense on the Gateway
IGNORED_ANNOTATIONS = {
    'kubectl.kubernetes.io/last-applied-configuration',
    'kubernetes.io/ingress.class',
}


class Translator:
    """Builds desired Gateway API objects for Ingresses"""

    def __init__(
        self,
        gateway_namespace: str,
        gateway_name: str,
        gateway_class_name: str,
        hostname_rewrite_from: Optional[str] = None,
        hostname_rewrite_to: Optional[str] = None,
    ):
        self.gateway_namespace = gateway_namespace
        self.gateway_name = gateway_name
        self.gateway_class_name = gateway_class_name
        self.hostname_rewrite_from = hostname_rewrite_from
        self.hostname_rewrite_to = hostname_rewrite_to

    @classmethod
    def from_config(cls, cfg: OperatorConfig) -> 'Translator':
        return cls(
            gateway_namespace=cfg.gateway_namespace,
            gateway_name=cfg.gateway_name,
            gateway_class_name=cfg.gateway_class_name,
            hostname_rewrite_from=cfg.hostname_rewrite_from,
            hostname_rewrite_to=cfg.hostname_rewrite_to,
        )

    def transform_hostname(self, hostname: str) -> str:
        """
        Rewrite the domain suffix of a hostname.

        Listener names are derived from this value when created and when
        removed, so any change here requires relabelling existing listeners.
        """
        if not hostname or not self.hostname_rewrite_from or self.hostname_rewrite_to is None:
            return hostname

        source = self.hostname_rewrite_from.strip('.')
        target = self.hostname_rewrite_to.strip('.')
        if hostname == source:
            return target
        if hostname.endswith('.' + source):
            return hostname[:-len(source)] + target
        return hostname

    def hostname_mappings(self, ingress) -> Dict[str, str]:
        """Map every rule hostname of the Ingress to its transformed hostname"""
        mappings = {}
        for rule in ingress.spec.rules or []:
            if rule.host:
                mappings[rule.host] = self.transform_hostname(rule.host)
        return mappings

    def tls_secret_for_host(self, ingress, hostname: str) -> Optional[str]:
        """Return the TLS secret covering the hostname, if any"""
        for tls in ingress.spec.tls or []:
            if not tls.secret_name:
                continue
            # A TLS entry without hosts applies to every rule
            if not tls.hosts or hostname in tls.hosts:
                return tls.secret_name
        return None

    def build_listener(self, namespace: str, hostname: str, secret_name: Optional[str]) -> Dict:
        transformed = self.transform_hostname(hostname)
        listener = {
            'name': transformed,
            'hostname': transformed,
            'allowedRoutes': {'namespaces': {'from': 'All'}},
        }
        if secret_name:
            listener['port'] = 443
            listener['protocol'] = 'HTTPS'
            listener['tls'] = {
                'mode': 'Terminate',
                'certificateRefs': [{
                    'group': '',
                    'kind': 'Secret',
                    'name': secret_name,
                    'namespace': namespace,
                }],
            }
        else:
            listener['port'] = 80
            listener['protocol'] = 'HTTP'
        return listener

    def build_listeners(self, ingress) -> List[Dict]:
        namespace = ingress.metadata.namespace
        listeners = []
        for hostname in self.hostname_mappings(ingress):
            secret_name = self.tls_secret_for_host(ingress, hostname)
            listeners.append(self.build_listener(namespace, hostname, secret_name))
        return listeners

    def certificate_mismatches(self, ingress) -> List[str]:
        """
        Records for hostnames whose TLS certificate was issued for the original
        hostname and therefore does not match the transformed one.
        """
        namespace = ingress.metadata.namespace
        records = []
        for original, transformed in self.hostname_mappings(ingress).items():
            if original == transformed:
                continue
            secret_name = self.tls_secret_for_host(ingress, original)
            if secret_name:
                records.append(
                    f"{original}->{transformed}: {namespace}/{secret_name}->{namespace}/{secret_name}")
        return records

    def build_gateway_annotations(self, ingress) -> Dict[str, str]:
        metadata = ingress.metadata
        annotations = {
            key: value for key, value in (metadata.annotations or {}).items()
            if key not in IGNORED_ANNOTATIONS and not key.startswith(ANNOTATION_PREFIX)
        }
        annotations[MANAGED_BY_ANNOTATION] = MANAGED_BY_VALUE
        annotations[SOURCE_ANNOTATION] = ingress_identity(metadata.namespace, metadata.name)
        annotations[LISTENER_SOURCES_ANNOTATION] = format_listener_sources({
            ingress_identity(metadata.namespace, metadata.name): self.hostname_mappings(ingress),
        })

        mismatches = self.certificate_mismatches(ingress)
        if mismatches:
            annotations[MISMATCHED_CERT_ANNOTATION] = '; '.join(mismatches)
        return annotations

    def build_gateway(self, ingress) -> Dict:
        """Desired shared Gateway carrying only this Ingress's contribution"""
        return {
            'apiVersion': f'{GATEWAY_GROUP}/{GATEWAY_VERSION}',
            'kind': 'Gateway',
            'metadata': {
                'name': self.gateway_name,
                'namespace': self.gateway_namespace,
                'annotations': self.build_gateway_annotations(ingress),
            },
            'spec': {
                'gatewayClassName': self.gateway_class_name,
                'infrastructure': {
                    'annotations': {MANAGED_BY_ANNOTATION: MANAGED_BY_VALUE},
                },
                'listeners': self.build_listeners(ingress),
            },
        }

    def get_namespaces_with_tls(self, ingresses: Iterable) -> List[str]:
        """Namespaces holding at least one Ingress with a TLS entry"""
        namespaces = {
            ingress.metadata.namespace for ingress in ingresses
            if ingress.spec is not None and ingress.spec.tls
        }
        return sorted(namespaces)

    def create_reference_grant(self, namespace: str) -> Dict:
        """Grant letting the shared Gateway read TLS secrets in the Ingress namespace"""
        return {
            'apiVersion': f'{GATEWAY_GROUP}/{REFERENCE_GRANT_VERSION}',
            'kind': 'ReferenceGrant',
            'metadata': {
                'name': REFERENCE_GRANT_NAME,
                'namespace': namespace,
                'annotations': {MANAGED_BY_ANNOTATION: MANAGED_BY_VALUE},
            },
            'spec': {
                'from': [{
                    'group': GATEWAY_GROUP,
                    'kind': 'Gateway',
                    'namespace': self.gateway_namespace,
                }],
                'to': [{
                    'group': '',
                    'kind': 'Secret',
                }],
            },
        }
