"""Annotation keys, marker values and API coordinates shared across the operator"""

ANNOTATION_PREFIX = 'ingress-doperator.fiction.si/'

# Ownership marker written on every object we create
MANAGED_BY_ANNOTATION = ANNOTATION_PREFIX + 'managed-by'
MANAGED_BY_VALUE = 'ingress-doperator'

# Comma-separated list of "namespace/name" Ingresses contributing to an object
SOURCE_ANNOTATION = ANNOTATION_PREFIX + 'source'

# Semicolon-separated "original->transformed: payload" records
MISMATCHED_CERT_ANNOTATION = ANNOTATION_PREFIX + 'certificate-mismatch'

# JSON map of "namespace/name" to the {original: transformed} hostnames it contributed
LISTENER_SOURCES_ANNOTATION = ANNOTATION_PREFIX + 'listener-sources'

# Disable/restore shadow state on the Ingress
INGRESS_DISABLED_ANNOTATION = ANNOTATION_PREFIX + 'disabled'
INGRESS_DISABLED_REASON_NORMAL = 'normal'
INGRESS_DISABLED_REASON_EXTERNAL_DNS = 'external-dns'
ORIGINAL_INGRESS_CLASS_NAME_ANNOTATION = ANNOTATION_PREFIX + 'original-ingress-class-name'
ORIGINAL_INGRESS_CLASS_ANNOTATION = ANNOTATION_PREFIX + 'original-ingress-class'
ORIGINAL_EXTERNAL_DNS_HOSTNAME = ANNOTATION_PREFIX + 'original-external-dns-hostname'
ORIGINAL_EXTERNAL_DNS_INGRESS_HOSTNAME_SOURCE = ANNOTATION_PREFIX + 'original-external-dns-ingress-hostname-source'

DISABLED_INGRESS_CLASS_NAME = 'ingress-doperator-disabled'
INGRESS_CLASS_ANNOTATION = 'kubernetes.io/ingress.class'

EXTERNAL_DNS_HOSTNAME_ANNOTATION = 'external-dns.alpha.kubernetes.io/hostname'
EXTERNAL_DNS_INGRESS_HOSTNAME_SOURCE = 'external-dns.alpha.kubernetes.io/ingress-hostname-source'

# Gateway API coordinates
GATEWAY_GROUP = 'gateway.networking.k8s.io'
GATEWAY_VERSION = 'v1'
GATEWAY_PLURAL = 'gateways'
HTTPROUTE_PLURAL = 'httproutes'
REFERENCE_GRANT_VERSION = 'v1beta1'
REFERENCE_GRANT_PLURAL = 'referencegrants'
REFERENCE_GRANT_NAME = 'ingress-doperator-gateway-secrets'

# NGINX Gateway Fabric SnippetsFilter, served version is discovered at runtime
NGINX_GATEWAY_GROUP = 'gateway.nginx.org'
SNIPPETS_FILTER_PLURAL = 'snippetsfilters'
SNIPPETS_FILTER_CRD_NAME = f'{SNIPPETS_FILTER_PLURAL}.{NGINX_GATEWAY_GROUP}'

# Reconcile cache
RECONCILE_CACHE_CONFIGMAP_BASE_NAME = 'ingress-doperator-reconcile-cache'
RECONCILE_CACHE_SHARD_COUNT = 16
RECONCILE_CACHE_TTL_SECONDS = 24 * 60 * 60


def ingress_identity(namespace, name):
    """Return the "namespace/name" identity of an Ingress"""
    return f"{namespace}/{name}"


def automatic_snippets_filter_name(ingress_name):
    """Name of the SnippetsFilter generated for an Ingress"""
    return f"{ingress_name}-snippets"
