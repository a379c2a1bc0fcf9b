"""
Operator configuration
Values come from environment variables set on the operator Deployment
"""

import os
import sys
import logging
from dataclasses import dataclass
from typing import Optional

from kubernetes import client, config

from .constants import (
    RECONCILE_CACHE_CONFIGMAP_BASE_NAME,
    RECONCILE_CACHE_SHARD_COUNT,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


@dataclass
class OperatorConfig:
    gateway_namespace: str = 'nginx-gateway'
    gateway_name: str = 'ingress-doperator'
    gateway_class_name: str = 'nginx'
    ingress_class_filter: Optional[str] = None
    hostname_rewrite_from: Optional[str] = None
    hostname_rewrite_to: Optional[str] = None
    reconcile_cache_namespace: str = 'nginx-gateway'
    reconcile_cache_base_name: str = RECONCILE_CACHE_CONFIGMAP_BASE_NAME
    reconcile_cache_shards: int = RECONCILE_CACHE_SHARD_COUNT
    shared_dir: str = '/shared'
    metrics_port: int = 8080

    @classmethod
    def from_env(cls, environ=None) -> 'OperatorConfig':
        """Build configuration from environment variables, falling back to defaults"""
        env = os.environ if environ is None else environ
        defaults = cls()
        gateway_namespace = env.get('GATEWAY_NAMESPACE', defaults.gateway_namespace)

        return cls(
            gateway_namespace=gateway_namespace,
            gateway_name=env.get('GATEWAY_NAME', defaults.gateway_name),
            gateway_class_name=env.get('GATEWAY_CLASS_NAME', defaults.gateway_class_name),
            ingress_class_filter=env.get('INGRESS_CLASS_FILTER') or None,
            hostname_rewrite_from=env.get('HOSTNAME_REWRITE_FROM') or None,
            hostname_rewrite_to=env.get('HOSTNAME_REWRITE_TO') or None,
            # The cache lives next to the Gateway unless told otherwise
            reconcile_cache_namespace=env.get('RECONCILE_CACHE_NAMESPACE', gateway_namespace),
            reconcile_cache_base_name=env.get(
                'RECONCILE_CACHE_BASE_NAME', defaults.reconcile_cache_base_name),
            reconcile_cache_shards=int(env.get('RECONCILE_CACHE_SHARDS', str(defaults.reconcile_cache_shards))),
            shared_dir=env.get('SHARED_DIR', defaults.shared_dir),
            metrics_port=int(env.get('METRICS_PORT', str(defaults.metrics_port))),
        )


def setup_logging(verbosity: int = 0) -> None:
    level = logging.DEBUG if verbosity > 0 else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stdout)


def load_kube_config() -> None:
    """Load Kubernetes config from the service account, or from kubeconfig outside the cluster"""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        logger.info("Not running in cluster, loading kubeconfig")
        config.load_kube_config()


@dataclass
class KubeClients:
    core_v1: client.CoreV1Api
    networking_v1: client.NetworkingV1Api
    custom_api: client.CustomObjectsApi
    apiextensions_v1: client.ApiextensionsV1Api

    @classmethod
    def create(cls) -> 'KubeClients':
        load_kube_config()
        return cls(
            core_v1=client.CoreV1Api(),
            networking_v1=client.NetworkingV1Api(),
            custom_api=client.CustomObjectsApi(),
            apiextensions_v1=client.ApiextensionsV1Api(),
        )
