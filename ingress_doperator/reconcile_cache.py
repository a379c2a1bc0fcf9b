"""
Sharded reconcile cache

Remembers which resourceVersion of every Ingress was last reconciled, so a
restarted operator does not redo work for unchanged Ingresses. Entries are
spread over a fixed number of ConfigMaps by FNV-1a hash of the key, each
value stored as "{resourceVersion}|{unixSeconds}". Entries older than the
retention window are ignored on load and simply age out.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from .constants import (
    MANAGED_BY_ANNOTATION,
    MANAGED_BY_VALUE,
    RECONCILE_CACHE_SHARD_COUNT,
    RECONCILE_CACHE_TTL_SECONDS,
)
from .errors import is_not_found, wrap_api_error

logger = logging.getLogger(__name__)

FNV32_OFFSET = 2166136261
FNV32_PRIME = 16777619


@dataclass(frozen=True)
class ReconcileCacheEntry:
    resource_version: str
    updated_at_unix: int


def fnv32a(text: str) -> int:
    """32-bit FNV-1a over the UTF-8 bytes of text"""
    value = FNV32_OFFSET
    for byte in text.encode('utf-8'):
        value ^= byte
        value = (value * FNV32_PRIME) & 0xFFFFFFFF
    return value


def reconcile_cache_shard_for_key(key: str, shard_count: int) -> int:
    if shard_count <= 1:
        return 0
    return fnv32a(key) % shard_count


def reconcile_cache_key(identity: str) -> str:
    """
    Turn a "namespace/name" identity into a ConfigMap data key.
    An empty result means no cache entry is possible for this identity.
    """
    return identity.strip().replace('/', '__')


def shard_name(base_name: str, shard: int) -> str:
    return f"{base_name}-{shard}"


def parse_reconcile_cache_entry(raw: str) -> Optional[ReconcileCacheEntry]:
    parts = raw.split('|')
    if len(parts) != 2:
        return None
    try:
        timestamp = int(parts[1])
    except ValueError:
        return None
    return ReconcileCacheEntry(resource_version=parts[0], updated_at_unix=timestamp)


def format_reconcile_cache_entry(entry: ReconcileCacheEntry) -> str:
    return f"{entry.resource_version}|{entry.updated_at_unix}"


def load_reconcile_cache_sharded(
    core_v1,
    namespace: str,
    base_name: str,
    shard_count: int,
    now: Optional[float] = None,
) -> Dict[str, ReconcileCacheEntry]:
    """Read every shard, dropping malformed and expired entries"""
    if shard_count <= 0:
        shard_count = 1
    cutoff = int(time.time() if now is None else now) - RECONCILE_CACHE_TTL_SECONDS

    entries = {}
    for shard in range(shard_count):
        name = shard_name(base_name, shard)
        try:
            config_map = core_v1.read_namespaced_config_map(name=name, namespace=namespace)
        except ApiException as e:
            if is_not_found(e):
                continue
            raise wrap_api_error(f"failed to read reconcile cache configmap {namespace}/{name}", e) from e

        for key, value in (config_map.data or {}).items():
            entry = parse_reconcile_cache_entry(value)
            if entry is None or entry.updated_at_unix < cutoff:
                continue
            entries[key] = entry

    return entries


def save_reconcile_cache_sharded(
    core_v1,
    namespace: str,
    base_name: str,
    shard_count: int,
    data: Dict[str, ReconcileCacheEntry],
) -> None:
    """Write every shard with exactly its partition of data; empty shards are written empty"""
    if shard_count <= 0:
        shard_count = 1

    shards = {shard: {} for shard in range(shard_count)}
    for key, entry in data.items():
        shards[reconcile_cache_shard_for_key(key, shard_count)][key] = format_reconcile_cache_entry(entry)

    for shard, shard_data in shards.items():
        name = shard_name(base_name, shard)
        try:
            existing = core_v1.read_namespaced_config_map(name=name, namespace=namespace)
        except ApiException as e:
            if not is_not_found(e):
                raise wrap_api_error(f"failed to read reconcile cache configmap {namespace}/{name}", e) from e
            existing = None

        if existing is None:
            config_map = client.V1ConfigMap(
                api_version='v1',
                kind='ConfigMap',
                metadata=client.V1ObjectMeta(
                    name=name,
                    namespace=namespace,
                    annotations={MANAGED_BY_ANNOTATION: MANAGED_BY_VALUE},
                ),
                data=dict(shard_data),
            )
            try:
                core_v1.create_namespaced_config_map(namespace=namespace, body=config_map)
            except ApiException as e:
                raise wrap_api_error(f"failed to create reconcile cache configmap {namespace}/{name}", e) from e
            continue

        existing.data = dict(shard_data)
        try:
            core_v1.replace_namespaced_config_map(name=name, namespace=namespace, body=existing)
        except ApiException as e:
            raise wrap_api_error(f"failed to update reconcile cache configmap {namespace}/{name}", e) from e


class ReconcileCache:
    """In-memory view of the sharded cache, loaded once and flushed on demand"""

    def __init__(
        self,
        core_v1,
        namespace: str,
        base_name: str,
        shard_count: int = RECONCILE_CACHE_SHARD_COUNT,
        clock=time.time,
    ):
        self.core_v1 = core_v1
        self.namespace = namespace
        self.base_name = base_name
        self.shard_count = shard_count
        self.clock = clock
        self.entries: Optional[Dict[str, ReconcileCacheEntry]] = None
        self.dirty = False

    def load(self) -> Dict[str, ReconcileCacheEntry]:
        if self.entries is None:
            self.entries = load_reconcile_cache_sharded(
                self.core_v1, self.namespace, self.base_name, self.shard_count, now=self.clock())
            logger.info(f"Loaded {len(self.entries)} reconcile cache entries")
        return self.entries

    def is_current(self, key: str, resource_version: str) -> bool:
        """True if this resourceVersion was reconciled within the retention window"""
        if not key or not resource_version:
            return False
        entry = self.load().get(key)
        if entry is None or entry.resource_version != resource_version:
            return False
        return entry.updated_at_unix >= int(self.clock()) - RECONCILE_CACHE_TTL_SECONDS

    def mark(self, key: str, resource_version: str) -> None:
        if not key or not resource_version:
            return
        self.load()[key] = ReconcileCacheEntry(resource_version, int(self.clock()))
        self.dirty = True

    def save(self) -> None:
        if not self.dirty:
            return
        save_reconcile_cache_sharded(
            self.core_v1, self.namespace, self.base_name, self.shard_count, self.load())
        self.dirty = False
