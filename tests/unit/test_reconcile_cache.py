import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from ingress_doperator.constants import RECONCILE_CACHE_TTL_SECONDS
from ingress_doperator.errors import ReconcileError
from ingress_doperator.reconcile_cache import (
    ReconcileCache,
    ReconcileCacheEntry,
    fnv32a,
    load_reconcile_cache_sharded,
    parse_reconcile_cache_entry,
    reconcile_cache_key,
    reconcile_cache_shard_for_key,
    save_reconcile_cache_sharded,
)

NOW = 1_700_000_000
BASE = 'cache'


def test_fnv32a_reference_values():
    assert fnv32a('') == 0x811C9DC5
    assert fnv32a('a') == 0xE40C292C
    assert fnv32a('foobar') == 0xBF9CF968


def test_shard_assignment_is_deterministic():
    for key in ('ns1__web', 'ns2__api', 'default__x'):
        shard = reconcile_cache_shard_for_key(key, 16)
        assert 0 <= shard < 16
        assert shard == reconcile_cache_shard_for_key(key, 16)
    assert reconcile_cache_shard_for_key('anything', 1) == 0
    assert reconcile_cache_shard_for_key('anything', 0) == 0


def test_cache_key():
    assert reconcile_cache_key(' ns1/web ') == 'ns1__web'
    assert reconcile_cache_key('   ') == ''


@pytest.mark.parametrize('raw', ['', 'v1', 'v1|abc', 'v1|2|3'])
def test_malformed_entries_are_rejected(raw):
    assert parse_reconcile_cache_entry(raw) is None


def test_round_trip(core_v1):
    data = {
        f'ns{i}__ing{i}': ReconcileCacheEntry(str(100 + i), NOW - i * 60)
        for i in range(40)
    }

    save_reconcile_cache_sharded(core_v1, 'ops', BASE, 16, data)

    assert len(core_v1.config_maps) == 16
    assert load_reconcile_cache_sharded(core_v1, 'ops', BASE, 16, now=NOW) == data


def test_expired_entries_are_dropped_on_load(core_v1):
    data = {
        'fresh': ReconcileCacheEntry('1', NOW),
        'stale': ReconcileCacheEntry('2', NOW - RECONCILE_CACHE_TTL_SECONDS - 1),
    }

    save_reconcile_cache_sharded(core_v1, 'ops', BASE, 4, data)

    assert load_reconcile_cache_sharded(core_v1, 'ops', BASE, 4, now=NOW) == {'fresh': data['fresh']}


def test_each_shard_holds_exactly_its_partition(core_v1):
    data = {f'key{i}': ReconcileCacheEntry('1', NOW) for i in range(10)}

    save_reconcile_cache_sharded(core_v1, 'ops', BASE, 4, data)

    for shard in range(4):
        stored = core_v1.config_maps[('ops', f'{BASE}-{shard}')].data
        assert set(stored) == {k for k in data if reconcile_cache_shard_for_key(k, 4) == shard}
        assert all(value == f'1|{NOW}' for value in stored.values())


def test_resave_is_stable(core_v1):
    data = {f'key{i}': ReconcileCacheEntry(str(i), NOW) for i in range(10)}

    save_reconcile_cache_sharded(core_v1, 'ops', BASE, 4, data)
    first = {name: cm.data for name, cm in core_v1.config_maps.items()}
    save_reconcile_cache_sharded(core_v1, 'ops', BASE, 4, data)
    second = {name: cm.data for name, cm in core_v1.config_maps.items()}

    assert first == second
    assert [kind for kind, _ in core_v1.writes] == ['create'] * 4 + ['replace'] * 4


def test_empty_shards_are_written_empty(core_v1):
    save_reconcile_cache_sharded(core_v1, 'ops', BASE, 3, {})

    assert {name: cm.data for (_, name), cm in core_v1.config_maps.items()} == {
        f'{BASE}-0': {}, f'{BASE}-1': {}, f'{BASE}-2': {},
    }


def test_non_positive_shard_count_means_one(core_v1):
    save_reconcile_cache_sharded(core_v1, 'ops', BASE, 0, {'k': ReconcileCacheEntry('1', NOW)})

    assert list(core_v1.config_maps) == [('ops', f'{BASE}-0')]
    assert load_reconcile_cache_sharded(core_v1, 'ops', BASE, -3, now=NOW) == {'k': ReconcileCacheEntry('1', NOW)}


def test_missing_shards_and_malformed_values_are_ignored(core_v1):
    core_v1.config_maps[('ops', f'{BASE}-1')] = client.V1ConfigMap(
        metadata=client.V1ObjectMeta(name=f'{BASE}-1'),
        data={'good': f'7|{NOW}', 'bad': 'garbage', 'worse': 'x|y'},
    )

    assert load_reconcile_cache_sharded(core_v1, 'ops', BASE, 4, now=NOW) == {
        'good': ReconcileCacheEntry('7', NOW),
    }


def test_read_failure_aborts_load(core_v1):
    core_v1.fail_reads = ApiException(status=403, reason='Forbidden')

    with pytest.raises(ReconcileError):
        load_reconcile_cache_sharded(core_v1, 'ops', BASE, 4, now=NOW)


def test_reconcile_cache_wrapper(core_v1):
    clock = [NOW]
    cache = ReconcileCache(core_v1, 'ops', BASE, 4, clock=lambda: clock[0])

    assert not cache.is_current('ns1__web', '5')
    cache.mark('ns1__web', '5')
    assert cache.is_current('ns1__web', '5')
    assert not cache.is_current('ns1__web', '6')
    assert not cache.is_current('', '5')

    cache.save()
    reloaded = ReconcileCache(core_v1, 'ops', BASE, 4, clock=lambda: clock[0])
    assert reloaded.is_current('ns1__web', '5')

    clock[0] = NOW + RECONCILE_CACHE_TTL_SECONDS + 1
    assert not reloaded.is_current('ns1__web', '5')


def test_save_without_changes_does_not_write(core_v1):
    cache = ReconcileCache(core_v1, 'ops', BASE, 4, clock=lambda: NOW)
    cache.mark('', '1')
    cache.save()

    assert core_v1.writes == []
