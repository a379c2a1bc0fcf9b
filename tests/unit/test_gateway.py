import copy

import pytest

from ingress_doperator.constants import (
    GATEWAY_GROUP,
    GATEWAY_PLURAL,
    GATEWAY_VERSION,
    MANAGED_BY_ANNOTATION,
    MISMATCHED_CERT_ANNOTATION,
    SOURCE_ANNOTATION,
)
from ingress_doperator.errors import ConflictError
from ingress_doperator.gateway import (
    apply_gateway,
    detach_ingress_from_gateway,
    merge_by_key,
    merge_gateway_spec,
    remove_ingress_listeners,
)
from tests.fakes import make_ingress


def _listener_names(gateway):
    return sorted(listener['name'] for listener in gateway['spec']['listeners'])


def test_merge_by_key_overlays_desired():
    existing = [{'name': 'a', 'v': 1}, {'name': 'b', 'v': 1}]
    desired = [{'name': 'b', 'v': 2}, {'name': 'c', 'v': 2}]

    merged = merge_by_key(existing, desired, key=lambda item: item['name'])

    assert merged == [{'name': 'a', 'v': 1}, {'name': 'b', 'v': 2}, {'name': 'c', 'v': 2}]


def test_merge_gateway_spec_accumulates_ingresses(translator):
    first = translator.build_gateway(make_ingress('ns1', 'web', ['a.example.com'], tls_secret='a-tls'))
    second = translator.build_gateway(make_ingress('ns2', 'api', ['b.example.com', 'a.example.com']))

    merge_gateway_spec(first, second)

    assert _listener_names(first) == ['a.example.com', 'b.example.com']
    assert first['metadata']['annotations'][SOURCE_ANNOTATION] == 'ns1/web,ns2/api'
    assert first['spec']['gatewayClassName'] == 'nginx'
    # last writer wins per listener
    listener_a = next(listener for listener in first['spec']['listeners'] if listener['name'] == 'a.example.com')
    assert listener_a['protocol'] == 'HTTP'


def test_merge_gateway_spec_initialises_missing_maps():
    existing = {'metadata': {}, 'spec': {'gatewayClassName': 'old'}}
    desired = {
        'metadata': {'annotations': {'team': 'a'}},
        'spec': {
            'gatewayClassName': 'new',
            'infrastructure': {'annotations': {'k': 'v'}},
            'listeners': [{'name': 'x'}],
        },
    }

    merge_gateway_spec(existing, desired)

    assert existing['metadata']['annotations'] == {'team': 'a'}
    assert existing['spec']['gatewayClassName'] == 'new'
    assert existing['spec']['infrastructure']['annotations'] == {'k': 'v'}
    assert existing['spec']['listeners'] == [{'name': 'x'}]


def test_infrastructure_annotations_overwrite():
    existing = {'spec': {'infrastructure': {'annotations': {'k': 'old', 'other': '1'}}}}
    desired = {'spec': {'infrastructure': {'annotations': {'k': 'new'}}}}

    merge_gateway_spec(existing, desired)

    assert existing['spec']['infrastructure']['annotations'] == {'k': 'new', 'other': '1'}


def test_merge_with_itself_is_idempotent(translator):
    gateway = translator.build_gateway(make_ingress('ns1', 'web', ['a.example.com', 'b.example.com']))
    before = copy.deepcopy(gateway)

    merge_gateway_spec(gateway, copy.deepcopy(gateway))

    assert gateway == before


def test_merge_then_remove_restores_listener_set(translator):
    base = translator.build_gateway(make_ingress('ns1', 'web', ['a.example.com']))
    original_listeners = copy.deepcopy(base['spec']['listeners'])
    other = make_ingress('ns2', 'api', ['b.example.com', 'c.example.com'], tls_secret='api-tls')

    merge_gateway_spec(base, translator.build_gateway(other))
    assert _listener_names(base) == ['a.example.com', 'b.example.com', 'c.example.com']

    remove_ingress_listeners(base, other, translator)
    assert base['spec']['listeners'] == original_listeners


def test_remove_uses_transformed_hostnames(rewriting_translator):
    ingress = make_ingress('ns1', 'web', ['shop.example.com'], tls_secret='shop-tls')
    gateway = rewriting_translator.build_gateway(ingress)

    assert _listener_names(gateway) == ['shop.staging.example.net']
    assert gateway['metadata']['annotations'][MISMATCHED_CERT_ANNOTATION] == \
        'shop.example.com->shop.staging.example.net: ns1/shop-tls->ns1/shop-tls'

    gateway['metadata']['annotations'][MISMATCHED_CERT_ANNOTATION] += \
        '; other.example.com->other.staging.example.net: ns2/o->ns2/o'
    remove_ingress_listeners(gateway, ingress, rewriting_translator)

    assert gateway['spec']['listeners'] == []
    assert gateway['metadata']['annotations'][MISMATCHED_CERT_ANNOTATION] == \
        'other.example.com->other.staging.example.net: ns2/o->ns2/o'


def test_apply_gateway_creates_then_merges(custom_api, translator):
    recorded = []

    def record(*args):
        recorded.append(args)

    first = make_ingress('ns1', 'web', ['a.example.com'])
    second = make_ingress('ns2', 'api', ['b.example.com'])

    assert apply_gateway(custom_api, translator.build_gateway(first), record)
    assert apply_gateway(custom_api, translator.build_gateway(second), record)

    gateway = custom_api.find(GATEWAY_PLURAL, 'gateway-system', 'shared')
    assert _listener_names(gateway) == ['a.example.com', 'b.example.com']
    assert gateway['metadata']['annotations'][SOURCE_ANNOTATION] == 'ns1/web,ns2/api'
    assert recorded == [('create', 'gateway-system', 'shared'), ('update', 'gateway-system', 'shared')]


def test_apply_gateway_without_changes_does_not_write(custom_api, translator):
    desired = translator.build_gateway(make_ingress('ns1', 'web', ['a.example.com']))
    apply_gateway(custom_api, copy.deepcopy(desired))
    apply_gateway(custom_api, copy.deepcopy(desired))

    assert [call[0] for call in custom_api.calls] == ['create']


def test_apply_gateway_skips_foreign_gateway(custom_api, translator):
    custom_api.put(GATEWAY_GROUP, GATEWAY_VERSION, 'gateway-system', GATEWAY_PLURAL, {
        'metadata': {'name': 'shared', 'annotations': {'owner': 'platform-team'}},
        'spec': {'gatewayClassName': 'istio', 'listeners': []},
    })

    applied = apply_gateway(custom_api, translator.build_gateway(make_ingress('ns1', 'web', ['a.example.com'])))

    assert not applied
    assert custom_api.calls == []
    assert custom_api.find(GATEWAY_PLURAL, 'gateway-system', 'shared')['spec']['gatewayClassName'] == 'istio'


def test_apply_gateway_surfaces_conflicts(custom_api, translator):
    apply_gateway(custom_api, translator.build_gateway(make_ingress('ns1', 'web', ['a.example.com'])))

    original_get = custom_api.get_namespaced_custom_object

    def stale_get(**kwargs):
        obj = original_get(**kwargs)
        obj['metadata']['resourceVersion'] = 'stale'
        return obj

    custom_api.get_namespaced_custom_object = stale_get

    with pytest.raises(ConflictError):
        apply_gateway(custom_api, translator.build_gateway(make_ingress('ns2', 'api', ['b.example.com'])))


def test_detach_ingress_from_gateway(custom_api, translator):
    web = make_ingress('ns1', 'web', ['a.example.com'])
    api = make_ingress('ns2', 'api', ['b.example.com'])
    apply_gateway(custom_api, translator.build_gateway(web))
    apply_gateway(custom_api, translator.build_gateway(api))

    assert detach_ingress_from_gateway(custom_api, translator, api)

    gateway = custom_api.find(GATEWAY_PLURAL, 'gateway-system', 'shared')
    assert _listener_names(gateway) == ['a.example.com']
    assert gateway['metadata']['annotations'][SOURCE_ANNOTATION] == 'ns1/web'
    assert gateway['metadata']['annotations'][MANAGED_BY_ANNOTATION]

    # second detach changes nothing
    assert not detach_ingress_from_gateway(custom_api, translator, api)


def test_detach_without_gateway_is_noop(custom_api, translator):
    assert not detach_ingress_from_gateway(custom_api, translator, make_ingress('ns1', 'web', ['a.example.com']))


def test_shared_hostname_survives_removal_of_one_ingress(translator):
    web = make_ingress('ns1', 'web', ['x.example.com'], tls_secret='x-tls')
    api = make_ingress('ns1', 'api', ['x.example.com', 'y.example.com'])
    gateway = translator.build_gateway(web)
    merge_gateway_spec(gateway, translator.build_gateway(api))

    remove_ingress_listeners(gateway, web, translator)

    assert _listener_names(gateway) == ['x.example.com', 'y.example.com']

    remove_ingress_listeners(gateway, api, translator)

    assert gateway['spec']['listeners'] == []


def test_shared_pair_keeps_certificate_mismatch_record(rewriting_translator):
    web = make_ingress('ns1', 'web', ['shop.example.com'], tls_secret='shop-tls')
    api = make_ingress('ns1', 'api', ['shop.example.com'], tls_secret='shop-tls')
    gateway = rewriting_translator.build_gateway(web)
    merge_gateway_spec(gateway, rewriting_translator.build_gateway(api))

    remove_ingress_listeners(gateway, web, rewriting_translator)

    assert _listener_names(gateway) == ['shop.staging.example.net']
    assert gateway['metadata']['annotations'][MISMATCHED_CERT_ANNOTATION] == \
        'shop.example.com->shop.staging.example.net: ns1/shop-tls->ns1/shop-tls'


def test_apply_gateway_prunes_hostnames_no_longer_declared(custom_api, translator):
    apply_gateway(custom_api, translator.build_gateway(make_ingress('ns1', 'web', ['old.example.com'])))
    apply_gateway(custom_api, translator.build_gateway(make_ingress('ns2', 'api', ['old.example.com'])))
    apply_gateway(custom_api, translator.build_gateway(make_ingress('ns3', 'shop', ['gone.example.com'])))

    apply_gateway(custom_api, translator.build_gateway(make_ingress('ns1', 'web', ['new.example.com'])))
    apply_gateway(custom_api, translator.build_gateway(make_ingress('ns3', 'shop', [])))

    gateway = custom_api.find(GATEWAY_PLURAL, 'gateway-system', 'shared')
    # old.example.com is still declared by ns2/api
    assert _listener_names(gateway) == ['new.example.com', 'old.example.com']


def test_detach_uses_recorded_hostnames(custom_api, translator):
    apply_gateway(custom_api, translator.build_gateway(make_ingress('ns1', 'web', ['a.example.com'])))

    # the final object seen on deletion no longer lists the host
    assert detach_ingress_from_gateway(custom_api, translator, make_ingress('ns1', 'web', []))

    gateway = custom_api.find(GATEWAY_PLURAL, 'gateway-system', 'shared')
    assert gateway['spec']['listeners'] == []
