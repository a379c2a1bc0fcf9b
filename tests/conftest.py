import pytest

from ingress_doperator.translator import Translator
from tests.fakes import FakeCoreV1Api, FakeCustomObjectsApi


@pytest.fixture
def custom_api():
    return FakeCustomObjectsApi()


@pytest.fixture
def core_v1():
    return FakeCoreV1Api()


@pytest.fixture
def translator():
    return Translator(
        gateway_namespace='gateway-system',
        gateway_name='shared',
        gateway_class_name='nginx',
    )


@pytest.fixture
def rewriting_translator():
    return Translator(
        gateway_namespace='gateway-system',
        gateway_name='shared',
        gateway_class_name='nginx',
        hostname_rewrite_from='example.com',
        hostname_rewrite_to='staging.example.net',
    )
