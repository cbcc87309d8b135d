import pytest

from dynarest.connect import ForwardJoin, ReverseJoin, resolve_connect
from dynarest.errors import InvalidArgumentError
from dynarest.select import build_selection


def _resolve(registry, code, connect, select=None):
    entity = registry.lookup(code)
    return resolve_connect(entity, connect, build_selection(entity, select), registry)


def test_forward_connect(registry):
    spec = _resolve(registry, "person", ["shipping"])
    assert spec.root_select == ["shipping"]
    assert spec.populate_regular == [ForwardJoin("shipping", ())]
    assert spec.populate_reverse == []


def test_repeated_connector_is_joined_once(registry):
    spec = _resolve(registry, "person", ["shipping", "shipping"])
    assert spec.populate_regular == [ForwardJoin("shipping", ())]
    assert spec.root_select == ["shipping"]


def test_forward_connect_sub_select(registry):
    spec = _resolve(registry, "person", ["shipping"], "firstname,shipping.city")
    assert spec.populate_regular == [ForwardJoin("shipping", ("city",))]


def test_forward_connect_invalid_sub_select(registry):
    with pytest.raises(InvalidArgumentError):
        _resolve(registry, "person", ["shipping"], "shipping.bogus")


def test_forward_connect_unknown_attribute(registry):
    with pytest.raises(InvalidArgumentError) as exc_info:
        _resolve(registry, "person", ["bogus"])
    assert "Invalid attribute code in _connect: bogus" in exc_info.value.message


def test_forward_connect_requires_a_relation(registry):
    with pytest.raises(InvalidArgumentError) as exc_info:
        _resolve(registry, "person", ["firstname"])
    assert "Attribute cannot be used with _connect" in exc_info.value.message


def test_reverse_connect(registry):
    spec = _resolve(registry, "address", ["person.shipping"], "city,person_shipping.firstname,person_shipping.lastname")
    assert spec.populate_reverse == [ReverseJoin("person", "shipping", "firstname lastname")]
    assert spec.root_select == []


def test_reverse_connect_unknown_entity(registry):
    with pytest.raises(InvalidArgumentError):
        _resolve(registry, "address", ["nobody.shipping"])


def test_invalid_connector(registry):
    with pytest.raises(InvalidArgumentError):
        _resolve(registry, "address", ["a.b.c"])
