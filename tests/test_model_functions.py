import datetime
import io

import pytest
from werkzeug.datastructures import FileStorage

import dynarest
from dynarest.connect import ReversePopulate
from dynarest.errors import InvalidArgumentError, NotFoundError, NotImplementedApiError, ValidationError
from dynarest.reverse import reverse_populate

from conftest import ALICE, BOB


def _address(ctx, **values):
    values.setdefault("address_line1", "1 Main St")
    return dynarest.insert("address", values, ctx)["item"]


def test_insert(session, alice_ctx):
    result = dynarest.insert("address", {"address_line1": " 1 Main St ", "balance": "12.5", "nickname": "home"}, alice_ctx)
    item = result["item"]
    assert result["skippedFields"] == ["nickname"]
    assert len(item["_id"]) == 24
    assert item["address_line1"] == "1 Main St"
    assert item["city"] == "New York"
    assert item["balance"] == 12.5
    assert item["active"] is True
    assert item["createdBy"] == "alice@example.com"
    assert isinstance(item["createdDate"], datetime.datetime)
    assert item["_acl"] == {"public": 1, "owner": {ALICE.id: 7}, "groups": {}}
    assert "__v" not in item

    found = dynarest.find_by_id("address", item["_id"].upper(), {}, alice_ctx)
    assert found["city"] == "New York"
    assert found["balance"] == 12.5


def test_insert_validation(session, alice_ctx):
    with pytest.raises(ValidationError) as exc_info:
        dynarest.insert("address", {"zip": "abc", "balance": "-1"}, alice_ctx)
    message = exc_info.value.message
    assert "Path `address_line1` is required." in message
    assert "Path `zip` is invalid (abc)." in message
    assert "is less than minimum allowed value" in message

    with pytest.raises(ValidationError) as exc_info:
        dynarest.insert("person", {"firstname": "Ann", "status": "gone"}, alice_ctx)
    assert "`gone` is not a valid enum value for path `status`." in exc_info.value.message

    with pytest.raises(ValidationError):
        dynarest.insert("person", {"firstname": "Ann", "shipping": "a" * 24 + "\n"}, alice_ctx)


def test_insert_constants(session, alice_ctx):
    item = _address(alice_ctx, city="current_username", since="now", active="FALSE")
    assert item["city"] == "alice"
    assert isinstance(item["since"], datetime.datetime)
    assert item["active"] is False


def test_computed_attributes_and_hooks(session, alice_ctx):
    item = dynarest.insert("person", {"firstname": "Ann", "lastname": "Lee", "code": "ab1"}, alice_ctx)["item"]
    assert item["fullname"] == "Ann Lee"
    assert item["code"] == "AB1"
    assert item["status"] == "new"
    assert "running" not in item
    found = dynarest.find_by_id("person", item["_id"], {}, alice_ctx)
    assert found["running"] is True
    assert found["fullname"] == "Ann Lee"


def test_update(session, alice_ctx):
    item = _address(alice_ctx, zip="02110")
    result = dynarest.update_by_id("address", item["_id"], {"city": "Boston", "zip": "NULL", "bogus": 1}, alice_ctx)
    updated = result["item"]
    assert result["skippedFields"] == ["bogus"]
    assert updated["city"] == "Boston"
    assert updated["zip"] is None
    assert updated["address_line1"] == "1 Main St"
    assert updated["updatedDate"] >= item["updatedDate"]

    dynarest.update_by_id("address", item["_id"], {"city": "Salem"}, alice_ctx)
    table = dynarest.get_registry().lookup("address").table
    assert session.execute(table.select().where(table.c["_id"] == item["_id"])).mappings().one()["__v"] == 2


def test_update_validation(session, alice_ctx):
    item = _address(alice_ctx)
    with pytest.raises(ValidationError):
        dynarest.update_by_id("address", item["_id"], {"address_line1": "NULL"}, alice_ctx)
    with pytest.raises(ValidationError):
        dynarest.update_by_id("address", item["_id"], {"balance": "-5"}, alice_ctx)


def test_update_requires_permission(session, alice_ctx, bob_ctx):
    item = _address(alice_ctx)
    with pytest.raises(NotFoundError):
        dynarest.update_by_id("address", item["_id"], {"city": "Boston"}, bob_ctx)
    assert dynarest.find_by_id("address", item["_id"], {}, bob_ctx)["city"] == "New York"


def test_invalid_ids(session, alice_ctx):
    with pytest.raises(InvalidArgumentError) as exc_info:
        dynarest.find_by_id("address", "123", {}, alice_ctx)
    assert "Invalid ID format: 123" in exc_info.value.message
    with pytest.raises(NotFoundError):
        dynarest.find_by_id("address", "c" * 24, {}, alice_ctx)


def test_delete(session, alice_ctx, bob_ctx):
    item = _address(alice_ctx)
    assert dynarest.delete_by_id("address", item["_id"], bob_ctx) == {"deleted": 0}
    assert dynarest.delete_by_id("address", item["_id"], alice_ctx) == {"deleted": 1}
    assert dynarest.count("address", {}, alice_ctx) == {"count": 0}


def test_delete_batch(session, alice_ctx):
    ids = [_address(alice_ctx)["_id"] for _ in range(3)]
    assert dynarest.delete_batch("address", ids[:2], alice_ctx) == {"deleted": 2}
    assert [item["_id"] for item in dynarest.find("address", {}, alice_ctx)["items"]] == ids[2:]
    with pytest.raises(InvalidArgumentError):
        dynarest.delete_batch("address", [], alice_ctx)
    with pytest.raises(InvalidArgumentError):
        dynarest.delete_batch("address", [ids[2], "nope"], alice_ctx)


def test_delete_by_query(app, session, alice_ctx):
    _address(alice_ctx, city="Boston")
    _address(alice_ctx, city="Salem")
    with pytest.raises(NotImplementedApiError):
        dynarest.delete_by_query("address", {"city": ["Boston"]}, alice_ctx)
    app.config["ALLOW_DELETE_BY_QUERY"] = True
    assert dynarest.delete_by_query("address", {"city": ["Boston"]}, alice_ctx) == {"deleted": 1}
    assert dynarest.count("address", {}, alice_ctx) == {"count": 1}


def test_change_owner(session, alice_ctx, bob_ctx):
    item = _address(alice_ctx)
    result = dynarest.change_owner("address", item["_id"], BOB.id, alice_ctx)
    assert result["_acl"]["owner"] == {BOB.id: 7}
    dynarest.update_by_id("address", item["_id"], {"city": "Boston"}, bob_ctx)
    with pytest.raises(NotFoundError):
        dynarest.update_by_id("address", item["_id"], {"city": "Salem"}, alice_ctx)
    with pytest.raises(ValidationError):
        dynarest.change_owner("address", item["_id"], "", bob_ctx)


def test_change_group(session, alice_ctx):
    item = _address(alice_ctx)
    assert dynarest.change_group("address", item["_id"], "staff", "3", alice_ctx)["_acl"]["groups"] == {"staff": 3}
    with pytest.raises(ValidationError) as exc_info:
        dynarest.change_group("address", item["_id"], "staff", 9, alice_ctx)
    assert "Invalid permissions: 9" in exc_info.value.message


def test_binary_attributes(session, alice_ctx):
    upload = FileStorage(stream=io.BytesIO(b"PNGDATA"), filename="map.png", content_type="image/png")
    item = _address(alice_ctx, photo=upload)
    assert item["photo"] == {
        "filename": "map.png",
        "mimetype": "image/png",
        "size": 7,
        "url": f"/address/{item['_id']}/photo/map.png",
    }
    found = dynarest.find("address", {}, alice_ctx)["items"][0]
    assert "binaryData" not in found["photo"]
    binary = dynarest.find_binary("address", item["_id"], "photo", alice_ctx)
    assert binary["binaryData"] == b"PNGDATA"
    assert binary["mimetype"] == "image/png"
    with pytest.raises(InvalidArgumentError):
        dynarest.find_binary("address", item["_id"], "city", alice_ctx)


def test_point_and_array_attributes(session, alice_ctx):
    item = _address(alice_ctx, location='{"coordinates": [-71.06, 42.36]}', tags='["home", "billing"]')
    found = dynarest.find_by_id("address", item["_id"], {}, alice_ctx)
    assert found["location"] == {"type": "Point", "coordinates": [-71.06, 42.36]}
    assert found["tags"] == ["home", "billing"]
    with pytest.raises(ValidationError):
        _address(alice_ctx, location='{"type": "Point"}')


def test_forward_connect(session, alice_ctx, bob_ctx):
    address = _address(alice_ctx, city="Boston")
    bobs_address = dynarest.insert("address", {"address_line1": "hidden"}, bob_ctx)["item"]
    dynarest.insert("person", {"firstname": "Ann", "shipping": address["_id"]}, alice_ctx)
    dynarest.insert("person", {"firstname": "Bob", "shipping": bobs_address["_id"]}, alice_ctx)
    dynarest.insert("person", {"firstname": "Cy"}, alice_ctx)

    items = dynarest.find("person", {"_connect": ["shipping"], "_sort": ["firstname"]}, alice_ctx)["items"]
    assert items[0]["shipping"]["city"] == "Boston"
    assert items[0]["shipping"]["_id"] == address["_id"]
    # readable for everybody
    assert items[1]["shipping"]["address_line1"] == "hidden"
    assert items[2]["shipping"] is None

    items = dynarest.find("person", {"_connect": ["shipping"], "_select": ["firstname,shipping.city"], "_sort": ["firstname"]}, alice_ctx)["items"]
    assert items[0] == {"_id": items[0]["_id"], "firstname": "Ann", "shipping": {"_id": address["_id"], "city": "Boston"}, "running": True}


def test_reverse_connect(session, alice_ctx):
    boston = _address(alice_ctx, city="Boston")
    salem = _address(alice_ctx, city="Salem")
    for name in ("Ann", "Bea"):
        dynarest.insert("person", {"firstname": name, "shipping": boston["_id"]}, alice_ctx)

    query = {"_connect": ["person.shipping"], "_select": ["city,person_shipping.firstname"], "_sort": ["city"]}
    items = dynarest.find("address", query, alice_ctx)["items"]
    assert [item["city"] for item in items] == ["Boston", "Salem"]
    assert {person["firstname"] for person in items[0]["_reverse"]["person_shipping"]} == {"Ann", "Bea"}
    assert items[1]["_reverse"] == {"person_shipping": []}

    item = dynarest.find_by_id("address", salem["_id"], {"_connect": ["person.shipping"]}, alice_ctx)
    assert item["_reverse"]["person_shipping"] == []


def test_repeated_forward_connect(session, alice_ctx):
    address = _address(alice_ctx, city="Boston")
    dynarest.insert("person", {"firstname": "Ann", "shipping": address["_id"]}, alice_ctx)

    items = dynarest.find("person", {"_connect": ["shipping,shipping"]}, alice_ctx)["items"]
    assert items[0]["shipping"]["city"] == "Boston"


def test_several_reverse_connects(session, alice_ctx):
    boston = _address(alice_ctx, city="Boston")
    salem = _address(alice_ctx, city="Salem")
    dynarest.insert("person", {"firstname": "Ann", "shipping": boston["_id"], "billing": salem["_id"]}, alice_ctx)
    dynarest.insert("person", {"firstname": "Bea", "billing": boston["_id"]}, alice_ctx)

    query = {"_connect": ["person.shipping,person.billing"], "_sort": ["city"]}
    items = dynarest.find("address", query, alice_ctx)["items"]
    assert set(items[0]["_reverse"]) == {"person_shipping", "person_billing"}
    assert [person["firstname"] for person in items[0]["_reverse"]["person_shipping"]] == ["Ann"]
    assert [person["firstname"] for person in items[0]["_reverse"]["person_billing"]] == ["Bea"]
    assert items[1]["_reverse"]["person_shipping"] == []
    assert [person["firstname"] for person in items[1]["_reverse"]["person_billing"]] == ["Ann"]


def test_reverse_connect_unknown_attribute(session, alice_ctx):
    _address(alice_ctx)
    with pytest.raises(InvalidArgumentError) as exc_info:
        dynarest.find("address", {"_connect": ["person.shipping,person.bogus"]}, alice_ctx)
    assert "person.bogus" in exc_info.value.message


def test_reverse_populate_failure_leaves_documents_untouched(registry, alice_ctx, monkeypatch):
    person = registry.lookup("person")
    specs = [ReversePopulate(person, "person_shipping", "shipping"), ReversePopulate(person, "person_billing", "billing")]
    calls = []

    def fetch(session, spec, ids, ctx):
        calls.append(spec.store_where)
        if len(calls) > 1:
            raise RuntimeError("connection lost")
        return {ids[0]: [{"_id": "c" * 24}]}

    monkeypatch.setattr(dynarest.reverse, "_fetch", fetch)
    documents = [{"_id": "d" * 24, "city": "Boston"}]
    with pytest.raises(RuntimeError):
        reverse_populate(None, documents, specs, alice_ctx)
    assert calls == ["person_shipping", "person_billing"]
    assert documents == [{"_id": "d" * 24, "city": "Boston"}]
