import copy

import pytest
from flask import Flask, request

import dynarest
from dynarest import DynarestAPI, RequestContext, User, register_hook
from dynarest.definitions import parse_definitions
from dynarest.registry import EntityRegistry

ALICE = User(id="a" * 24, username="alice", email="alice@example.com", groups=("admins",))
BOB = User(id="b" * 24, username="bob", groups=("staff",))
USERS = {"alice": ALICE, "bob": BOB}

DEFINITIONS = {
    "address": {
        "name": "Address",
        "acl": {"default": {"public": 1, "owner": {"CURRENT_USER": 7}}},
        "attributes": {
            "address_line1": {"type": "string", "required": True, "textsearch": 10, "order": 1},
            "city": {"type": "string", "default": "New York", "textsearch": 5, "order": 2},
            "zip": {"type": "string", "match": "^[0-9]{5}$", "order": 3},
            "balance": {"type": "number", "min": 0},
            "active": {"type": "boolean", "default": "true"},
            "since": {"type": "date"},
            "photo": {"type": "binary"},
            "location": {"type": "point"},
            "tags": {"type": ["string"]},
            "internal": {"type": "string", "csv": False},
        },
    },
    "person": {
        "attributes": {
            "firstname": {"type": "string", "required": True, "textsearch": 1},
            "lastname": "string",
            "shipping": {"type": "connector", "ref": "address"},
            "billing": {"type": "connector", "ref": "address"},
            "status": {"type": "string", "enum": ["new", "active"], "default": "new"},
            "code": {"type": "string", "uppercase": True},
            "fullname": {"type": "virtual", "computed": {"kind": "concat", "fields": ["firstname", "lastname"]}},
        },
        "actions": {"post": {"find": ["mark_running"]}},
    },
    "secret": {
        "acl": {"create": ["admins"], "default": {"public": 0, "owner": {"CURRENT_USER": 7}}},
        "attributes": {"title": "string"},
    },
    "ticket": {
        "methods": ["GET"],
        "base_filter": "status=open",
        "attributes": {"title": "string", "status": "string"},
        "seed": [{"title": "first", "status": "open"}, {"title": "second", "status": "closed"}],
    },
}


@register_hook("mark_running")
def mark_running(entity, document, ctx):
    document["running"] = True


def load_user():
    return USERS.get(request.headers.get("X-User", ""))


@pytest.fixture
def registry():
    return EntityRegistry(parse_definitions(copy.deepcopy(DEFINITIONS)))


@pytest.fixture
def app():
    app = Flask(__name__)
    app.config.update(SQLALCHEMY_DATABASE_URI="sqlite://", TESTING=True)
    dynarest.DB.init_app(app)
    DynarestAPI(app, definitions=copy.deepcopy(DEFINITIONS), user_loader=load_user)
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session(app):
    with app.app_context():
        yield dynarest.DB.session


@pytest.fixture
def alice_ctx():
    return RequestContext(user=ALICE)


@pytest.fixture
def bob_ctx():
    return RequestContext(user=BOB)
