import time

import pytest

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser, Permission
from django.contrib.sessions.backends.cache import SessionStore
from django.core.cache import cache

from openid.association import Association as OpenIDAssociation
from openid.consumer.discover import OPENID_2_0_TYPE, OpenIDServiceEndpoint
from openid.message import IDENTIFIER_SELECT, OPENID2_NS

from seqrly.context import Context
from seqrly.store import DjangoORMStore


IDP_URL = "https://idp.example/openid"
ALICE_URL = "https://alice.example/"
SIGNATORY_URL = "http://localhost/|normal"


@pytest.fixture(autouse=True)
def clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def store(db):
    return DjangoORMStore()


@pytest.fixture
def association():
    return OpenIDAssociation.fromExpiresIn(3600, "H1", b"s" * 20, "HMAC-SHA1")


@pytest.fixture
def shared_association(store, association):
    # Both sides of the round trip look the secret up in the same store
    store.storeAssociation(IDP_URL, association)
    store.storeAssociation(SIGNATORY_URL, association)
    return association


def _user(username, permitted=True):
    user = get_user_model().objects.create_user(username, "%s@example.com" % username, "secret")
    if permitted:
        user.user_permissions.add(Permission.objects.get(codename="use_seqrly_provider"))
    return get_user_model().objects.get(pk=user.pk)


@pytest.fixture
def alice(db):
    return _user("alice")


@pytest.fixture
def bob(db):
    return _user("bob")


@pytest.fixture
def mallory(db):
    return _user("mallory", permitted=False)


def make_endpoint(claimed_id=ALICE_URL, server_url=IDP_URL, type_uris=None):
    endpoint = OpenIDServiceEndpoint()
    endpoint.claimed_id = claimed_id
    endpoint.server_url = server_url
    endpoint.type_uris = type_uris or [OPENID_2_0_TYPE]
    return endpoint


@pytest.fixture
def endpoint():
    return make_endpoint()


@pytest.fixture
def discover(endpoint):
    calls = []

    def discover(url):
        calls.append(url)
        return endpoint.claimed_id, [endpoint]

    discover.calls = calls
    return discover


@pytest.fixture
def session():
    return new_session()


@pytest.fixture
def make_request(rf, session):
    """
    Build a request sharing one session, so consecutive calls behave like
    one user agent.
    """
    def make_request(path="/", data=None, method="get", user=None, session=session):
        request = getattr(rf, method)(path, data or {})
        request.session = session
        request.user = user if user is not None else AnonymousUser()
        return request

    return make_request


@pytest.fixture
def make_context(make_request, store):
    def make_context(*args, **kwargs):
        return Context(make_request(*args, **kwargs), store=store)

    return make_context


def checkid_query(identity=ALICE_URL, immediate=False, realm="http://rp.example/",
                  return_to="http://rp.example/return", **extra):
    query = {
        "openid.ns": OPENID2_NS,
        "openid.mode": "checkid_immediate" if immediate else "checkid_setup",
        "openid.identity": identity,
        "openid.claimed_id": identity,
        "openid.realm": realm,
        "openid.return_to": return_to,
    }
    query.update(extra)
    return query


def id_select_query(**kwargs):
    return checkid_query(identity=IDENTIFIER_SELECT, **kwargs)


def now():
    return int(time.time())


def new_session():
    s = SessionStore()
    s.create()
    return s
