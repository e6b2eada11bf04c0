import contextlib
import threading
import time

import pytest

from django.core.cache import caches
from django.core.exceptions import ImproperlyConfigured
from django.core.management import call_command
from django.db import connection

from openid.association import Association as OpenIDAssociation
from openid.store.nonce import SKEW

from seqrly.models import Association, Nonce
from seqrly.store import DjangoCacheStore, DjangoORMStore, association_key, get_store, key_digest, nonce_key
from seqrly.utils import from_timestamp

from tests.conftest import IDP_URL


def _assoc(handle, issued_ago=0, lifetime=3600):
    return OpenIDAssociation(handle, b"k" * 20, int(time.time()) - issued_ago, lifetime, "HMAC-SHA1")


@pytest.fixture(params=["orm", "cache"])
def any_store(request, db):
    if request.param == "orm":
        return DjangoORMStore()
    return DjangoCacheStore(caches["default"])


def test_association_key_layout():
    key = association_key("https://idp.example/openid", "H1")
    proto, host, _ = key.split("-", 2)
    assert (proto, host) == ("https", "idp.example")
    assert key.startswith(association_key("https://idp.example/openid"))
    assert association_key("https://idp.example/openid").endswith("-")


def test_association_key_rejects_bad_server_url():
    with pytest.raises(ValueError):
        association_key("idp.example", "H1")
    with pytest.raises(ValueError):
        association_key("", "H1")


def test_nonce_key_starts_with_hex_timestamp():
    assert nonce_key(IDP_URL, 255, "abc").startswith("000000ff-https-idp.example-")


def test_store_and_get_by_handle(any_store):
    any_store.storeAssociation(IDP_URL, _assoc("H1"))
    assoc = any_store.getAssociation(IDP_URL, "H1")
    assert assoc.handle == "H1"
    assert assoc.secret == b"k" * 20
    assert any_store.getAssociation(IDP_URL, "missing") is None
    assert any_store.getAssociation("https://other.example/", "H1") is None


def test_store_is_idempotent(any_store):
    any_store.storeAssociation(IDP_URL, _assoc("H1"))
    any_store.storeAssociation(IDP_URL, _assoc("H1"))
    assert any_store.getAssociation(IDP_URL, "H1").handle == "H1"


def test_get_without_handle_returns_freshest(any_store):
    any_store.storeAssociation(IDP_URL, _assoc("old", issued_ago=600))
    any_store.storeAssociation(IDP_URL, _assoc("new", issued_ago=10))
    assert any_store.getAssociation(IDP_URL).handle == "new"


def test_expired_association_is_never_returned(any_store):
    any_store.storeAssociation(IDP_URL, _assoc("stale", issued_ago=7200, lifetime=3600))
    assert any_store.getAssociation(IDP_URL, "stale") is None
    assert any_store.getAssociation(IDP_URL) is None


def test_remove_association(any_store):
    any_store.storeAssociation(IDP_URL, _assoc("H1"))
    assert any_store.removeAssociation(IDP_URL, "H1") is True
    assert any_store.getAssociation(IDP_URL, "H1") is None
    assert any_store.removeAssociation(IDP_URL, "H1") is False


def test_nonce_is_used_once(any_store):
    timestamp = int(time.time())
    assert any_store.useNonce(IDP_URL, timestamp, "salt") is True
    assert any_store.useNonce(IDP_URL, timestamp, "salt") is False
    assert any_store.useNonce(IDP_URL, timestamp, "pepper") is True
    assert any_store.useNonce("https://other.example/", timestamp, "salt") is True


def test_nonce_outside_skew_is_rejected(any_store):
    assert any_store.useNonce(IDP_URL, int(time.time()) - SKEW - 10, "old") is False
    assert any_store.useNonce(IDP_URL, int(time.time()) + SKEW + 10, "future") is False


def test_reset_drops_everything(any_store):
    timestamp = int(time.time())
    any_store.storeAssociation(IDP_URL, _assoc("H1"))
    any_store.useNonce(IDP_URL, timestamp, "salt")

    any_store.reset()

    assert any_store.getAssociation(IDP_URL, "H1") is None
    assert any_store.useNonce(IDP_URL, timestamp, "salt") is True


@pytest.mark.django_db
def test_orm_cleanup_counts():
    store = DjangoORMStore()
    store.storeAssociation(IDP_URL, _assoc("live"))
    store.storeAssociation(IDP_URL, _assoc("dead", issued_ago=7200))
    store.useNonce(IDP_URL, int(time.time()), "fresh")

    old = int(time.time()) - 2 * SKEW
    Nonce.objects.create(key=key_digest(nonce_key(IDP_URL, old, "stale")), server_url=IDP_URL, salt="stale",
                         timestamp=old, expires=from_timestamp(old + SKEW))

    assert store.cleanupNonces() == 1
    assert store.cleanupAssociations() == 1
    assert list(Association.objects.values_list("handle", flat=True)) == ["live"]
    assert Nonce.objects.count() == 1


@pytest.mark.django_db
def test_orm_nonce_insert_is_the_check():
    store = DjangoORMStore()
    timestamp = int(time.time())
    Nonce.objects.create(key=key_digest(nonce_key(IDP_URL, timestamp, "salt")), server_url=IDP_URL, salt="salt",
                         timestamp=timestamp, expires=from_timestamp(timestamp + SKEW))

    assert store.useNonce(IDP_URL, timestamp, "salt") is False
    assert Nonce.objects.count() == 1


def test_cache_cleanup_prunes_index():
    store = DjangoCacheStore(caches["default"])
    store.storeAssociation(IDP_URL, _assoc("live"))
    store.storeAssociation(IDP_URL, _assoc("dead", issued_ago=7200))

    assert store.cleanupAssociations() == 1
    assert store.cleanupAssociations() == 0
    assert store.cleanupNonces() == 0
    assert store.getAssociation(IDP_URL).handle == "live"


def _race(store, callers=8):
    timestamp = int(time.time())
    barrier = threading.Barrier(callers)
    results = []
    lock = threading.Lock()
    # SQLite takes one writer at a time
    turn = threading.Lock() if connection.vendor == "sqlite" else contextlib.nullcontext()

    def use():
        try:
            barrier.wait()
            with turn:
                accepted = store.useNonce(IDP_URL, timestamp, "race")
            with lock:
                results.append(accepted)
        finally:
            connection.close()

    threads = [threading.Thread(target=use) for _ in range(callers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    return results


def test_concurrent_nonce_is_accepted_once():
    results = _race(DjangoCacheStore(caches["default"]))

    assert results.count(True) == 1
    assert results.count(False) == 7


@pytest.mark.django_db(transaction=True)
def test_concurrent_orm_nonce_is_accepted_once():
    results = _race(DjangoORMStore())

    assert results.count(True) == 1
    assert results.count(False) == 7
    assert Nonce.objects.count() == 1


def test_cache_store_round_trip():
    store = DjangoCacheStore(caches["default"])
    store.storeAssociation(IDP_URL, _assoc("H1"))

    assoc = store.getAssociation(IDP_URL, "H1")
    assert assoc.secret == b"k" * 20
    assert 0 < assoc.expiresIn <= 3600
    assert store.getAssociation(IDP_URL).handle == "H1"


@pytest.mark.django_db
def test_long_server_url_fits_the_key_columns():
    server_url = "https://idp.example/" + "x" * 3000
    store = DjangoORMStore()

    store.storeAssociation(server_url, _assoc("H1"))
    assert store.useNonce(server_url, int(time.time()), "salt") is True

    row = Association.objects.get()
    assert len(row.key) == 64
    assert row.server_url == server_url
    assert len(Nonce.objects.get().key) == 64
    assert store.getAssociation(server_url).handle == "H1"
    assert store.getAssociation(IDP_URL) is None


def test_get_store_uses_setting(settings):
    settings.SEQRLY_STORE = "seqrly.store.DjangoCacheStore"
    assert isinstance(get_store(), DjangoCacheStore)


def test_get_store_bad_path(settings):
    settings.SEQRLY_STORE = "seqrly.store.Nope"
    with pytest.raises(ImproperlyConfigured):
        get_store()


@pytest.mark.django_db
def test_cleanup_command(capsys):
    store = DjangoORMStore()
    store.storeAssociation(IDP_URL, _assoc("dead", issued_ago=7200))

    call_command("seqrly_cleanup")
    assert "1 expired associations" in capsys.readouterr().out

    store.storeAssociation(IDP_URL, _assoc("live"))
    call_command("seqrly_cleanup", reset=True)
    assert Association.objects.count() == 0
