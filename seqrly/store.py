import base64
import datetime
import hashlib
import logging
import time

import pytz

from openid.association import Association as OpenIDAssociation
from openid.store.interface import OpenIDStore
from openid.store.nonce import SKEW

from django.conf import settings
from django.core.cache import caches
from django.core.exceptions import ImproperlyConfigured
from django.db import IntegrityError, transaction
from django.utils.module_loading import import_string

from seqrly.conf import config
from seqrly.models import Association, Nonce
from seqrly.utils import from_timestamp, nowfn


logger = logging.getLogger(__name__)


def _b64(value):
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _split_server_url(server_url):
    proto, rest = server_url.split("://", 1)
    return proto, rest.split("/", 1)[0]


def association_key(server_url, handle=None):
    """
    Derive the storage key of an association.

    Without a handle the key ends in ``-`` and is the prefix shared by every
    association of ``server_url``.
    """
    if not server_url or "://" not in server_url:
        raise ValueError("Bad server URL: %r" % (server_url,))
    proto, domain = _split_server_url(server_url)
    return "%s-%s-%s-%s" % (proto, domain, _b64(server_url), _b64(handle) if handle else "")


def nonce_key(server_url, timestamp, salt):
    if server_url and "://" in server_url:
        proto, domain = _split_server_url(server_url)
    else:
        proto, domain = "", ""
    return "%08x-%s-%s-%s-%s" % (timestamp, proto, domain, _b64(server_url or ""), _b64(salt))


def key_digest(derived):
    # Derived keys grow with the server URL, the indexed columns hold this instead
    return hashlib.sha256(derived.encode("utf-8")).hexdigest()


def get_store():
    path = config.STORE

    try:
        store_class = import_string(path)
    except ImportError as e:
        raise ImproperlyConfigured('Error importing the Seqrly store %s: "%s"' % (path, e))

    return store_class()


def _db_datetime(timestamp):
    # Construct a datetime from a timestamp that Django can store
    value = from_timestamp(timestamp)

    if not getattr(settings, "USE_TZ", False):
        # Django isn't storing timezones, we should normalize to settings.TIME_ZONE
        value = value.astimezone(pytz.timezone(settings.TIME_ZONE)).replace(tzinfo=None)

    return value


def _timestamp(value):
    # Construct a UTC timestamp from a datetime
    if value.tzinfo is None:
        # Assume TZ is settings.TIME_ZONE
        value = pytz.timezone(settings.TIME_ZONE).localize(value)

    return int(value.astimezone(pytz.utc).timestamp())


class DjangoORMStore(OpenIDStore):
    """
    Associations and nonces kept in the database.

    ``useNonce`` never reads before writing: the unique ``key`` column makes
    the insert itself the check, so two concurrent requests carrying the same
    nonce can not both succeed.
    """

    def storeAssociation(self, server_url, association):
        issued = _db_datetime(association.issued)

        defaults = {
            "server_key": key_digest(association_key(server_url)),
            "server_url": server_url,
            "handle": association.handle,
            "assoc_type": association.assoc_type,
            "secret": base64.b64encode(association.secret).decode("ascii"),
            "lifetime": association.lifetime,
            "issued": issued,
            "expires": issued + datetime.timedelta(seconds=association.lifetime),
        }

        Association.objects.update_or_create(
            key=key_digest(association_key(server_url, association.handle)),
            defaults=defaults,
        )

    def getAssociation(self, server_url, handle=None):
        assocs = Association.objects.filter(expires__gt=nowfn())

        if handle:
            assocs = assocs.filter(key=key_digest(association_key(server_url, handle)))
        else:
            assocs = assocs.filter(server_key=key_digest(association_key(server_url))).order_by("-issued")

        a = assocs.first()
        if a is None:
            return None

        return OpenIDAssociation(a.handle, base64.b64decode(a.secret), _timestamp(a.issued), a.lifetime, a.assoc_type)

    def removeAssociation(self, server_url, handle):
        deleted, _ = Association.objects.filter(key=key_digest(association_key(server_url, handle))).delete()
        return deleted > 0

    def useNonce(self, server_url, timestamp, salt):
        if abs(timestamp - time.time()) > SKEW:
            # Skew on timestamp is too large
            return False

        try:
            with transaction.atomic():
                Nonce.objects.create(
                    key=key_digest(nonce_key(server_url, timestamp, salt)),
                    server_url=server_url or "",
                    salt=salt,
                    timestamp=timestamp,
                    expires=_db_datetime(timestamp + SKEW),
                )
        except IntegrityError:
            logger.warning("Nonce replay detected for %s (timestamp %s)", server_url, timestamp)
            return False

        return True

    def cleanupNonces(self):
        deleted, _ = Nonce.objects.filter(expires__lt=nowfn()).delete()
        logger.debug("Removed %d expired nonces", deleted)
        return deleted

    def cleanupAssociations(self):
        deleted, _ = Association.objects.filter(expires__lte=nowfn()).delete()
        logger.debug("Removed %d expired associations", deleted)
        return deleted

    def reset(self):
        Nonce.objects.all().delete()
        Association.objects.all().delete()


class DjangoCacheStore(OpenIDStore):

    prefix = "seqrly"

    def __init__(self, cache=None):
        self.cache = cache if cache is not None else caches[config.CACHE_ALIAS]

    def _key(self, kind, derived):
        return "%s:%s:%s" % (self.prefix, kind, key_digest(derived))

    @property
    def _generation_key(self):
        return "%s:generation" % self.prefix

    def _generation(self):
        # Every key is written under this version, reset bumps it
        return self.cache.get_or_set(self._generation_key, 1, None)

    def _servers_key(self):
        return "%s:servers" % self.prefix

    def storeAssociation(self, server_url, association):
        version = self._generation()
        prefix = association_key(server_url)
        expires_in = max(association.expiresIn, 1)

        self.cache.set(
            self._key("assoc", association_key(server_url, association.handle)),
            (association.handle, base64.b64encode(association.secret).decode("ascii"),
             association.issued, association.lifetime, association.assoc_type),
            expires_in,
            version=version,
        )

        index_key = self._key("index", prefix)
        handles = self.cache.get(index_key, {}, version=version)
        handles[association.handle] = association.issued
        self.cache.set(index_key, handles, None, version=version)

        servers = self.cache.get(self._servers_key(), {}, version=version)
        servers[prefix] = server_url
        self.cache.set(self._servers_key(), servers, None, version=version)

    def _load(self, server_url, handle, version):
        data = self.cache.get(self._key("assoc", association_key(server_url, handle)), version=version)
        if data is None:
            return None

        handle, secret, issued, lifetime, assoc_type = data
        assoc = OpenIDAssociation(handle, base64.b64decode(secret), issued, lifetime, assoc_type)
        if assoc.expiresIn <= 0:
            return None

        return assoc

    def getAssociation(self, server_url, handle=None):
        version = self._generation()

        if handle:
            return self._load(server_url, handle, version)

        handles = self.cache.get(self._key("index", association_key(server_url)), {}, version=version)
        for candidate, _ in sorted(handles.items(), key=lambda item: item[1], reverse=True):
            assoc = self._load(server_url, candidate, version)
            if assoc is not None:
                return assoc

        return None

    def removeAssociation(self, server_url, handle):
        version = self._generation()
        key = self._key("assoc", association_key(server_url, handle))

        existed = self.cache.get(key, version=version) is not None
        self.cache.delete(key, version=version)

        index_key = self._key("index", association_key(server_url))
        handles = self.cache.get(index_key, {}, version=version)
        if handles.pop(handle, None) is not None:
            self.cache.set(index_key, handles, None, version=version)

        return existed

    def useNonce(self, server_url, timestamp, salt):
        now = time.time()
        if abs(timestamp - now) > SKEW:
            return False

        timeout = max(int(timestamp + SKEW - now) + 1, 1)
        added = self.cache.add(
            self._key("nonce", nonce_key(server_url, timestamp, salt)),
            timestamp,
            timeout,
            version=self._generation(),
        )

        if not added:
            logger.warning("Nonce replay detected for %s (timestamp %s)", server_url, timestamp)

        return added

    def cleanupNonces(self):
        # Nonces leave the cache on their own once outside the skew window
        return 0

    def cleanupAssociations(self):
        version = self._generation()
        removed = 0

        servers = self.cache.get(self._servers_key(), {}, version=version)
        for prefix, server_url in list(servers.items()):
            index_key = self._key("index", prefix)
            handles = self.cache.get(index_key, {}, version=version)
            live = dict((h, issued) for h, issued in handles.items()
                        if self._load(server_url, h, version) is not None)
            removed += len(handles) - len(live)

            if live:
                self.cache.set(index_key, live, None, version=version)
            else:
                self.cache.delete(index_key, version=version)
                del servers[prefix]

        self.cache.set(self._servers_key(), servers, None, version=version)
        logger.debug("Removed %d expired associations", removed)
        return removed

    def reset(self):
        try:
            self.cache.incr(self._generation_key)
        except ValueError:
            self.cache.set(self._generation_key, 2, None)
