from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction

from seqrly.models import Identity
from seqrly.utils import normalize_url, url_hash


def lookup_user_by_identity(url):
    if not url:
        return None
    try:
        return Identity.objects.select_related("user").get(hash=url_hash(url)).user
    except Identity.DoesNotExist:
        return None


def list_identities_for_user(user):
    return list(Identity.objects.filter(user=user).order_by("pk").values_list("url", flat=True))


def bind_identity(user, url):
    """
    Attach ``url`` to ``user``. Returns ``False`` when the URL is already
    bound, to this user or to another one.
    """
    try:
        with transaction.atomic():
            Identity.objects.create(user=user, url=url, hash=url_hash(url))
    except IntegrityError:
        return False
    return True


def unbind_identity(user, url):
    deleted, _ = Identity.objects.filter(user=user, hash=url_hash(url)).delete()
    return deleted > 0


def unbind_all(user):
    deleted, _ = Identity.objects.filter(user=user).delete()
    return deleted


def ensure_url_match(user, url=None):
    """
    Check that ``url`` (the user's profile URL by default) is one of the
    user's verified identities. Users without identities always match.
    """
    identities = list_identities_for_user(user)
    if not identities:
        return True

    if url is None:
        url = getattr(user, "url", None) or ""
    url = normalize_url(url)

    return any(normalize_url(i) == url for i in identities)


def get_user_by_username(username):
    User = get_user_model()
    try:
        return User._default_manager.get_by_natural_key(username)
    except User.DoesNotExist:
        return None
