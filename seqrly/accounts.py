import logging
import re
import unicodedata

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction

from seqrly.identity import bind_identity


logger = logging.getLogger(__name__)


PROFILE_FIELDS = ("email", "first_name", "last_name")


def normalize_username(value):
    # Scheme, xri.net proxy and trailing slash go, then anything a username can not hold
    value = re.sub(r"^https?://(xri\.net/([^@]!?)?)?", "", value or "")
    value = re.sub(r"^xri://([^@]!?)?", "", value)
    value = re.sub(r"/$", "", value)
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-z0-9_.\-@+]+", "-", value.strip(), flags=re.I)
    return value.strip("-")


def username_taken(username):
    User = get_user_model()
    return User._default_manager.filter(**{User.USERNAME_FIELD: username}).exists()


def generate_username(value, append=True):
    User = get_user_model()
    max_length = User._meta.get_field(User.USERNAME_FIELD).max_length or 150

    base = normalize_username(value)[:max_length]
    if not base:
        return None

    suffix = ""
    while True:
        username = base[:max_length - len(str(suffix))] + str(suffix)
        if not username_taken(username):
            return username
        if not append:
            return None
        suffix = (suffix or 0) + 1


def _apply_profile(user, profile):
    changed = []
    for field in PROFILE_FIELDS:
        value = profile.get(field)
        if value and hasattr(user, field) and getattr(user, field) != value:
            setattr(user, field, value)
            changed.append(field)
    return changed


def create_user(identity_url, profile):
    """
    Create a local account for a verified identity and bind the identity to
    it. Returns ``None`` when no account could be created.
    """
    username = None
    if profile.get("nickname"):
        username = generate_username(profile["nickname"], append=False)
    if not username:
        username = generate_username(identity_url)
    if not username:
        logger.warning("Could not derive a username from %s", identity_url)
        return None

    User = get_user_model()
    user = User(**{User.USERNAME_FIELD: username})
    _apply_profile(user, profile)
    user.set_unusable_password()

    try:
        with transaction.atomic():
            user.save()
            if not bind_identity(user, identity_url):
                raise IntegrityError("Identity %s is already bound" % identity_url)
    except IntegrityError as e:
        logger.warning("Could not create an account for %s: %s", identity_url, e)
        return None

    logger.info("Created account %s for %s", username, identity_url)
    return user


def update_user(user, profile):
    changed = _apply_profile(user, profile)
    if changed:
        user.save(update_fields=changed)
    return changed
