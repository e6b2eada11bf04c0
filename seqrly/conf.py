from django.conf import settings


DEFAULTS = {
    "STORE": "seqrly.store.DjangoORMStore",
    "CACHE_ALIAS": "default",
    "ENABLE_PROVIDER": True,
    "NO_AUTO_TRUST": False,
    "PROVIDER_PERMISSION": "seqrly.use_seqrly_provider",
    "DEFAULT_PROVIDER": "https://login.seqrly.com",
    "FETCH_TIMEOUT": 10,
    "TRUST_ROOT": None,
    "IDENTITY_URL": None,
    "PROFILE_PROVIDERS": [
        "seqrly.extensions.SRegProfileProvider",
        "seqrly.extensions.AXProfileProvider",
    ],
    "TRUST_FORM_CONTRIBUTORS": [
        "seqrly.extensions.SRegTrustFormContributor",
    ],
    "DISPLAYNAME_LENGTH": 12,
    "EXTRA_ENDPOINTS": [],
    "ALLOW_REGISTRATION": False,
    "UPDATE_PROFILE": False,
}


class SeqrlyConfig(object):
    """
    Read ``SEQRLY_*`` Django settings, falling back to ``DEFAULTS``. Values
    are looked up on every access so ``override_settings`` is honoured.
    """

    prefix = "SEQRLY_"

    def __getattr__(self, name):
        if name not in DEFAULTS:
            raise AttributeError(name)
        return getattr(settings, self.prefix + name, DEFAULTS[name])


config = SeqrlyConfig()
