from django.urls import reverse
from django.utils.module_loading import import_string

from seqrly.conf import config as default_config
from seqrly.session import Correlation, OpenIDSession
from seqrly.store import get_store
from seqrly.utils import trailingslash


class Context(object):
    """
    Everything one engine call needs: the HTTP request, the association
    store, the correlation layer over the user's session and configuration.
    Built once per request by the views and passed explicitly.
    """

    def __init__(self, request, store=None, config=None):
        self.request = request
        self.store = store if store is not None else get_store()
        self.config = config if config is not None else default_config
        self.correlation = Correlation(request.session)
        self.openid_session = OpenIDSession(request.session)

    @property
    def user(self):
        return self.request.user

    @property
    def is_authenticated(self):
        return self.user is not None and self.user.is_authenticated

    @property
    def params(self):
        params = self.request.GET.dict()
        if self.request.method == "POST":
            params.update(self.request.POST.dict())
        return params

    def build_absolute_uri(self, location=None):
        return self.request.build_absolute_uri(location)

    def service_url(self, service):
        return self.build_absolute_uri(reverse("seqrly_service", kwargs={"service": service}))

    def identity_url_for(self, user):
        if self.config.IDENTITY_URL:
            return import_string(self.config.IDENTITY_URL)(self.request, user)
        return self.build_absolute_uri(reverse("seqrly_identity", kwargs={"username": user.get_username()}))

    def trust_root(self, return_to=None):
        trust_root = trailingslash(self.config.TRUST_ROOT or self.build_absolute_uri("/"))

        # If return_to is HTTPS, trust_root must be as well
        if return_to and return_to.startswith("https:") and trust_root.startswith("http:"):
            trust_root = "https:" + trust_root[len("http:"):]

        return trust_root
