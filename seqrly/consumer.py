import logging

from openid import fetchers
from openid.consumer import consumer as openid_consumer
from openid.consumer import discover as openid_discover
from openid.message import OPENID1_URL_LIMIT, OPENID_NS

from seqrly.conf import config
from seqrly.exceptions import (
    AssociationError, DiscoveryError, ReplayError, SeqrlyError, SignatureError, TransportError,
)
from seqrly.extensions import get_profile_data, profile_providers
from seqrly.identity import lookup_user_by_identity
from seqrly.signals import auth_finished


logger = logging.getLogger(__name__)


SUCCESS = openid_consumer.SUCCESS
CANCEL = openid_consumer.CANCEL
FAILURE = openid_consumer.FAILURE
SETUP_NEEDED = openid_consumer.SETUP_NEEDED


class AuthResult(object):

    def __init__(self, status, identity_url=None, message="", error=None, response=None):
        self.status = status
        self.identity_url = identity_url
        self.message = message
        self.error = error
        self.response = response
        self.profile = {}
        self.action = None
        self.finish_url = None

    def __repr__(self):
        return "<AuthResult %s %s>" % (self.status, self.identity_url or self.message)

    @property
    def ok(self):
        return self.status == SUCCESS

    @classmethod
    def failed(cls, error, response=None):
        return cls(FAILURE, message=error.user_message, error=error, response=response)


class Dispatch(object):

    REDIRECT = "redirect"
    POST = "post"

    def __init__(self, method, url, fields=None):
        self.method = method
        self.url = url
        self.fields = fields or {}

    def __repr__(self):
        return "<Dispatch %s %s>" % (self.method, self.url)


def classify_failure(text):
    lowered = (text or "").lower()

    if "nonce" in lowered:
        return ReplayError(text, user_message="OpenID login failed: the response could not be verified.")
    if "signature" in lowered or "check_authentication" in lowered:
        return SignatureError(text, user_message="OpenID login failed: the response could not be verified.")
    if "association" in lowered or "assoc_handle" in lowered:
        return AssociationError(text, user_message="OpenID login failed: the response could not be verified.")
    if "discover" in lowered:
        return DiscoveryError(text, user_message="OpenID login failed: %s" % text)

    return TransportError(text, user_message="OpenID login failed: %s" % text)


class ConsumerEngine(object):

    def __init__(self, context, discover=None, providers=None):
        self.context = context
        self.discover = discover or openid_discover.discover
        self.providers = profile_providers() if providers is None else providers
        self.consumer = openid_consumer.Consumer(context.openid_session, context.store)
        self._endpoints = {}

    def begin_discovery(self, claimed_url):
        claimed_url = (claimed_url or "").strip()
        message = "Could not discover an OpenID identity server endpoint at the url: %s" % claimed_url

        if not claimed_url:
            raise DiscoveryError("Empty identifier", user_message=message)

        if claimed_url in self._endpoints:
            return self._endpoints[claimed_url]

        try:
            _, services = self.discover(claimed_url)
        except (openid_discover.DiscoveryFailure, fetchers.HTTPFetchingError, ValueError) as e:
            logger.info("Discovery failed for %s: %s", claimed_url, e)
            raise DiscoveryError(str(e), user_message=message)

        if not services:
            logger.info("No OpenID services found for %s", claimed_url)
            raise DiscoveryError("No OpenID services found for %s" % claimed_url, user_message=message)

        self._endpoints[claimed_url] = services[0]
        return services[0]

    def build_request(self, endpoint, extensions=None):
        auth_request = self.consumer.beginWithoutDiscovery(endpoint)

        if auth_request.assoc is None:
            logger.info("No association with %s, continuing in stateless mode", endpoint.server_url)

        for extension in extensions or []:
            auth_request.addExtension(extension)

        # Known identities only need profile data when it is kept up to date
        if config.UPDATE_PROFILE or lookup_user_by_identity(endpoint.claimed_id) is None:
            for provider in self.providers:
                extension = provider.build_request(endpoint)
                if extension is not None:
                    auth_request.addExtension(extension)

        return auth_request

    def dispatch(self, auth_request, trust_root, return_to, immediate=False):
        try:
            message = auth_request.getMessage(trust_root, return_to, immediate)
        except ValueError as e:
            raise TransportError(str(e), user_message="Could not redirect to server: %s" % e)

        self.context.correlation.set_return_to(message.getArg(OPENID_NS, "return_to"))

        url = message.toURL(auth_request.endpoint.server_url)
        if auth_request.endpoint.compatibilityMode() or len(url) <= OPENID1_URL_LIMIT:
            return Dispatch(Dispatch.REDIRECT, url)

        return Dispatch(Dispatch.POST, auth_request.endpoint.server_url, message.toPostArgs())

    def start(self, claimed_url, action, finish_url=None, trust_root=None, return_to=None, immediate=False):
        try:
            endpoint = self.begin_discovery(claimed_url)
            auth_request = self.build_request(endpoint)

            return_to = return_to or self.context.service_url("consumer")
            trust_root = trust_root or self.context.trust_root(return_to)

            self.context.correlation.bind(action, finish_url)
            return self.dispatch(auth_request, trust_root, return_to, immediate)
        except SeqrlyError as e:
            return AuthResult.failed(e)

    def complete_verification(self, params, current_url=None):
        return_to = self.context.correlation.pop_return_to() or current_url or self.context.service_url("consumer")

        try:
            response = self.consumer.complete(params, return_to)
        except fetchers.HTTPFetchingError as e:
            logger.warning("Could not reach the provider to verify a response: %s", e)
            return AuthResult.failed(AssociationError(str(e)))

        if response.status == SUCCESS:
            return AuthResult(SUCCESS, response.identity_url, "OpenID login successful", response=response)

        if response.status == CANCEL:
            return AuthResult(CANCEL, message="OpenID login was cancelled.", response=response)

        if response.status == SETUP_NEEDED:
            return AuthResult(SETUP_NEEDED, message="The OpenID provider needs to interact with you.", response=response)

        # FailureResponse.message may hold the exception itself
        text = str(getattr(response, "message", None) or "Unknown error")
        error = classify_failure(text)
        logger.warning("OpenID verification failed (%s): %s", error.__class__.__name__, text)
        return AuthResult.failed(error, response=response)

    def finish(self, params, current_url=None):
        action, finish_url = self.context.correlation.pop_binding()

        result = self.complete_verification(params, current_url)
        # No bound action means a provider initiated login
        result.action = action or "login"
        result.finish_url = finish_url

        if result.ok:
            result.profile = get_profile_data(result.identity_url, result.response, self.providers)

        auth_finished.send(
            sender=self.__class__,
            identity_url=result.identity_url,
            action=result.action,
            data=result.profile,
            result=result,
            request=self.context.request,
        )

        return result

    def is_url_openid(self, url):
        try:
            self.begin_discovery(url)
        except DiscoveryError:
            return False
        return True
