import logging

from openid.server.server import EncodingError, ProtocolError, Server

from seqrly.exceptions import AuthorizationError, DelegationConflictError, TransportError
from seqrly.extensions import trust_form_contributors
from seqrly.session import Correlation
from seqrly.trust import TrustState, get_delegation, site_hash
from seqrly.utils import nowfn


logger = logging.getLogger(__name__)


CHECKID_MODES = ("checkid_immediate", "checkid_setup")


class ProviderResult(object):

    ANSWER = "answer"
    LOGIN = "login"
    PROMPT = "prompt"
    DELEGATION_CONFLICT = "delegation_conflict"
    INFO = "info"
    ERROR = "error"
    DISABLED = "disabled"

    def __init__(self, kind, openid_response=None, openid_request=None, token=None, error=None, **extra):
        self.kind = kind
        self.openid_response = openid_response
        self.openid_request = openid_request
        self.token = token
        self.error = error
        self.extra = extra

    def __repr__(self):
        return "<ProviderResult %s>" % self.kind


class Decision(object):
    def __init__(self, trust, release=False):
        self.trust = trust
        self.release = release


class ProviderEngine(object):

    trust_param = "seqrly_trust"
    token_param = "seqrly_token"
    release_param = "include_sreg"

    def __init__(self, context, endpoint_url=None, trust_state=None, contributors=None):
        self.context = context
        self.endpoint_url = endpoint_url or context.service_url("server")
        self.server = Server(context.store, self.endpoint_url)
        self.trust = trust_state if trust_state is not None else TrustState()
        self.contributors = trust_form_contributors() if contributors is None else contributors

    def decode(self, params):
        query = dict((k, v) for k, v in params.items() if k.startswith("openid."))
        if not query:
            return None

        try:
            return self.server.decodeRequest(query)
        except ProtocolError as e:
            error = TransportError(str(e))
            error.protocol_error = e
            raise error

    def handle(self):
        if not self.context.config.ENABLE_PROVIDER:
            return ProviderResult(ProviderResult.DISABLED)

        params = self.context.params
        token = None
        resumed = False

        try:
            openid_request = self.decode(params)

            if openid_request is None:
                # Maybe the user had to log in or decide on trust first
                args, token = self.context.correlation.pop_request()
                if args:
                    openid_request = self.decode(args)
                    resumed = openid_request is not None
        except TransportError as e:
            return self.protocol_error(e)

        if openid_request is None:
            return ProviderResult(ProviderResult.INFO)

        if openid_request.mode not in CHECKID_MODES:
            return ProviderResult(ProviderResult.ANSWER, self.server.handleRequest(openid_request), openid_request)

        try:
            decision = self.read_decision(params, token) if resumed else None
        except AuthorizationError as e:
            logger.warning("Rejecting trust decision: %s", e)
            return self.answer(openid_request, False)

        return self.check_id(openid_request, decision)

    def protocol_error(self, error):
        protocol_error = error.protocol_error
        logger.info("Malformed OpenID request: %s", protocol_error)

        if protocol_error.openid_message is not None and protocol_error.whichEncoding():
            return ProviderResult(ProviderResult.ANSWER, protocol_error, error=error)

        return ProviderResult(ProviderResult.ERROR, error=error)

    def read_decision(self, params, token):
        if params.get(self.trust_param):
            decision = Decision(params[self.trust_param] != "cancel", params.get(self.release_param) == "on")
        elif params.get("action") == "cancel":
            decision = Decision(False)
        else:
            return None

        if not Correlation.token_matches(token, params.get(self.token_param)):
            raise AuthorizationError("Submitted decision is not bound to the pending request")

        return decision

    def check_id(self, openid_request, decision=None):
        context = self.context
        immediate = openid_request.immediate

        if not context.is_authenticated:
            if immediate:
                return self.answer(openid_request, False)
            context.correlation.stash_request(openid_request)
            return ProviderResult(ProviderResult.LOGIN, openid_request=openid_request)

        user = context.user
        identity = context.identity_url_for(user)
        id_select = openid_request.idSelect()

        try:
            self.authorize(user, openid_request, identity, id_select)
        except AuthorizationError as e:
            logger.warning("Denying %s for %s: %s", openid_request.trust_root, user, e)
            return self.answer(openid_request, False)

        # A delegated identity is not ours to assert through identifier
        # select. Immediate requests fall through to the trust checks.
        if id_select and not immediate and get_delegation(user) is not None:
            if decision is not None:
                return self.answer(openid_request, False)

            token = context.correlation.stash_request(openid_request)
            return ProviderResult(
                ProviderResult.DELEGATION_CONFLICT,
                openid_request=openid_request,
                token=token,
                error=DelegationConflictError("%s delegates but the request uses identifier select" % user),
                identity_url=identity,
            )

        answer_identity = identity if id_select else None
        hash_ = site_hash(openid_request.trust_root)

        site = self.trust.lookup(user, hash_)
        if site is not None:
            self.trust.touch(user, hash_)
            return self.answer(openid_request, True, answer_identity, site.release_attributes)

        if immediate:
            return self.answer(openid_request, False)

        if decision is None:
            token = context.correlation.stash_request(openid_request)
            attributes = []
            for contributor in self.contributors:
                attributes.extend(contributor.attributes(user, openid_request))
            return ProviderResult(
                ProviderResult.PROMPT,
                openid_request=openid_request,
                token=token,
                attributes=attributes,
                identity_url=identity,
            )

        if not decision.trust:
            return self.answer(openid_request, False)

        if not context.config.NO_AUTO_TRUST:
            self.trust.put(user, hash_, openid_request.trust_root, last_login=nowfn(),
                           release_attributes=decision.release)

        return self.answer(openid_request, True, answer_identity, decision.release)

    def authorize(self, user, openid_request, identity, id_select):
        permission = self.context.config.PROVIDER_PERMISSION
        if not user.has_perm(permission):
            raise AuthorizationError("%s lacks %s" % (user, permission))

        if not id_select and openid_request.identity != identity:
            raise AuthorizationError("%s does not own %s" % (user, openid_request.identity))

    def answer(self, openid_request, allow, identity=None, release=False):
        self.context.correlation.discard_request()

        if not allow:
            return ProviderResult(ProviderResult.ANSWER, openid_request.answer(False), openid_request)

        openid_response = openid_request.answer(True, identity=identity)
        for contributor in self.contributors:
            contributor.respond(self.context.user, openid_request, openid_response, release)

        return ProviderResult(ProviderResult.ANSWER, openid_response, openid_request)

    def encode(self, openid_response):
        try:
            return self.server.encodeResponse(openid_response)
        except EncodingError as e:
            logger.warning("Could not encode OpenID response: %s", e)
            raise TransportError(str(e))
