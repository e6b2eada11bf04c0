import logging

from django.conf import settings
from django.contrib.auth import authenticate, login as auth_login
from django.contrib.auth.decorators import login_required
from django.contrib.auth.views import redirect_to_login
from django.http import Http404, HttpResponse, HttpResponseRedirect, JsonResponse
from django.middleware.csrf import get_token
from django.urls import reverse
from django.utils.decorators import method_decorator
from django.utils.http import url_has_allowed_host_and_scheme, urlencode
from django.views.decorators.csrf import csrf_exempt
from django.views.generic import TemplateView
from django.views.generic.edit import FormView

from openid.consumer.discover import OPENID_1_1_TYPE, OPENID_2_0_TYPE, OPENID_IDP_2_0_TYPE
from openid.extensions import sreg
from openid.server.trustroot import RP_RETURN_TO_URL_TYPE
from openid.yadis.constants import YADIS_CONTENT_TYPE

from seqrly.accounts import create_user, update_user
from seqrly.conf import config
from seqrly.consumer import ConsumerEngine, Dispatch
from seqrly.context import Context
from seqrly.exceptions import TransportError
from seqrly.extensions import attributes_string
from seqrly.forms import BeginForm, DelegateForm, TrustForm
from seqrly.identity import bind_identity, ensure_url_match, get_user_by_username
from seqrly.server import ProviderEngine
from seqrly.trust import clear_delegation, get_delegation, set_delegation


logger = logging.getLogger(__name__)


class OpenIDView(object):

    template_names = {
        "error": "seqrly/server/error.html",
    }

    def get_context(self):
        if not hasattr(self, "seqrly_context"):
            self.seqrly_context = Context(self.request)
        return self.seqrly_context

    def render_template(self, name, context=None, status=200):
        self.template_name = self.template_names[name]
        response = self.render_to_response(context or {})
        response.status_code = status
        return response

    def render_openid_response(self, openid_response):
        try:
            webresponse = self.engine.encode(openid_response)
        except TransportError as e:
            return self.render_template("error", {"error": str(e)}, status=400)

        response = HttpResponse(webresponse.body)
        response.status_code = webresponse.code

        for header, value in webresponse.headers.items():
            response[header] = value

        return response

    def render_dispatch(self, dispatch):
        if dispatch.method == Dispatch.REDIRECT:
            return HttpResponseRedirect(dispatch.url)

        self.template_name = "seqrly/consumer/repost.html"
        return self.render_to_response({
            "action": dispatch.url,
            "fields": sorted(dispatch.fields.items()),
        })

    def safe_url(self, url, default=None):
        if url and url_has_allowed_host_and_scheme(url, allowed_hosts={self.request.get_host()},
                                                   require_https=self.request.is_secure()):
            return url
        return default or settings.LOGIN_REDIRECT_URL


class Service(OpenIDView, TemplateView):
    """
    The single OpenID entry point. ``service`` picks the consumer return
    handler, the provider endpoint, or the JSON identifier probe.
    """

    services = ("consumer", "server", "ajax")

    template_names = {
        "error": "seqrly/server/error.html",
        "info": "seqrly/server/info.html",
        "prompt": "seqrly/server/trust.html",
        "delegation_conflict": "seqrly/server/delegation.html",
        "disabled": "seqrly/server/disabled.html",
        "consumer_error": "seqrly/consumer/error.html",
    }

    def get_service(self):
        return self.kwargs.get("service") or self.request.GET.get("seqrly")

    def handle(self):
        service = self.get_service()
        if service not in self.services:
            raise Http404("Unknown OpenID service %r" % service)
        return getattr(self, "handle_%s" % service)()

    # Consumer

    def handle_consumer(self):
        context = self.get_context()
        engine = ConsumerEngine(context)
        result = engine.finish(context.params, current_url=context.build_absolute_uri())

        handler = getattr(self, "finish_%s" % result.action, self.finish_other)
        return handler(result)

    def finish_login(self, result):
        if not result.ok:
            return self.render_template("consumer_error", {"result": result, "message": result.message})

        user = authenticate(self.request, identity_url=result.identity_url)
        if user is not None and config.UPDATE_PROFILE:
            update_user(user, result.profile)

        if user is None and config.ALLOW_REGISTRATION:
            if create_user(result.identity_url, result.profile) is None:
                message = "OpenID authentication successful, but failed to create an account."
                return self.render_template("consumer_error", {"result": result, "message": message})
            user = authenticate(self.request, identity_url=result.identity_url)

        if user is None:
            logger.info("No local account for verified identity %s", result.identity_url)
            message = "You have entered a valid OpenID, but this site is not currently accepting new accounts."
            return self.render_template("consumer_error", {"result": result, "message": message})

        auth_login(self.request, user)
        return HttpResponseRedirect(self.safe_url(result.finish_url))

    def finish_verify(self, result):
        user = self.request.user
        finish_url = self.safe_url(result.finish_url)

        if not user.is_authenticated:
            return redirect_to_login(self.request.get_full_path())

        params = {"status": "error", "message": result.message}
        if result.ok:
            if bind_identity(user, result.identity_url):
                params = {"status": "success", "message": "Added association with OpenID."}
                if not ensure_url_match(user):
                    params["update_url"] = 1
            else:
                params["message"] = "That OpenID is already associated with an account."

        separator = "&" if "?" in finish_url else "?"
        return HttpResponseRedirect(finish_url + separator + urlencode(params))

    def finish_other(self, result):
        # Other actions are completed by auth_finished receivers
        if result.finish_url:
            return HttpResponseRedirect(self.safe_url(result.finish_url))
        return self.render_template("consumer_error", {"result": result, "message": result.message})

    # Provider

    def handle_server(self):
        self.engine = ProviderEngine(self.get_context())
        result = self.engine.handle()
        return getattr(self, "render_%s" % result.kind)(result)

    def render_answer(self, result):
        return self.render_openid_response(result.openid_response)

    def render_login(self, result):
        return redirect_to_login(self.get_context().service_url("server"))

    def render_prompt(self, result):
        openid_request = result.openid_request
        attributes = result.extra.get("attributes", [])
        form = TrustForm(
            initial={"trust_root": openid_request.trust_root, "seqrly_token": result.token},
            openid_request=openid_request,
            attributes=attributes,
        )
        return self.render_template("prompt", {
            "form": form,
            "trust_root": openid_request.trust_root,
            "attributes": attributes_string(attributes),
            "identity_url": result.extra.get("identity_url"),
            "endpoint": self.engine.endpoint_url,
        })

    def render_delegation_conflict(self, result):
        return self.render_template("delegation_conflict", {
            "identity_url": result.extra.get("identity_url"),
            "home": self.request.build_absolute_uri("/"),
            "token": result.token,
            "endpoint": self.engine.endpoint_url,
        })

    def render_info(self, result):
        return self.render_template("info")

    def render_error(self, result):
        return self.render_template("error", {"error": str(result.error)}, status=400)

    def render_disabled(self, result):
        return self.render_template("disabled", status=500)

    # Probe

    def handle_ajax(self):
        context = self.get_context()
        url = context.params.get("url", "")
        valid = bool(url) and ConsumerEngine(context).is_url_openid(url)
        return JsonResponse({"valid": valid, "nonce": get_token(self.request)})

    def get(self, request, *args, **kwargs):
        return self.handle()

    def post(self, request, *args, **kwargs):
        return self.handle()

    @method_decorator(csrf_exempt)
    def dispatch(self, *args, **kwargs):
        return super().dispatch(*args, **kwargs)


class Begin(OpenIDView, TemplateView):

    http_method_names = ["post"]

    template_names = {
        "error": "seqrly/consumer/error.html",
    }

    def post(self, request, *args, **kwargs):
        form = BeginForm(request.POST, default_provider=config.DEFAULT_PROVIDER)
        if not form.is_valid():
            return self.render_template("error", {"message": " ".join(form.non_field_errors())})

        action = form.cleaned_data["action"]
        if action == "verify" and not request.user.is_authenticated:
            return redirect_to_login(request.get_full_path())

        outcome = ConsumerEngine(self.get_context()).start(
            form.cleaned_data["openid_identifier"],
            action,
            finish_url=form.cleaned_data.get("redirect_to") or None,
        )

        if isinstance(outcome, Dispatch):
            return self.render_dispatch(outcome)

        return self.render_template("error", {"result": outcome, "message": outcome.message})


class Delegate(FormView):

    form_class = DelegateForm
    template_name = "seqrly/delegate.html"

    def get_initial(self):
        initial = super().get_initial()
        delegation = get_delegation(self.request.user)
        if delegation is not None:
            initial["delegate"] = delegation.url
        return initial

    def form_valid(self, form):
        if form.delegation_info:
            set_delegation(self.request.user, form.delegation_info["url"], form.delegation_info["services"])
        else:
            clear_delegation(self.request.user)
        return HttpResponseRedirect(self.request.path)

    @method_decorator(login_required)
    def dispatch(self, *args, **kwargs):
        return super().dispatch(*args, **kwargs)


class XRDS(TemplateView):

    template_name = "seqrly/xrds.xml"
    identity = False

    def get_user(self):
        if not self.identity:
            return None
        user = get_user_by_username(self.kwargs["username"])
        if user is None:
            raise Http404("No such user")
        return user

    def get_endpoint_uris(self):
        endpoint = self.request.build_absolute_uri(reverse("seqrly_service", kwargs={"service": "server"}))
        return [endpoint] + list(config.EXTRA_ENDPOINTS)

    def get_services(self, user):
        if user is None:
            return [{
                "types": [OPENID_IDP_2_0_TYPE],
                "uris": self.get_endpoint_uris(),
            }]

        if not user.has_perm(config.PROVIDER_PERMISSION):
            return []

        delegation = get_delegation(user)
        if delegation is not None:
            return [{
                "types": s.get("Type", []),
                "uris": [s.get("URI")],
                "local_id": s.get("LocalID"),
                "delegate": s.get("openid:Delegate"),
            } for s in delegation.services]

        identity = self.request.build_absolute_uri(reverse("seqrly_identity", kwargs={"username": user.get_username()}))
        sreg_types = [sreg.ns_uri_1_1, sreg.ns_uri_1_0]
        return [
            {"types": [OPENID_2_0_TYPE] + sreg_types, "uris": self.get_endpoint_uris(), "local_id": identity},
            {"types": [OPENID_1_1_TYPE] + sreg_types, "uris": self.get_endpoint_uris(), "delegate": identity},
        ]

    def get_context_data(self, **kwargs):
        ctx = super().get_context_data(**kwargs)

        services = self.get_services(self.get_user())
        if not self.identity:
            services.append({
                "types": [RP_RETURN_TO_URL_TYPE],
                "uris": [self.request.build_absolute_uri(reverse("seqrly_service", kwargs={"service": "consumer"}))],
            })

        ctx.update({
            "services": services,
        })

        return ctx

    def get(self, request, *args, **kwargs):
        context = self.get_context_data(**kwargs)
        return self.render_to_response(context, content_type=YADIS_CONTENT_TYPE)


class Identity(TemplateView):
    template_name = "seqrly/identity.html"

    def get_context_data(self, **kwargs):
        ctx = super().get_context_data(**kwargs)

        user = get_user_by_username(self.kwargs.get("username"))
        if user is None:
            raise Http404("No such user")

        ctx.update({
            "username": self.kwargs.get("username"),
            "profile_user": user,
        })

        return ctx

    def get(self, request, *args, **kwargs):
        response = super().get(request, *args, **kwargs)
        response["X-XRDS-Location"] = request.build_absolute_uri(
            reverse("seqrly_identity_xrds", kwargs={"username": self.kwargs["username"]})
        )
        return response
