import logging
import re

from openid.extensions import ax, sreg

from django.utils.module_loading import import_string

from seqrly.conf import config
from seqrly.utils import display_name_for


logger = logging.getLogger(__name__)


AX_EMAIL = "http://axschema.org/contact/email"
AX_NICKNAME = "http://axschema.org/namePerson/friendly"
AX_FULLNAME = "http://axschema.org/namePerson"


class ProfileDataProvider(object):

    def build_request(self, endpoint):
        return None

    def collect(self, data, response):
        return data


def _apply_nickname(data, nickname):
    data["nickname"] = nickname
    data["display_name"] = nickname


def _apply_fullname(data, fullname):
    chunks = fullname.split(" ", 1)
    data["first_name"] = chunks[0]
    if len(chunks) > 1:
        data["last_name"] = chunks[1]
    data["fullname"] = fullname
    data["display_name"] = fullname


class SRegProfileProvider(ProfileDataProvider):

    optional = ["nickname", "email", "fullname"]

    def build_request(self, endpoint):
        if sreg.supportsSReg(endpoint):
            return sreg.SRegRequest(optional=self.optional)
        return None

    def collect(self, data, response):
        sreg_response = sreg.SRegResponse.fromSuccessResponse(response)
        if not sreg_response:
            return data

        if sreg_response.get("email"):
            data["email"] = sreg_response.get("email")
        if sreg_response.get("nickname"):
            _apply_nickname(data, sreg_response.get("nickname"))
        if sreg_response.get("fullname"):
            _apply_fullname(data, sreg_response.get("fullname"))

        return data


class AXProfileProvider(ProfileDataProvider):

    attributes = [AX_NICKNAME, AX_EMAIL, AX_FULLNAME]

    def build_request(self, endpoint):
        if not endpoint.usesExtension(ax.AXMessage.ns_uri):
            return None

        fetch = ax.FetchRequest()
        for type_uri in self.attributes:
            fetch.add(ax.AttrInfo(type_uri, 1, True))
        return fetch

    def collect(self, data, response):
        fetch = ax.FetchResponse.fromSuccessResponse(response)
        if fetch is None:
            return data

        def single(type_uri):
            try:
                return fetch.getSingle(type_uri)
            except ax.AXError:
                logger.info("Ignoring multi-valued AX attribute %s", type_uri)
                return None

        email = single(AX_EMAIL)
        if email:
            data["email"] = email

        nickname = single(AX_NICKNAME)
        if nickname:
            _apply_nickname(data, nickname)

        fullname = single(AX_FULLNAME)
        if fullname:
            _apply_fullname(data, fullname)

        return data


class TrustFormContributor(object):

    def attributes(self, user, openid_request):
        return []

    def respond(self, user, openid_request, openid_response, release):
        pass


class SRegTrustFormContributor(TrustFormContributor):
    def profile_value(self, user, field):
        if field == "nickname":
            return user.get_username()
        if field == "email":
            return getattr(user, "email", "")
        if field == "fullname":
            return user.get_full_name() if hasattr(user, "get_full_name") else ""
        return ""

    def attributes(self, user, openid_request):
        sreg_request = sreg.SRegRequest.fromOpenIDRequest(openid_request)
        return [sreg.data_fields[f].lower() for f in sreg_request.allRequestedFields()
                if f in sreg.data_fields and self.profile_value(user, f)]

    def respond(self, user, openid_request, openid_response, release):
        if not release:
            return

        sreg_request = sreg.SRegRequest.fromOpenIDRequest(openid_request)
        if not sreg_request.wereFieldsRequested():
            return

        data = {}
        for field in sreg.data_fields:
            value = self.profile_value(user, field)
            if value:
                data[field] = value

        openid_response.addExtension(sreg.SRegResponse.extractResponse(sreg_request, data))


def attributes_string(names):
    names = list(names)
    if len(names) <= 2:
        return " and ".join(names)
    return ", ".join(names[:-1]) + ", and " + names[-1]


def _load(paths):
    return [import_string(path)() for path in paths]


def profile_providers():
    return _load(config.PROFILE_PROVIDERS)


def trust_form_contributors():
    return _load(config.TRUST_FORM_CONTRIBUTORS)


def get_profile_data(identity_url, response=None, providers=None):
    data = {
        "user_url": identity_url,
        "email": None,
        "nickname": None,
        "fullname": None,
        "display_name": identity_url,
    }

    # i-names get a resolvable website URL
    if re.match(r"^[=@+].+$", identity_url):
        data["user_url"] = "http://xri.net/" + identity_url

    if response is not None:
        for provider in (profile_providers() if providers is None else providers):
            data = provider.collect(data, response)

    if data["display_name"] == identity_url:
        data["display_name"] = display_name_for(identity_url, config.DISPLAYNAME_LENGTH)

    return data
