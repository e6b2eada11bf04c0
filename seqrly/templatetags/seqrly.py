from django import template
from django.urls import reverse

from seqrly.conf import config
from seqrly.identity import get_user_by_username
from seqrly.trust import get_delegation

register = template.Library()


@register.inclusion_tag("seqrly/discovery.html", takes_context=True)
def discovery_meta(context, username=None):
    request = context["request"]

    if username is not None:
        _xrds_url = reverse("seqrly_identity_xrds", kwargs={"username": username})
    else:
        _xrds_url = reverse("seqrly_xrds")

    links = []
    if username is not None:
        links = provider_links(request, username)

    return {
        "xrds_url": request.build_absolute_uri(_xrds_url),
        "links": links,
    }


def provider_links(request, username):
    """
    HTML discovery links for an identity page, pointing at the delegate's
    provider when the user has delegated.
    """
    user = get_user_by_username(username)
    if user is None or not user.has_perm(config.PROVIDER_PERMISSION):
        return []

    delegation = get_delegation(user)
    if delegation is not None:
        links = []
        for service in delegation.services:
            if service.get("LocalID"):
                links.append(("openid2.provider", service["URI"]))
                links.append(("openid2.local_id", service["LocalID"]))
            elif service.get("openid:Delegate"):
                links.append(("openid.server", service["URI"]))
                links.append(("openid.delegate", service["openid:Delegate"]))
        return links

    endpoint = request.build_absolute_uri(reverse("seqrly_service", kwargs={"service": "server"}))
    identity = request.build_absolute_uri(reverse("seqrly_identity", kwargs={"username": username}))
    return [
        ("openid2.provider", endpoint),
        ("openid2.local_id", identity),
        ("openid.server", endpoint),
        ("openid.delegate", identity),
    ]
