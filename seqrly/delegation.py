import logging

from openid import fetchers
from openid.consumer import discover as openid_discover
from openid.message import IDENTIFIER_SELECT

from seqrly.exceptions import DelegationConflictError, DiscoveryError


logger = logging.getLogger(__name__)


OPENID1_TYPES = (
    openid_discover.OPENID_1_0_TYPE,
    openid_discover.OPENID_1_1_TYPE,
    "http://openid.net/signon/1.2",
)


def service_from_endpoint(endpoint):
    service = {
        "Type": [],
        "URI": endpoint.server_url,
    }

    for type_uri in endpoint.type_uris:
        service["Type"].append(type_uri)

        if type_uri == openid_discover.OPENID_IDP_2_0_TYPE:
            service["LocalID"] = IDENTIFIER_SELECT
        elif type_uri == openid_discover.OPENID_2_0_TYPE:
            service["LocalID"] = endpoint.getLocalID()
        elif type_uri in OPENID1_TYPES:
            service["openid:Delegate"] = endpoint.getLocalID()

    return service


def get_delegation_info(url, discover=None):
    """
    Discover the OpenID services of ``url`` so a local identity can delegate
    to it.

    Returns ``{"url": ..., "services": [...]}``. Raises ``DiscoveryError``
    when nothing is found and ``DelegationConflictError`` when every service
    found relies on identifier select, which a delegate can not use.
    """
    discover = discover or openid_discover.discover

    try:
        _, endpoints = discover(url)
    except (openid_discover.DiscoveryFailure, fetchers.HTTPFetchingError) as e:
        logger.info("Delegation discovery failed for %s: %s", url, e)
        raise DiscoveryError(str(e), user_message="Unable to find any OpenID information for delegate URL %s" % url)

    services = [service_from_endpoint(e) for e in endpoints]

    if not services:
        raise DiscoveryError(
            "No OpenID services at %s" % url,
            user_message="Unable to find any OpenID information for delegate URL %s" % url,
        )

    id_select = [s for s in services if s.get("LocalID") == IDENTIFIER_SELECT]
    if len(id_select) >= len(services):
        raise DelegationConflictError(
            "Delegate %s only offers identifier select" % url,
            user_message="You cannot delegate to an OpenID provider which uses Identifier Select.",
        )

    return {
        "url": url,
        "services": services,
    }
