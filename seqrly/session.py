import secrets
from collections.abc import MutableMapping

from openid.consumer.discover import OpenIDServiceEndpoint

from django.utils.crypto import constant_time_compare


class Correlation(object):

    action_key = "seqrly_action"
    finish_url_key = "seqrly_finish_url"
    return_to_key = "seqrly_return_to"
    request_key = "seqrly_server_request"

    def __init__(self, session):
        self.session = session

    def bind(self, action, finish_url=None):
        self.session[self.action_key] = action
        self.session[self.finish_url_key] = finish_url

    def pop_binding(self):
        return self.session.pop(self.action_key, None), self.session.pop(self.finish_url_key, None)

    def set_return_to(self, return_to):
        self.session[self.return_to_key] = return_to

    def pop_return_to(self):
        return self.session.pop(self.return_to_key, None)

    def stash_request(self, openid_request):
        # The returned token must come back with the user's decision
        token = secrets.token_urlsafe(16)
        self.session[self.request_key] = {
            "args": openid_request.message.toPostArgs(),
            "token": token,
        }
        return token

    def pop_request(self):
        entry = self.session.pop(self.request_key, None)
        if not entry:
            return None, None
        return entry["args"], entry["token"]

    def has_request(self):
        return self.request_key in self.session

    def discard_request(self):
        self.session.pop(self.request_key, None)

    @staticmethod
    def token_matches(expected, submitted):
        return bool(expected) and bool(submitted) and constant_time_compare(expected, submitted)

    def clear(self):
        for key in (self.action_key, self.finish_url_key, self.return_to_key, self.request_key):
            self.session.pop(key, None)


class OpenIDSession(MutableMapping):
    """
    The python-openid consumer keeps its discovered endpoint in the session.
    Endpoints are kept as plain fields so any session serializer can hold them.
    """

    session_key = "seqrly_openid"
    endpoint_fields = (
        "claimed_id", "server_url", "type_uris", "local_id", "canonicalID", "display_identifier", "used_yadis",
    )

    def __init__(self, session):
        self.session = session

    def _data(self):
        return self.session.get(self.session_key, {})

    def __getitem__(self, key):
        fields = self._data()[key]
        endpoint = OpenIDServiceEndpoint()
        for name, value in fields.items():
            setattr(endpoint, name, value)
        return endpoint

    def __setitem__(self, key, value):
        if not isinstance(value, OpenIDServiceEndpoint):
            raise TypeError("Only OpenID service endpoints are kept, got %r" % (value,))

        data = self._data()
        data[key] = dict((name, getattr(value, name, None)) for name in self.endpoint_fields)
        self.session[self.session_key] = data

    def __delitem__(self, key):
        data = self._data()
        del data[key]
        self.session[self.session_key] = data

    def __iter__(self):
        return iter(self._data())

    def __len__(self):
        return len(self._data())
