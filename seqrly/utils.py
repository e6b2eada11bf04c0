import datetime
import hashlib
import re
import urllib.request
from urllib.parse import urlsplit

import pytz

from django.utils.timezone import now as nowfn

from openid import fetchers
from openid.urinorm import urinorm


def url_hash(url):
    return hashlib.md5(url.encode("utf-8")).hexdigest()


def normalize_url(url):
    """
    Normalize an identity URL the way OpenID discovery does. Anything that
    can not be normalized is returned stripped but otherwise untouched.
    """
    url = (url or "").strip()
    if not url:
        return url
    if not re.match(r"^[a-z][a-z0-9+.\-]*://", url, re.I):
        url = "http://" + url
    try:
        return urinorm(url)
    except ValueError:
        return url


def from_timestamp(timestamp):
    # Always aware; the store converts to naive local time when USE_TZ is off
    return datetime.datetime.fromtimestamp(timestamp, tz=pytz.utc)


def trailingslash(url):
    return url if url.endswith("/") else url + "/"


def display_name_for(identity_url, length):
    parts = urlsplit(identity_url)
    if not parts.netloc:
        return identity_url
    host = re.sub(r"^www\.", "", parts.hostname or parts.netloc)
    path = parts.path[:length]
    if len(path) < len(parts.path):
        path += "…"
    return host + path


class TimeoutFetcher(fetchers.Urllib2Fetcher):

    def __init__(self, timeout):
        self.timeout = timeout

    def urlopen(self, req):
        return urllib.request.urlopen(req, timeout=self.timeout)


def install_fetcher(timeout):
    fetchers.setDefaultFetcher(TimeoutFetcher(timeout), wrap_exceptions=True)
