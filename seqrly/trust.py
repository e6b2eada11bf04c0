import hashlib

from seqrly.models import Delegation, TrustedSite
from seqrly.utils import nowfn


def site_hash(trust_root):
    return hashlib.md5(trust_root.encode("utf-8")).hexdigest()


class TrustState(object):
    """
    Per-user record of the relying parties a user has approved. Only storage;
    the provider engine decides what a record means.
    """

    def get(self, user):
        return dict((t.site_hash, t) for t in TrustedSite.objects.filter(user=user))

    def lookup(self, user, hash_):
        try:
            return TrustedSite.objects.get(user=user, site_hash=hash_)
        except TrustedSite.DoesNotExist:
            return None

    def put(self, user, hash_, url, last_login=None, release_attributes=False):
        site, _ = TrustedSite.objects.update_or_create(
            user=user,
            site_hash=hash_,
            defaults={
                "url": url,
                "last_login": last_login,
                "release_attributes": release_attributes,
            },
        )
        return site

    def touch(self, user, hash_):
        return TrustedSite.objects.filter(user=user, site_hash=hash_).update(last_login=nowfn()) > 0

    def remove(self, user, hash_):
        deleted, _ = TrustedSite.objects.filter(user=user, site_hash=hash_).delete()
        return deleted > 0

    def add_sites(self, user, urls):
        """
        Trust every URL in ``urls`` without a prompt. Returns how many new
        sites were added.
        """
        existing = self.get(user)
        count = 0

        for url in urls:
            url = url.strip()
            if not url:
                continue
            if not url.startswith("http"):
                url = "http://" + url

            hash_ = site_hash(url)
            if hash_ in existing:
                continue

            existing[hash_] = self.put(user, hash_, url)
            count += 1

        return count

    def remove_sites(self, user, hashes):
        deleted, _ = TrustedSite.objects.filter(user=user, site_hash__in=list(hashes)).delete()
        return deleted


def get_delegation(user):
    try:
        return user.seqrly_delegation
    except Delegation.DoesNotExist:
        return None


def set_delegation(user, url, services):
    delegation, _ = Delegation.objects.update_or_create(user=user, defaults={"url": url, "services": services})
    return delegation


def clear_delegation(user):
    deleted, _ = Delegation.objects.filter(user=user).delete()
    return deleted > 0
