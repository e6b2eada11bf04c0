from django.conf import settings
from django.db import models


class Nonce(models.Model):

    key = models.CharField(max_length=64, unique=True)
    server_url = models.CharField(max_length=2047)
    salt = models.CharField(max_length=40)
    timestamp = models.PositiveIntegerField()
    expires = models.DateTimeField(db_index=True)

    def __str__(self):
        return "Nonce: %s for %s" % (self.salt, self.server_url)


class Association(models.Model):

    key = models.CharField(max_length=64, unique=True)
    server_key = models.CharField(max_length=64, db_index=True)
    assoc_type = models.CharField(max_length=64)

    server_url = models.CharField(max_length=2047)
    handle = models.CharField(max_length=255)
    secret = models.TextField()
    lifetime = models.PositiveIntegerField()
    issued = models.DateTimeField()
    expires = models.DateTimeField(db_index=True)

    def __str__(self):
        return "Association: %s, %s" % (self.server_url, self.handle)


class TrustedSite(models.Model):

    user = models.ForeignKey(settings.AUTH_USER_MODEL, related_name="seqrly_trusted_sites", on_delete=models.CASCADE)
    site_hash = models.CharField(max_length=32)
    url = models.CharField(max_length=2047)
    last_login = models.DateTimeField(null=True, blank=True)
    release_attributes = models.BooleanField(default=False)

    class Meta:
        unique_together = ("user", "site_hash")
        permissions = [
            ("use_seqrly_provider", "Can use this site as an OpenID provider"),
        ]

    def __str__(self):
        return self.url


class Delegation(models.Model):

    user = models.OneToOneField(settings.AUTH_USER_MODEL, related_name="seqrly_delegation", on_delete=models.CASCADE)
    url = models.CharField(max_length=2047)
    services = models.JSONField(default=list)

    def __str__(self):
        return "%s delegates to %s" % (self.user, self.url)


class Identity(models.Model):

    user = models.ForeignKey(settings.AUTH_USER_MODEL, related_name="seqrly_identities", on_delete=models.CASCADE)
    url = models.TextField()
    hash = models.CharField(max_length=32, unique=True)
    created = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = "identities"

    def __str__(self):
        return "%s can log in with %s" % (self.user, self.url)
