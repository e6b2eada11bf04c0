from django.contrib.auth.backends import ModelBackend

from seqrly.identity import lookup_user_by_identity


class IdentityBackend(ModelBackend):
    """
    Authenticate a user from an identity URL the consumer engine has
    already verified.
    """

    def authenticate(self, request, identity_url=None, **kwargs):
        if identity_url is None:
            return None

        user = lookup_user_by_identity(identity_url)
        if user is not None and self.user_can_authenticate(user):
            return user
        return None
