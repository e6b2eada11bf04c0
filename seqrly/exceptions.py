class SeqrlyError(Exception):
    """
    Base class for every failure the consumer and provider engines recover
    from. ``user_message`` is safe to show to the end user.
    """

    user_message = "OpenID authentication failed."

    def __init__(self, message=None, user_message=None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class DiscoveryError(SeqrlyError):
    user_message = "Could not discover an OpenID identity server endpoint."


class AssociationError(SeqrlyError):
    user_message = "Could not establish a shared secret with the OpenID provider."


class SignatureError(SeqrlyError):
    pass


class ReplayError(SeqrlyError):
    pass


class AuthorizationError(SeqrlyError):
    user_message = "You are not allowed to use this identity."


class DelegationConflictError(SeqrlyError):
    user_message = "Because you have delegated your OpenID, you must use your full OpenID when logging in."


class TransportError(SeqrlyError):
    user_message = "The OpenID message could not be understood."
