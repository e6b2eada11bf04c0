from django.dispatch import Signal


# Sent by ConsumerEngine.finish with identity_url, action, data, result and
# request once a provider response has been verified (or has failed).
auth_finished = Signal()
