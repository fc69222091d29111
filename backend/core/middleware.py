from django.conf import settings
from django.contrib.auth.middleware import RemoteUserMiddleware


class HostedIdentityMiddleware(RemoteUserMiddleware):
    """Authenticates requests carrying the identity provider's subject header.

    Requests without the header fall through to normal session auth. No
    header is read while ``IDENTITY_SUBJECT_HEADER`` is empty.
    """

    @property
    def header(self):
        return settings.IDENTITY_SUBJECT_HEADER
