from django.conf import settings
from rest_framework import authentication


class HostedIdentityAuthentication(authentication.RemoteUserAuthentication):
    """Authenticates API calls forwarded by the identity-aware proxy.

    Disabled while ``IDENTITY_SUBJECT_HEADER`` is empty.
    """

    @property
    def header(self):
        return settings.IDENTITY_SUBJECT_HEADER

    def authenticate(self, request):
        if not self.header:
            return None
        return super().authenticate(request)

    def authenticate_header(self, request):
        return "Session"


class SessionAuthentication(authentication.SessionAuthentication):
    """Session auth that answers 401 rather than 403 when credentials are missing."""

    def authenticate_header(self, request):
        return "Session"
