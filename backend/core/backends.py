import logging

from django.conf import settings
from django.contrib.auth.backends import RemoteUserBackend
from django.contrib.auth.models import User
from django.db import IntegrityError, transaction

from .identity import read_identity_claims, sync_identity_user
from .models import UserProfile

logger = logging.getLogger(__name__)


class HostedIdentityBackend(RemoteUserBackend):
    """Trusts the subject id forwarded by the identity-aware proxy.

    Subjects resolve through ``UserProfile.external_id``. A subject is never
    matched to a local account by username, and accounts with a usable
    password cannot be reached through the header.
    """

    def authenticate(self, request, remote_user):
        if not remote_user or not settings.IDENTITY_SUBJECT_HEADER:
            return None
        subject = self.clean_username(remote_user)

        profile = UserProfile.objects.select_related("user").filter(external_id=subject).first()
        if profile:
            user, created = profile.user, False
        elif User.objects.filter(username=subject).exists():
            logger.warning("Identity subject %s collides with a local username; refusing", subject)
            return None
        else:
            try:
                with transaction.atomic():
                    user, created = User.objects.create_user(username=subject), True
            except IntegrityError:
                logger.warning("Identity subject %s was created concurrently; refusing", subject)
                return None

        if user.has_usable_password():
            logger.warning("Identity subject %s maps to a password account; refusing", subject)
            return None

        email, name = read_identity_claims(request)
        user = sync_identity_user(user, subject, email=email, name=name, created=created)
        return user if self.user_can_authenticate(user) else None
