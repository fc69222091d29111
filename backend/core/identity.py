"""Local mirror of users authenticated by the hosted identity provider.

The provider owns credentials; this module only keeps a ``User`` row and a
``UserProfile`` in step with what the provider reports, so analyses can be
scoped to a local foreign key.
"""
import logging

from django.conf import settings
from django.contrib.auth.models import User
from django.core.cache import cache
from django.db import transaction

from .models import UserProfile

logger = logging.getLogger(__name__)


def identity_cache_key(subject: str) -> str:
    return f"identity_user:{subject}"


def read_identity_claims(request) -> tuple[str, str]:
    email = (request.META.get(settings.IDENTITY_EMAIL_HEADER) or "").strip().lower()
    name = (request.META.get(settings.IDENTITY_NAME_HEADER) or "").strip()[:100]
    return email, name


def sync_identity_user(user: User, subject: str, email: str = "", name: str = "", created: bool = False) -> User:
    """Idempotently copy provider claims onto the local user mirror.

    A cached fingerprint of the last synced claims skips the writes while it
    is fresh. An email already owned by another account is never copied, so
    email uniqueness holds across local and provider-backed users.
    """
    key = identity_cache_key(subject)
    fingerprint = f"{email}|{name}"
    if not created and cache.get(key) == fingerprint:
        return user

    with transaction.atomic():
        user_fields = []
        if created:
            user.set_unusable_password()
            user_fields.append("password")
        if email and user.email != email:
            taken = User.objects.filter(email__iexact=email).exclude(pk=user.pk).exists()
            if taken:
                logger.warning("Identity %s reported an email owned by another account", subject)
            else:
                user.email = email
                user_fields.append("email")
        if user_fields:
            user.save(update_fields=user_fields)

        profile, _ = UserProfile.objects.get_or_create(user=user)
        profile_fields = []
        if profile.external_id != subject:
            profile.external_id = subject
            profile_fields.append("external_id")
        if name and profile.name != name:
            profile.name = name
            profile_fields.append("name")
        if profile_fields:
            profile.save(update_fields=profile_fields + ["updated_at"])

    if created:
        logger.info("Created local user for identity subject %s", subject)
    cache.set(key, fingerprint, settings.CACHE_TTL["USER"])
    return user
