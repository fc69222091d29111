from django.contrib.auth.models import User
from django.core.cache import cache
from django.test import Client, TestCase, override_settings
from django.urls import reverse

from .identity import identity_cache_key, sync_identity_user
from .models import UserProfile


class CoreAuthTests(TestCase):
    def setUp(self):
        self.client = Client()
        cache.clear()

    def test_signup_creates_user_and_profile(self):
        response = self.client.post(
            reverse("signup"),
            {
                "username": "alice",
                "email": "Alice@Example.com",
                "name": "Alice",
                "password1": "StrongPass123",
                "password2": "StrongPass123",
            },
        )
        self.assertEqual(response.status_code, 302)
        user = User.objects.get(username="alice")
        self.assertEqual(user.email, "alice@example.com")
        self.assertEqual(user.userprofile.name, "Alice")

    def test_signup_rejects_duplicate_email(self):
        User.objects.create_user(username="first", email="taken@example.com", password="pass12345")
        response = self.client.post(
            reverse("signup"),
            {
                "username": "second",
                "email": "TAKEN@example.com",
                "password1": "StrongPass123",
                "password2": "StrongPass123",
            },
        )
        self.assertEqual(response.status_code, 200)
        self.assertFalse(User.objects.filter(username="second").exists())

    def test_dashboard_shows_landing_page_when_anonymous(self):
        response = self.client.get(reverse("dashboard"))
        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "core/landing.html")

    def test_dashboard_shows_stats_when_logged_in(self):
        User.objects.create_user(username="bob", password="pass12345")
        self.client.login(username="bob", password="pass12345")
        response = self.client.get(reverse("dashboard"))
        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "core/dashboard.html")
        self.assertEqual(response.context["stats"]["total"], 0)

    def test_logout_logs_user_out(self):
        User.objects.create_user(username="bob", password="pass12345")
        self.client.login(username="bob", password="pass12345")
        response = self.client.post(reverse("logout"))
        self.assertEqual(response.status_code, 302)
        dashboard_response = self.client.get(reverse("dashboard"))
        self.assertTemplateUsed(dashboard_response, "core/landing.html")

    def test_profile_requires_login(self):
        response = self.client.get(reverse("profile"))
        self.assertEqual(response.status_code, 302)

    def test_profile_update_saves_health_fields(self):
        user = User.objects.create_user(username="carol", password="pass12345")
        self.client.login(username="carol", password="pass12345")
        response = self.client.post(
            reverse("profile"),
            {
                "name": "Carol",
                "age": "34",
                "gender": "female",
                "current_symptoms": "itching, dry skin\nredness",
                "medications": "none",
            },
        )
        self.assertEqual(response.status_code, 302)
        profile = UserProfile.objects.get(user=user)
        self.assertEqual(profile.age, 34)
        self.assertEqual(
            profile.as_user_data(),
            {"age": 34, "gender": "female", "symptoms": ["itching", "dry skin", "redness"], "medications": "none"},
        )

    def test_password_change_keeps_session(self):
        User.objects.create_user(username="dave", password="OldPass12345")
        self.client.login(username="dave", password="OldPass12345")
        response = self.client.post(
            reverse("password-change"),
            {"old_password": "OldPass12345", "new_password1": "NewPass67890!", "new_password2": "NewPass67890!"},
        )
        self.assertEqual(response.status_code, 302)
        self.assertEqual(self.client.get(reverse("profile")).status_code, 200)


@override_settings(IDENTITY_SUBJECT_HEADER="HTTP_X_IDENTITY_SUBJECT")
class HostedIdentityTests(TestCase):
    def setUp(self):
        self.client = Client()
        cache.clear()

    def _get(self, subject, **claims):
        headers = {"HTTP_X_IDENTITY_SUBJECT": subject}
        headers.update(claims)
        return self.client.get(reverse("dashboard"), **headers)

    def test_identity_header_creates_local_user_once(self):
        response = self._get(
            "idp_123", HTTP_X_IDENTITY_EMAIL="Eve@Example.com", HTTP_X_IDENTITY_NAME="Eve"
        )
        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "core/dashboard.html")

        self._get("idp_123", HTTP_X_IDENTITY_EMAIL="eve@example.com", HTTP_X_IDENTITY_NAME="Eve")
        self.assertEqual(User.objects.filter(username="idp_123").count(), 1)

        user = User.objects.get(username="idp_123")
        self.assertEqual(user.email, "eve@example.com")
        self.assertFalse(user.has_usable_password())
        self.assertEqual(user.userprofile.external_id, "idp_123")
        self.assertEqual(user.userprofile.name, "Eve")

    def test_conflicting_email_is_not_copied(self):
        User.objects.create_user(username="local", email="shared@example.com", password="pass12345")
        self._get("idp_456", HTTP_X_IDENTITY_EMAIL="shared@example.com")
        user = User.objects.get(username="idp_456")
        self.assertEqual(user.email, "")
        self.assertEqual(User.objects.filter(email__iexact="shared@example.com").count(), 1)

    def test_sync_skips_writes_while_claims_are_cached(self):
        user = User.objects.create_user(username="idp_789")
        sync_identity_user(user, "idp_789", email="frank@example.com", name="Frank", created=True)
        self.assertEqual(cache.get(identity_cache_key("idp_789")), "frank@example.com|Frank")

        UserProfile.objects.filter(user=user).update(name="Changed elsewhere")
        sync_identity_user(user, "idp_789", email="frank@example.com", name="Frank")
        self.assertEqual(UserProfile.objects.get(user=user).name, "Changed elsewhere")

        sync_identity_user(user, "idp_789", email="frank@example.com", name="Franklin")
        self.assertEqual(UserProfile.objects.get(user=user).name, "Franklin")

    def test_header_cannot_take_over_local_password_account(self):
        victim = User.objects.create_user(username="victim", password="pass12345")
        response = self._get("victim")
        self.assertTemplateUsed(response, "core/landing.html")
        self.assertIsNone(UserProfile.objects.get(user=victim).external_id)
        self.assertTrue(User.objects.get(pk=victim.pk).has_usable_password())

    def test_linked_password_account_is_refused(self):
        user = User.objects.create_user(username="linked", password="pass12345")
        UserProfile.objects.filter(user=user).update(external_id="idp_linked")
        response = self._get("idp_linked")
        self.assertTemplateUsed(response, "core/landing.html")

    def test_subject_resolves_through_external_id(self):
        self._get("idp_321")
        user = User.objects.get(username="idp_321")
        User.objects.filter(pk=user.pk).update(username="renamed")
        self.client.logout()
        response = self._get("idp_321")
        self.assertEqual(response.context["user"].pk, user.pk)
        self.assertEqual(User.objects.count(), 1)

    @override_settings(IDENTITY_SUBJECT_HEADER="")
    def test_header_is_ignored_unless_configured(self):
        response = self._get("idp_999")
        self.assertTemplateUsed(response, "core/landing.html")
        self.assertFalse(User.objects.filter(username="idp_999").exists())
