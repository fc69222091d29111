from django.contrib.auth.models import User
from django.db import models


class UserProfile(models.Model):

    GENDER_CHOICES = [
        ("female", "Female"),
        ("male", "Male"),
        ("other", "Other"),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE)

    # Subject id issued by the hosted identity provider, if any.
    external_id = models.CharField(max_length=191, unique=True, null=True, blank=True)
    name = models.CharField(max_length=100, blank=True)

    age = models.PositiveIntegerField(null=True, blank=True)
    gender = models.CharField(max_length=20, choices=GENDER_CHOICES, blank=True)
    current_symptoms = models.TextField(blank=True)
    medications = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.display_name

    @property
    def display_name(self) -> str:
        return self.name or self.user.get_full_name() or self.user.username

    def as_user_data(self) -> dict:
        symptoms = [s.strip() for s in self.current_symptoms.replace("\n", ",").split(",") if s.strip()]
        return {
            "age": self.age,
            "gender": self.gender,
            "symptoms": symptoms,
            "medications": self.medications,
        }
