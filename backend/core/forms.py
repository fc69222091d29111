from django import forms
from django.contrib.auth.forms import AuthenticationForm, UserCreationForm
from django.contrib.auth.models import User

from .models import UserProfile


class SignupForm(UserCreationForm):
    email = forms.EmailField(required=True)
    name = forms.CharField(required=False, max_length=100)

    class Meta:
        model = User
        fields = ("username", "email", "name", "password1", "password2")

    def clean_email(self):
        email = self.cleaned_data["email"].strip().lower()
        if User.objects.filter(email__iexact=email).exists():
            raise forms.ValidationError("An account with this email already exists.")
        return email

    def save(self, commit=True):
        user = super().save(commit=False)
        user.email = self.cleaned_data["email"]
        if commit:
            user.save()
            profile = user.userprofile
            profile.name = (self.cleaned_data.get("name") or "").strip()
            profile.save(update_fields=["name", "updated_at"])
        return user


class LoginForm(AuthenticationForm):
    username = forms.CharField(max_length=150)


class UserProfileForm(forms.ModelForm):
    class Meta:
        model = UserProfile
        fields = ("name", "age", "gender", "current_symptoms", "medications")
        widgets = {
            "current_symptoms": forms.Textarea(
                attrs={"rows": 3, "placeholder": "Comma separated, e.g. itching, dry skin"}
            ),
            "medications": forms.Textarea(attrs={"rows": 3}),
        }

    def clean_name(self):
        name = (self.cleaned_data.get("name") or "").strip()
        if not name:
            raise forms.ValidationError("Name is required.")
        return name
