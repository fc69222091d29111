from django.contrib import messages
from django.contrib.auth import login, logout, update_session_auth_hash
from django.contrib.auth.decorators import login_required
from django.contrib.auth.forms import PasswordChangeForm
from django.shortcuts import redirect, render

from core.forms import LoginForm, SignupForm, UserProfileForm
from core.models import UserProfile
from health.services import get_dashboard_stats, recent_analyses


def signup_view(request):
    if request.user.is_authenticated:
        return redirect("dashboard")

    form = SignupForm(request.POST or None)
    if request.method == "POST" and form.is_valid():
        user = form.save()
        login(request, user, backend="django.contrib.auth.backends.ModelBackend")
        messages.success(request, "Account created successfully.")
        return redirect("profile")
    return render(request, "core/signup.html", {"form": form})


def login_view(request):
    if request.user.is_authenticated:
        return redirect("dashboard")

    form = LoginForm(request, data=request.POST or None)
    if request.method == "POST" and form.is_valid():
        login(request, form.get_user())
        messages.success(request, "Login successful.")
        return redirect("dashboard")
    return render(request, "core/login.html", {"form": form})


def dashboard_view(request):
    if not request.user.is_authenticated:
        return render(request, "core/landing.html")

    profile, _ = UserProfile.objects.get_or_create(user=request.user)
    return render(
        request,
        "core/dashboard.html",
        {
            "profile": profile,
            "stats": get_dashboard_stats(request.user),
            "recent": recent_analyses(request.user, limit=5),
        },
    )


@login_required
def profile_view(request):
    profile, _ = UserProfile.objects.get_or_create(user=request.user)
    form = UserProfileForm(request.POST or None, instance=profile)
    if request.method == "POST" and form.is_valid():
        form.save()
        messages.success(request, "Profile updated.")
        return redirect("dashboard")
    return render(
        request,
        "core/profile.html",
        {"form": form, "profile": profile, "stats": get_dashboard_stats(request.user)},
    )


@login_required
def password_change_view(request):
    if not request.user.has_usable_password():
        messages.info(request, "Your password is managed by your identity provider.")
        return redirect("profile")

    form = PasswordChangeForm(request.user, request.POST or None)
    if request.method == "POST" and form.is_valid():
        user = form.save()
        update_session_auth_hash(request, user)
        messages.success(request, "Password changed.")
        return redirect("profile")
    return render(request, "core/password_change.html", {"form": form})


@login_required
def logout_view(request):
    if request.method == "POST":
        logout(request)
        return redirect("login")
    return redirect("dashboard")
