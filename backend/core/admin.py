from django.contrib import admin

from .models import UserProfile


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "name", "external_id", "age", "gender", "updated_at")
    search_fields = ("user__username", "user__email", "name", "external_id")
    readonly_fields = ("external_id", "created_at", "updated_at")
