from django.contrib import admin

from .models import Analysis


@admin.register(Analysis)
class AnalysisAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "type", "is_fallback", "created_at")
    list_filter = ("type", "is_fallback", "created_at")
    search_fields = ("user__username", "user__email")
    readonly_fields = ("raw_data", "created_at")
