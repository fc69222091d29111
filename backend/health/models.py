from django.contrib.auth.models import User
from django.db import models


class Analysis(models.Model):
    TYPE_REPORT = "report"
    TYPE_FACE = "face"
    TYPE_RISK = "risk"
    TYPE_CHOICES = [
        (TYPE_REPORT, "Medical report"),
        (TYPE_FACE, "Face scan"),
        (TYPE_RISK, "Health check"),
    ]

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="analyses")
    type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    raw_data = models.JSONField(default=dict)
    structured_data = models.JSONField(null=True, blank=True)
    visual_metrics = models.JSONField(null=True, blank=True)
    risk_assessment = models.TextField(blank=True)
    problems_detected = models.JSONField(null=True, blank=True)
    treatments = models.JSONField(null=True, blank=True)
    is_fallback = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["user", "type", "created_at"], name="analysis_user_type_created"),
        ]
        verbose_name_plural = "analyses"

    def __str__(self):
        return f"{self.user.username} - {self.type} - {self.created_at:%Y-%m-%d}"

    @property
    def metrics(self) -> list:
        data = self.structured_data or {}
        metrics = data.get("metrics") if isinstance(data, dict) else None
        return metrics if isinstance(metrics, list) else []

    @property
    def primary_visual_metrics(self) -> dict:
        if isinstance(self.visual_metrics, list) and self.visual_metrics:
            return self.visual_metrics[0] if isinstance(self.visual_metrics[0], dict) else {}
        return {}
