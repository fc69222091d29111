from django import forms
from django.core.exceptions import ValidationError

from .context import MESSAGE_MAX_CHARS
from .models import Analysis
from .validators import FACE_CONTENT_TYPES, REPORT_CONTENT_TYPES, validate_upload


class ReportScanForm(forms.Form):
    file = forms.FileField(required=False, label="Report image")
    report_text = forms.CharField(
        required=False,
        widget=forms.Textarea(
            attrs={
                "rows": 8,
                "placeholder": (
                    "Or paste the report text, e.g.\n"
                    "Hemoglobin: 11.2 g/dL\n"
                    "Glucose: 140 mg/dL"
                ),
            }
        ),
        label="Report text (optional)",
    )

    def clean_file(self):
        upload = self.cleaned_data.get("file")
        if upload:
            validate_upload(upload, REPORT_CONTENT_TYPES)
        return upload

    def clean(self):
        cleaned_data = super().clean()
        report_text = (cleaned_data.get("report_text") or "").strip()
        if not cleaned_data.get("file") and not report_text and not self.errors:
            raise ValidationError("Upload a file or paste report text.")
        cleaned_data["report_text"] = report_text
        return cleaned_data


class FaceScanForm(forms.Form):
    file = forms.FileField(label="Face photo")

    def clean_file(self):
        return validate_upload(self.cleaned_data.get("file"), FACE_CONTENT_TYPES)


class AnalysisChoiceField(forms.ModelChoiceField):
    def label_from_instance(self, obj):
        return f"{obj.get_type_display()} from {obj.created_at:%b %d, %Y %H:%M}"


class HealthCheckForm(forms.Form):
    report_analysis = AnalysisChoiceField(queryset=Analysis.objects.none(), required=False, label="Report")
    face_analysis = AnalysisChoiceField(queryset=Analysis.objects.none(), required=False, label="Face scan")
    symptoms = forms.CharField(
        required=False,
        widget=forms.Textarea(attrs={"rows": 3, "placeholder": "Comma separated, e.g. itching, dry skin"}),
        help_text="Leave empty to use the symptoms saved in your profile.",
    )

    def __init__(self, user, *args, **kwargs):
        super().__init__(*args, **kwargs)
        owned = Analysis.objects.filter(user=user)
        self.fields["report_analysis"].queryset = owned.filter(type=Analysis.TYPE_REPORT)
        self.fields["face_analysis"].queryset = owned.filter(type=Analysis.TYPE_FACE)

    def clean(self):
        cleaned_data = super().clean()
        if not cleaned_data.get("report_analysis") and not cleaned_data.get("face_analysis") and not self.errors:
            raise ValidationError("Select a report or a face scan to include.")
        return cleaned_data

    def symptom_list(self) -> list[str]:
        text = self.cleaned_data.get("symptoms") or ""
        return [item.strip() for item in text.replace("\n", ",").split(",") if item.strip()]


class ChatForm(forms.Form):
    message = forms.CharField(
        max_length=MESSAGE_MAX_CHARS,
        widget=forms.Textarea(attrs={"rows": 2, "placeholder": "Ask about your health data..."}),
    )

    def clean_message(self):
        message = self.cleaned_data["message"].strip()
        if not message:
            raise ValidationError("Message is required")
        return message
