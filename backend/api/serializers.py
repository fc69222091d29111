from rest_framework import serializers

from health.context import MESSAGE_MAX_CHARS
from health.models import Analysis
from health.services import MAX_PAGE_SIZE


class AnalysisSerializer(serializers.ModelSerializer):
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    rawData = serializers.JSONField(source="raw_data", read_only=True)
    structuredData = serializers.JSONField(source="structured_data", read_only=True)
    visualMetrics = serializers.JSONField(source="visual_metrics", read_only=True)
    riskAssessment = serializers.CharField(source="risk_assessment", read_only=True)
    problemsDetected = serializers.JSONField(source="problems_detected", read_only=True)
    isFallback = serializers.BooleanField(source="is_fallback", read_only=True)

    class Meta:
        model = Analysis
        fields = (
            "id",
            "type",
            "createdAt",
            "rawData",
            "structuredData",
            "visualMetrics",
            "riskAssessment",
            "problemsDetected",
            "treatments",
            "isFallback",
        )


class AnalysisListQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(min_value=1, default=1)
    limit = serializers.IntegerField(min_value=1, max_value=MAX_PAGE_SIZE, default=10)
    type = serializers.ChoiceField(choices=Analysis.TYPE_CHOICES, required=False)


class AnalysisTypeQuerySerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=Analysis.TYPE_CHOICES, required=False)


class RiskRequestSerializer(serializers.Serializer):
    PERCENTAGE_FIELDS = ("redness_percentage", "yellowness_percentage")

    lab_data = serializers.JSONField(required=False, allow_null=True)
    visual_metrics = serializers.JSONField(required=False, allow_null=True)
    user_data = serializers.DictField()

    def validate_visual_metrics(self, value):
        if not value:
            return value
        entries = value if isinstance(value, list) else [value]
        cleaned = []
        for entry in entries:
            if not isinstance(entry, dict):
                raise serializers.ValidationError("Each visual metrics entry must be an object")
            entry = dict(entry)
            for key in self.PERCENTAGE_FIELDS:
                if entry.get(key) is None:
                    continue
                try:
                    entry[key] = serializers.FloatField(min_value=0, max_value=100).run_validation(entry[key])
                except serializers.ValidationError as exc:
                    raise serializers.ValidationError({key: exc.detail})
            cleaned.append(entry)
        return cleaned

    def validate(self, attrs):
        if not attrs.get("lab_data") and not attrs.get("visual_metrics"):
            raise serializers.ValidationError("At least one of lab_data or visual_metrics is required")
        return attrs


class ChatMessageSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=("user", "assistant"))
    content = serializers.CharField(allow_blank=True, trim_whitespace=False)


class ChatRequestSerializer(serializers.Serializer):
    message = serializers.CharField(max_length=MESSAGE_MAX_CHARS)
    userAnalyses = serializers.ListField(child=serializers.DictField(), required=False, default=list)
    conversationHistory = ChatMessageSerializer(many=True, required=False, default=list)
