from django.utils import timezone
from rest_framework import status
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from health.analyzers import AIProviderError
from health.context import MESSAGE_MAX_CHARS
from health.ocr import extract_text_from_image
from health.services import (
    analyze_face_upload,
    analyze_report_text,
    answer_chat,
    assess_risk,
    get_dashboard_stats,
    list_user_analyses,
    paginate_analyses,
)
from health.validators import FACE_CONTENT_TYPES, REPORT_CONTENT_TYPES, ensure_report_processable, validate_upload
from .serializers import (
    AnalysisListQuerySerializer,
    AnalysisSerializer,
    AnalysisTypeQuerySerializer,
    ChatRequestSerializer,
    RiskRequestSerializer,
)


class AnalyzeReportView(APIView):
    parser_classes = [MultiPartParser, FormParser]

    def post(self, request):
        upload = validate_upload(request.FILES.get("file"), REPORT_CONTENT_TYPES)
        ensure_report_processable(upload)
        raw_text = extract_text_from_image(upload)

        analysis, outcome = analyze_report_text(request.user, raw_text)
        payload = {
            "success": True,
            "raw_text": raw_text,
            "structured_data": outcome.value,
            "analysis_id": analysis.pk,
        }
        return Response(outcome.annotate(payload), status=status.HTTP_200_OK)


class AnalyzeFaceView(APIView):
    parser_classes = [MultiPartParser, FormParser]

    def post(self, request):
        upload = validate_upload(request.FILES.get("file"), FACE_CONTENT_TYPES)
        analysis, result, outcome = analyze_face_upload(request.user, upload)
        payload = {"success": True, **result, "analysis_id": analysis.pk}
        return Response(outcome.annotate(payload), status=status.HTTP_200_OK)


class AnalyzeRiskView(APIView):
    def post(self, request):
        serializer = RiskRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        analysis, outcome = assess_risk(
            request.user, data.get("lab_data"), data.get("visual_metrics"), data["user_data"]
        )
        payload = {
            "success": True,
            "risk_assessment": outcome.value,
            "analysis_id": analysis.pk,
        }
        return Response(outcome.annotate(payload), status=status.HTTP_200_OK)


class AnalysisListView(APIView):
    def get(self, request):
        query = AnalysisListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data

        page = paginate_analyses(request.user, params["page"], params["limit"], params.get("type"))
        page["analyses"] = AnalysisSerializer(page["analyses"], many=True).data
        return Response(page)


class UserAnalysesView(APIView):
    def get(self, request):
        query = AnalysisTypeQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        analyses = list_user_analyses(request.user, query.validated_data.get("type"))
        return Response({"success": True, "analyses": AnalysisSerializer(analyses, many=True).data})


class StatsView(APIView):
    def get(self, request):
        return Response(get_dashboard_stats(request.user))


class ChatbotView(APIView):
    def post(self, request):
        serializer = ChatRequestSerializer(data=request.data)
        if not serializer.is_valid():
            raw_message = request.data.get("message") if hasattr(request.data, "get") else None
            if "message" not in serializer.errors:
                message = "Invalid request format"
            elif isinstance(raw_message, str) and len(raw_message) > MESSAGE_MAX_CHARS:
                message = f"Message is too long (max {MESSAGE_MAX_CHARS} characters)"
            else:
                message = "Message is required"
            return Response(
                {"success": False, "error": message, "errorType": "validation"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        data = serializer.validated_data

        try:
            outcome = answer_chat(
                request.user,
                data["message"],
                history=data["conversationHistory"],
                client_analyses=data["userAnalyses"],
            )
        except AIProviderError as exc:
            return Response(
                {
                    "success": False,
                    "error": exc.user_message,
                    "errorType": "rate_limit" if exc.kind.should_fall_back else "service",
                },
                status=exc.kind.http_status,
            )

        payload = {"success": True, "response": outcome.value, "timestamp": timezone.now().isoformat()}
        return Response(outcome.annotate(payload), status=status.HTTP_200_OK)
