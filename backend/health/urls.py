from django.urls import path

from .views import (
    analysis_detail_view,
    chatbot_view,
    health_check_view,
    history_view,
    scan_face_view,
    scan_report_view,
)

urlpatterns = [
    path("scan-report/", scan_report_view, name="scan-report"),
    path("scan-face/", scan_face_view, name="scan-face"),
    path("health-check/", health_check_view, name="health-check"),
    path("history/", history_view, name="history"),
    path("analyses/<int:analysis_id>/", analysis_detail_view, name="analysis-detail"),
    path("chatbot/", chatbot_view, name="chatbot"),
]
