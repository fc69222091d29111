from django.urls import path

from .views import (
    AnalysisListView,
    AnalyzeFaceView,
    AnalyzeReportView,
    AnalyzeRiskView,
    ChatbotView,
    StatsView,
    UserAnalysesView,
)

urlpatterns = [
    path("analyze/report/", AnalyzeReportView.as_view(), name="api-analyze-report"),
    path("analyze/face/", AnalyzeFaceView.as_view(), name="api-analyze-face"),
    path("analyze/risk/", AnalyzeRiskView.as_view(), name="api-analyze-risk"),
    path("analyses/", AnalysisListView.as_view(), name="api-analyses"),
    path("analyses/user/", UserAnalysesView.as_view(), name="api-user-analyses"),
    path("stats/", StatsView.as_view(), name="api-stats"),
    path("chatbot/", ChatbotView.as_view(), name="api-chatbot"),
]
