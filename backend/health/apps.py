import logging

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class HealthConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "health"

    analysis_service = None

    def ready(self):
        from .analyzers import create_analyzer
        from .services import AnalysisService

        primary = None
        if settings.GEMINI_API_KEY:
            primary = create_analyzer("gemini", api_key=settings.GEMINI_API_KEY, model_name=settings.GEMINI_MODEL)
        else:
            logger.warning("GEMINI_API_KEY is not set; analyses will use the mock analyzer")
        self.analysis_service = AnalysisService(primary=primary, fallback=create_analyzer("mock"))
