import logging
import math
from dataclasses import dataclass
from typing import Any, Callable

from django.apps import apps
from django.conf import settings
from django.core.cache import cache
from django.db import DatabaseError
from django.db.models import Count, Max

from .analyzers import AIProviderError, HealthAnalyzer
from .context import (
    CONTEXT_ANALYSES_LIMIT,
    build_chat_prompt,
    build_conversation_context,
    build_user_context,
    chat_context_cache_key,
    extract_risk_level,
    load_chat_context,
)
from .face import analyze_face_image
from .models import Analysis

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

FALLBACK_WARNING = "AI service quota exceeded. Using fallback analysis with pattern matching."
NOT_CONFIGURED_WARNING = "AI service is not configured. Using fallback analysis with pattern matching."


@dataclass
class AnalysisOutcome:
    value: Any
    source: str
    fallback: bool = False
    warning: str = ""

    def annotate(self, payload: dict) -> dict:
        if self.fallback:
            payload["fallback"] = True
            payload["warning"] = self.warning
        return payload


class AnalysisService:
    """Runs analyzer tasks on the primary analyzer, falling back to the secondary
    when the primary is missing or reports a quota or rate-limit error."""

    def __init__(self, primary: HealthAnalyzer | None, fallback: HealthAnalyzer):
        self.primary = primary
        self.fallback = fallback

    def structure_report(self, raw_text: str) -> AnalysisOutcome:
        return self._run("structure_ocr_data", lambda analyzer: analyzer.structure_ocr_data(raw_text))

    def interpret_face(self, visual_metrics: list[dict]) -> AnalysisOutcome:
        return self._run("interpret_face_metrics", lambda analyzer: analyzer.interpret_face_metrics(visual_metrics))

    def assess_risk(self, lab_data, visual_metrics, user_data: dict) -> AnalysisOutcome:
        return self._run(
            "generate_risk_assessment",
            lambda analyzer: analyzer.generate_risk_assessment(lab_data, visual_metrics, user_data),
        )

    def chat(self, prompt: str) -> AnalysisOutcome:
        return self._run("generate_health_insights", lambda analyzer: analyzer.generate_health_insights(prompt))

    def _run(self, task: str, call: Callable[[HealthAnalyzer], Any]) -> AnalysisOutcome:
        if self.primary is None:
            logger.warning("No AI provider configured, running %s on %s", task, self.fallback.name)
            return AnalysisOutcome(call(self.fallback), self.fallback.name, True, NOT_CONFIGURED_WARNING)

        try:
            return AnalysisOutcome(call(self.primary), self.primary.name)
        except AIProviderError as exc:
            if not exc.kind.should_fall_back:
                logger.error("%s failed on %s (%s): %s", task, self.primary.name, exc.kind.value, exc)
                raise
            logger.warning(
                "%s hit %s on %s, falling back to %s", task, exc.kind.value, self.primary.name, self.fallback.name
            )
        return AnalysisOutcome(call(self.fallback), self.fallback.name, True, FALLBACK_WARNING)


def get_analysis_service() -> AnalysisService:
    return apps.get_app_config("health").analysis_service


def stats_cache_key(user_id) -> str:
    return f"user_stats:{user_id}"


def invalidate_user_caches(user_id) -> None:
    cache.delete_many([stats_cache_key(user_id), chat_context_cache_key(user_id)])


def save_analysis(
    user,
    analysis_type: str,
    raw_data: dict,
    *,
    structured_data=None,
    visual_metrics=None,
    risk_assessment: str = "",
    problems_detected=None,
    treatments=None,
    is_fallback: bool = False,
) -> Analysis:
    analysis = Analysis.objects.create(
        user=user,
        type=analysis_type,
        raw_data=raw_data,
        structured_data=structured_data,
        visual_metrics=visual_metrics,
        risk_assessment=risk_assessment or "",
        problems_detected=problems_detected,
        treatments=treatments,
        is_fallback=is_fallback,
    )
    invalidate_user_caches(user.pk)
    logger.info("Saved %s analysis %s for user %s (fallback=%s)", analysis_type, analysis.pk, user.pk, is_fallback)
    return analysis


def analyze_report_text(user, raw_text: str, service: AnalysisService | None = None, source: str = "upload"):
    service = service or get_analysis_service()
    outcome = service.structure_report(raw_text)
    data = outcome.value
    analysis = save_analysis(
        user,
        Analysis.TYPE_REPORT,
        {"raw_text": raw_text, "source": source, "analyzer": outcome.source},
        structured_data=data,
        problems_detected=data.get("problems_detected") or [],
        treatments=data.get("treatments") or [],
        is_fallback=outcome.fallback,
    )
    return analysis, outcome


def analyze_face_upload(user, upload, service: AnalysisService | None = None):
    """Measure the photo, have the analyzer interpret the metrics and persist both."""
    service = service or get_analysis_service()
    result = analyze_face_image(upload)
    outcome = service.interpret_face(result["visual_metrics"])
    result.update(outcome.value)

    raw_data = {key: value for key, value in result.items() if key != "annotated_image"}
    raw_data["analyzer"] = outcome.source
    analysis = save_analysis(
        user,
        Analysis.TYPE_FACE,
        raw_data,
        structured_data=outcome.value,
        visual_metrics=result["visual_metrics"],
        problems_detected=result["problems_detected"],
        treatments=result["treatments"],
        is_fallback=outcome.fallback,
    )
    return analysis, result, outcome


def assess_risk(user, lab_data, visual_metrics, user_data: dict, service: AnalysisService | None = None):
    service = service or get_analysis_service()
    outcome = service.assess_risk(lab_data, visual_metrics, user_data)
    analysis = save_analysis(
        user,
        Analysis.TYPE_RISK,
        {"lab_data": lab_data, "visual_metrics": visual_metrics, "user_data": user_data, "analyzer": outcome.source},
        structured_data={"overall_risk_level": extract_risk_level(outcome.value)},
        risk_assessment=outcome.value,
        is_fallback=outcome.fallback,
    )
    return analysis, outcome


def answer_chat(user, message: str, history=None, client_analyses=None, service: AnalysisService | None = None):
    service = service or get_analysis_service()
    profile = None
    analyses = []
    try:
        context = load_chat_context(user)
        profile = context["profile"]
        analyses = context["analyses"]
    except DatabaseError:
        logger.exception("Could not load chatbot context for user %s", user.pk)

    if not analyses:
        analyses = [item for item in client_analyses or [] if isinstance(item, dict)][:CONTEXT_ANALYSES_LIMIT]

    prompt = build_chat_prompt(
        message.strip(),
        build_user_context(analyses, profile),
        build_conversation_context(history),
    )
    return service.chat(prompt)


def validate_pagination(page, limit) -> tuple[int, int]:
    try:
        page = int(page) if page not in (None, "") else 1
        limit = int(limit) if limit not in (None, "") else DEFAULT_PAGE_SIZE
    except (TypeError, ValueError):
        raise ValueError("Invalid pagination parameters")
    if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValueError("Invalid pagination parameters")
    return page, limit


def list_user_analyses(user, analysis_type: str | None = None):
    queryset = Analysis.objects.filter(user=user)
    if analysis_type:
        queryset = queryset.filter(type=analysis_type)
    return queryset


def paginate_analyses(user, page=1, limit=DEFAULT_PAGE_SIZE, analysis_type: str | None = None) -> dict:
    page, limit = validate_pagination(page, limit)
    queryset = list_user_analyses(user, analysis_type)
    total = queryset.count()
    offset = (page - 1) * limit
    return {
        "analyses": list(queryset[offset : offset + limit]),
        "total": total,
        "page": page,
        "totalPages": math.ceil(total / limit),
    }


def recent_analyses(user, limit: int = 5) -> list[Analysis]:
    return list(Analysis.objects.filter(user=user)[:limit])


def get_user_analysis(user, analysis_id) -> Analysis | None:
    return Analysis.objects.filter(user=user, pk=analysis_id).first()


def get_dashboard_stats(user) -> dict:
    def compute():
        by_type = {analysis_type: 0 for analysis_type, _ in Analysis.TYPE_CHOICES}
        rows = (
            Analysis.objects.filter(user=user)
            .order_by()
            .values("type")
            .annotate(count=Count("id"), latest=Max("created_at"))
        )
        latest = None
        for row in rows:
            by_type[row["type"]] = row["count"]
            if latest is None or row["latest"] > latest:
                latest = row["latest"]
        return {
            "total": sum(by_type.values()),
            "by_type": by_type,
            "latest_at": latest.isoformat() if latest else None,
        }

    return cache.get_or_set(stats_cache_key(user.pk), compute, settings.CACHE_TTL["STATS"])
