"""Chatbot prompt assembly.

Analyses are handled here as plain dicts in the same camelCase shape the
browser sends back (``type``, ``createdAt``, ``structuredData``,
``visualMetrics``, ``riskAssessment``, ``problemsDetected``, ``treatments``),
so cached rows and client-supplied rows go through the same rendering.
"""

import logging
import re
from datetime import date, datetime, timezone as dt_timezone

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from core.models import UserProfile
from .models import Analysis

logger = logging.getLogger(__name__)

CONTEXT_ANALYSES_LIMIT = 10
CONVERSATION_TURNS = 10
TURN_MAX_CHARS = 500
RISK_TEXT_MAX_CHARS = 1000
MESSAGE_MAX_CHARS = 2000

# Sort position for analyses without a usable date.
EARLIEST = datetime.min.replace(tzinfo=dt_timezone.utc)

RISK_LEVEL_RE = re.compile(r"Overall Risk Level\**\s*:?\**\s*:?\s*\**\s*(High|Moderate|Low)", re.IGNORECASE)

PLATFORM_KNOWLEDGE = """ABOUT SEHATSCAN:
SehatScan is an AI-powered health analytics platform that helps users understand and monitor their health.

1. MEDICAL REPORT ANALYSIS (Scan Report): upload lab reports; key metrics such as cholesterol,
   glucose and hemoglobin are extracted, explained and flagged when abnormal.
2. FACIAL HEALTH ANALYSIS (Scan Face): skin redness and yellowness are measured from a photo.
3. HEALTH CHECK: combines report data, facial metrics and reported symptoms into a
   dermatology-focused risk assessment.
4. HISTORY: every analysis is kept so metrics can be compared over time.
5. AI HEALTH ASSISTANT (this chatbot): answers questions using the user's own analyses.

IMPORTANT DISCLAIMERS:
- SehatScan provides health insights, NOT medical diagnoses
- Always consult healthcare professionals for medical decisions
"""

RESPONSE_GUIDELINES = """1. PERSONALIZATION: Reference the user's actual data when available. Use their name if known.
2. CONTEXT-AWARE: When discussing metrics, cite their specific values and dates.
3. TRENDS: When there are multiple analyses, identify and explain trends.
4. ACTIONABLE: Give specific advice grounded in their data.
5. EDUCATIONAL: Explain medical terms in simple language.
6. SAFE: Never diagnose. Recommend professional consultation for concerns.
7. PLATFORM-AWARE: Point users to relevant SehatScan features when helpful.

If the user hasn't uploaded any health data yet, encourage them to get started.
Respond conversationally and format with markdown."""


def chat_context_cache_key(user_id) -> str:
    return f"chatbot_ctx:{user_id}"


def analysis_snapshot(analysis: Analysis) -> dict:
    return {
        "id": analysis.pk,
        "type": analysis.type,
        "createdAt": analysis.created_at.isoformat(),
        "structuredData": analysis.structured_data,
        "visualMetrics": analysis.visual_metrics,
        "riskAssessment": analysis.risk_assessment,
        "problemsDetected": analysis.problems_detected,
        "treatments": analysis.treatments,
    }


def load_chat_context(user) -> dict:
    """Profile and latest analyses for ``user``, cached briefly."""

    def fetch():
        profile, _ = UserProfile.objects.get_or_create(user=user)
        analyses = [
            analysis_snapshot(item)
            for item in Analysis.objects.filter(user=user)[:CONTEXT_ANALYSES_LIMIT]
        ]
        return {
            "profile": {
                "name": profile.name or user.get_full_name() or None,
                "memberSince": _format_date(user.date_joined),
            },
            "analyses": analyses,
        }

    return cache.get_or_set(chat_context_cache_key(user.pk), fetch, settings.CACHE_TTL["SHORT"])


def _as_datetime(value):
    """Aware datetime for a datetime, date or ISO string; None when unusable."""
    if isinstance(value, str):
        try:
            value = parse_datetime(value) or parse_date(value)
        except ValueError:
            return None
    if isinstance(value, datetime):
        return value if timezone.is_aware(value) else timezone.make_aware(value, dt_timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=dt_timezone.utc)
    return None


def _sort_key(analysis: dict) -> datetime:
    return _as_datetime(analysis.get("createdAt")) or EARLIEST


def _format_date(value) -> str:
    parsed = _as_datetime(value)
    return parsed.strftime("%b %d, %Y") if parsed else "Unknown"


def _humanize(key: str) -> str:
    return str(key).replace("_", " ").title()


def _describe_item(item, title_key: str, detail_key: str) -> str:
    if not isinstance(item, dict):
        return str(item)
    title = item.get(title_key) or item.get("name") or ""
    detail = item.get(detail_key) or item.get("description") or ""
    severity = item.get("severity")
    if severity:
        title = f"{title} ({severity})"
    if title and detail:
        return f"{title}: {detail}"
    return title or detail or str(item)


def _render_report(index: int, analysis: dict) -> list[str]:
    lines = [f"[Report {index}] Date: {_format_date(analysis.get('createdAt'))}"]
    data = analysis.get("structuredData") or {}
    metrics = data.get("metrics") if isinstance(data, dict) else None
    if isinstance(metrics, list) and metrics:
        lines.append(f"  Metrics Found ({len(metrics)}):")
        for metric in metrics:
            if not isinstance(metric, dict):
                continue
            reading = " ".join(str(part) for part in (metric.get("value"), metric.get("unit")) if part)
            status = metric.get("status") or "normal"
            lines.append(f"    - {metric.get('name')}: {reading} [{status}]")
            if metric.get("reference_range"):
                lines.append(f"      Normal range: {metric['reference_range']}")
    if isinstance(data, dict) and data.get("summary"):
        lines.append(f"  Summary: {data['summary']}")

    problems = analysis.get("problemsDetected") or []
    if problems:
        lines.append("  Problems Detected:")
        lines += [f"    - {_describe_item(p, 'type', 'description')}" for p in problems]
    treatments = analysis.get("treatments") or []
    if treatments:
        lines.append("  Recommended Treatments:")
        lines += [f"    - {_describe_item(t, 'category', 'recommendation')}" for t in treatments]
    return lines


def _render_face(index: int, analysis: dict) -> list[str]:
    lines = [f"[Face Analysis {index}] Date: {_format_date(analysis.get('createdAt'))}"]
    visual = analysis.get("visualMetrics") or []
    if isinstance(visual, list) and visual and isinstance(visual[0], dict):
        lines.append("  Visual Health Indicators:")
        lines += [
            f"    * {_humanize(key)}: {value}"
            for key, value in visual[0].items()
            if value is not None and key != "face_index"
        ]
    data = analysis.get("structuredData") or {}
    if isinstance(data, dict):
        if data.get("observations"):
            lines.append(f"  Observations: {data['observations']}")
        if data.get("recommendations"):
            lines.append(f"  Recommendations: {data['recommendations']}")
    return lines


def _render_risk(index: int, analysis: dict) -> list[str]:
    lines = [f"[Health Check {index}] Date: {_format_date(analysis.get('createdAt'))}"]
    text = (analysis.get("riskAssessment") or "").strip()
    if text:
        if len(text) > RISK_TEXT_MAX_CHARS:
            text = text[:RISK_TEXT_MAX_CHARS] + "..."
        lines.append(f"  {text}")
    return lines


def _numeric(value) -> float | None:
    match = re.search(r"-?\d+(?:\.\d+)?", str(value or "").replace(",", ""))
    return float(match.group()) if match else None


def compute_metric_trends(analyses: list[dict]) -> list[dict]:
    """Earliest vs latest value for each metric present in two or more reports."""
    series = {}
    reports = [a for a in analyses if a.get("type") == Analysis.TYPE_REPORT]
    reports.sort(key=_sort_key)
    for report in reports:
        data = report.get("structuredData")
        metrics = data.get("metrics") if isinstance(data, dict) else None
        for metric in metrics or []:
            if not isinstance(metric, dict):
                continue
            value = _numeric(metric.get("value"))
            if value is None or "/" in str(metric.get("value")):
                continue
            key = str(metric.get("name", "")).strip().lower()
            entry = series.setdefault(
                key, {"name": metric.get("name"), "unit": metric.get("unit") or "", "points": []}
            )
            entry["points"].append((value, metric.get("status") or "normal"))

    trends = []
    for entry in series.values():
        points = entry["points"]
        if len(points) < 2:
            continue
        (first, first_status), (last, last_status) = points[0], points[-1]
        if first == last:
            direction = "stable"
        elif first_status != "normal" and last_status == "normal":
            direction = "improving"
        elif first_status == "normal" and last_status != "normal":
            direction = "worsening"
        elif last_status == "low":
            direction = "improving" if last > first else "worsening"
        elif last_status == "high":
            direction = "improving" if last < first else "worsening"
        else:
            direction = "stable"
        trends.append(
            {"name": entry["name"], "unit": entry["unit"], "first": first, "last": last, "direction": direction}
        )
    return trends


def _format_number(value: float) -> str:
    return f"{value:g}"


def build_user_context(analyses: list[dict], profile: dict | None = None) -> str:
    lines = []
    if profile:
        lines += [
            "USER PROFILE:",
            f"- Name: {profile.get('name') or 'Not provided'}",
            f"- Member since: {profile.get('memberSince') or 'Unknown'}",
            f"- Total analyses: {len(analyses)}",
            "",
        ]

    if not analyses:
        lines += [
            "HEALTH DATA: No health data available yet. The user hasn't uploaded any reports or analyses.",
            "SUGGESTION: Encourage the user to:",
            "- Upload a blood test or lab report in 'Scan Report'",
            "- Take a facial health analysis in 'Scan Face'",
            "- Run a Health Check once some data exists",
        ]
        return "\n".join(lines) + "\n"

    groups = [
        ("MEDICAL REPORTS", Analysis.TYPE_REPORT, _render_report),
        ("FACIAL HEALTH ANALYSES", Analysis.TYPE_FACE, _render_face),
        ("HEALTH CHECKS", Analysis.TYPE_RISK, _render_risk),
    ]
    counts = {}
    lines.append("USER'S HEALTH DATA SUMMARY:")
    lines.append("")
    for title, analysis_type, render in groups:
        items = [a for a in analyses if a.get("type") == analysis_type]
        counts[analysis_type] = len(items)
        if not items:
            continue
        lines.append(f"{title} ({len(items)} total):")
        for index, analysis in enumerate(items, start=1):
            lines.append("")
            lines += render(index, analysis)
        lines.append("")

    if len(analyses) > 1:
        ordered = sorted(analyses, key=_sort_key)
        latest = ordered[-1]
        lines += [
            "TEMPORAL CONTEXT:",
            f"- Health data spans: {_format_date(ordered[0].get('createdAt'))} to "
            f"{_format_date(latest.get('createdAt'))}",
            f"- Most recent analysis: {latest.get('type')} on {_format_date(latest.get('createdAt'))}",
            f"- Total analyses: {len(analyses)} ({counts[Analysis.TYPE_REPORT]} reports, "
            f"{counts[Analysis.TYPE_FACE]} facial, {counts[Analysis.TYPE_RISK]} health checks)",
            "",
        ]

    trends = compute_metric_trends(analyses)
    if trends:
        lines.append("TRENDS:")
        for trend in trends:
            unit = f" {trend['unit']}" if trend["unit"] else ""
            lines.append(
                f"- {trend['name']}: {_format_number(trend['first'])} -> "
                f"{_format_number(trend['last'])}{unit} [{trend['direction']}]"
            )
        lines.append("")

    return "\n".join(lines)


def build_conversation_context(messages) -> str:
    turns = [m for m in messages or [] if isinstance(m, dict) and m.get("content")]
    if not turns:
        return ""
    lines = ["Recent Conversation:"]
    for message in turns[-CONVERSATION_TURNS:]:
        role = "User" if message.get("role") == "user" else "Assistant"
        content = str(message["content"])
        if len(content) > TURN_MAX_CHARS:
            content = content[:TURN_MAX_CHARS] + "..."
        lines.append(f"{role}: {content}")
    return "\n".join(lines) + "\n"


def build_chat_prompt(message: str, user_context: str, conversation_context: str = "") -> str:
    return (
        "You are SehatScan's AI Health Assistant - a knowledgeable, empathetic and personalized health "
        "companion with access to the user's health profile and SehatScan platform knowledge.\n\n"
        f"=== SEHATSCAN PLATFORM KNOWLEDGE ===\n{PLATFORM_KNOWLEDGE}\n"
        f"=== USER CONTEXT ===\n{user_context}\n"
        f"=== CONVERSATION HISTORY ===\n{conversation_context}\n"
        f"=== CURRENT QUESTION ===\n{message}\n\n"
        f"=== YOUR RESPONSE GUIDELINES ===\n{RESPONSE_GUIDELINES}"
    )


def extract_risk_level(text: str) -> str | None:
    match = RISK_LEVEL_RE.search(text or "")
    return match.group(1).title() if match else None
