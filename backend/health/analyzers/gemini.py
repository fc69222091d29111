import json
import logging
from typing import Any

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from .base import HealthAnalyzer, primary_visual_metrics, require_risk_inputs
from .errors import AIErrorKind, AIProviderError

logger = logging.getLogger(__name__)


STRUCTURE_PROMPT = """You are a medical data extraction expert. Analyze the following medical report text and extract structured health metrics.

Medical Report Text:
{raw_text}

Return ONLY a valid JSON object with this exact shape:
{{
  "metrics": [
    {{"name": "Hemoglobin", "value": "13.5", "unit": "g/dL", "reference_range": "12-16", "status": "normal"}}
  ],
  "problems_detected": [
    {{"type": "Low Hemoglobin", "severity": "moderate", "description": "...", "confidence": 0.9}}
  ],
  "treatments": [
    {{"category": "Dietary Changes", "recommendation": "...", "priority": "high"}}
  ],
  "summary": "one or two sentence overview"
}}

Rules:
- status is one of "low", "normal", "high" when a reference range is known.
- severity is one of "mild", "moderate", "severe".
- Include every measurable value (blood pressure, glucose, cholesterol, hemoglobin, vitals).
- If nothing measurable is present return an empty metrics list and explain in summary.
"""

FACE_PROMPT = """You are a dermatology-focused health assistant. Interpret these facial skin metrics measured from a photo:

{metrics}

redness_percentage and yellowness_percentage are 0-100 scores derived from average skin color.

Return ONLY a valid JSON object:
{{"observations": "what the metrics suggest, plain language", "recommendations": "practical next steps"}}

Be cautious: this is not a diagnosis. Mention when a dermatologist visit is advisable.
"""

RISK_PROMPT = """You are a health risk assessment assistant. Combine the available data into a short risk assessment.

Lab data:
{lab_data}

Facial visual metrics:
{visual_metrics}

User information:
{user_data}

Write Markdown with these sections:
## Overall Risk Level
One of Low, Moderate or High, followed by one sentence.
## Key Findings
## Recommendations
## When to See a Doctor

Do not invent values that are not in the data. Remind the user this is not a medical diagnosis.
"""


def parse_json_response(content: str) -> dict | None:
    value = (content or "").strip()
    if not value:
        return None

    if value.startswith("```"):
        value = value.strip("`").strip()
        if value.lower().startswith("json"):
            value = value[4:].strip()

    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        start = value.find("{")
        end = value.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            parsed = json.loads(value[start : end + 1])
        except json.JSONDecodeError:
            return None
    return parsed if isinstance(parsed, dict) else None


def classify_google_error(exc: Exception) -> AIProviderError:
    # ResourceExhausted subclasses TooManyRequests, so it is checked first.
    if isinstance(exc, google_exceptions.ResourceExhausted):
        return AIProviderError(AIErrorKind.QUOTA_EXCEEDED, str(exc))
    if isinstance(exc, google_exceptions.TooManyRequests):
        return AIProviderError(AIErrorKind.RATE_LIMITED, str(exc))
    return AIProviderError(AIErrorKind.SERVICE, str(exc))


def _coerce_to_text(value) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        return "\n".join(str(item).strip() for item in value if str(item).strip())
    if isinstance(value, dict):
        return "\n".join(
            f"{str(key).replace('_', ' ').title()}: {str(item).strip()}"
            for key, item in value.items()
            if str(item).strip()
        )
    if value is None:
        return ""
    return str(value).strip()


def _normalize_metrics(items) -> list[dict]:
    metrics = []
    for item in items or []:
        if not isinstance(item, dict) or not str(item.get("name", "")).strip():
            continue
        metric = {"name": str(item["name"]).strip(), "value": str(item.get("value", "")).strip()}
        for key in ("unit", "reference_range", "status"):
            if item.get(key):
                metric[key] = str(item[key]).strip()
        metrics.append(metric)
    return metrics


def _dict_items(items) -> list[dict]:
    return [item for item in items or [] if isinstance(item, dict)]


class GeminiAnalyzer(HealthAnalyzer):
    name = "gemini"

    def __init__(self, api_key: str, model_name: str = "gemini-2.0-flash"):
        if not api_key:
            raise ValueError("Gemini API key is required. Set GEMINI_API_KEY.")
        genai.configure(api_key=api_key)
        self.model_name = model_name
        self._model = genai.GenerativeModel(model_name)

    def _generate(self, prompt: str, temperature: float, max_output_tokens: int | None = None) -> str:
        config = genai.GenerationConfig(temperature=temperature, max_output_tokens=max_output_tokens)
        try:
            response = self._model.generate_content(prompt, generation_config=config)
        except google_exceptions.GoogleAPIError as exc:
            raise classify_google_error(exc) from exc
        except Exception as exc:
            # Transport failures outside the google.api_core hierarchy.
            logger.exception("Gemini (%s) request failed", self.model_name)
            raise AIProviderError(AIErrorKind.SERVICE, str(exc)) from exc

        try:
            text = response.text
        except ValueError as exc:
            # Raised when the candidate was blocked or carries no text parts.
            raise AIProviderError(AIErrorKind.INVALID_RESPONSE, str(exc)) from exc
        if not (text or "").strip():
            raise AIProviderError(AIErrorKind.INVALID_RESPONSE, "Empty response from Gemini")
        return text.strip()

    def _generate_json(self, prompt: str, temperature: float) -> dict:
        content = self._generate(prompt, temperature)
        parsed = parse_json_response(content)
        if parsed is None:
            logger.warning("Gemini (%s) returned non-JSON content: %.200s", self.model_name, content)
            raise AIProviderError(AIErrorKind.INVALID_RESPONSE, "AI response was not valid JSON")
        return parsed

    def structure_ocr_data(self, raw_text: str) -> dict[str, Any]:
        if not (raw_text or "").strip():
            raise ValueError("Raw text is required for structuring")

        parsed = self._generate_json(STRUCTURE_PROMPT.format(raw_text=raw_text), temperature=0.1)
        if not isinstance(parsed.get("metrics"), list):
            raise AIProviderError(AIErrorKind.INVALID_RESPONSE, "AI response is missing a metrics list")
        return {
            "metrics": _normalize_metrics(parsed["metrics"]),
            "problems_detected": _dict_items(parsed.get("problems_detected")),
            "treatments": _dict_items(parsed.get("treatments")),
            "summary": _coerce_to_text(parsed.get("summary")),
        }

    def interpret_face_metrics(self, visual_metrics: list[dict]) -> dict[str, str]:
        if not visual_metrics:
            raise ValueError("Visual metrics are required for interpretation")

        prompt = FACE_PROMPT.format(metrics=json.dumps(visual_metrics, indent=2))
        parsed = self._generate_json(prompt, temperature=0.3)
        observations = _coerce_to_text(parsed.get("observations"))
        recommendations = _coerce_to_text(parsed.get("recommendations"))
        if not observations or not recommendations:
            raise AIProviderError(AIErrorKind.INVALID_RESPONSE, "AI response is missing observations")
        return {"observations": observations, "recommendations": recommendations}

    def generate_risk_assessment(self, lab_data: Any, visual_metrics: Any, user_data: dict) -> str:
        require_risk_inputs(lab_data, visual_metrics, user_data)
        prompt = RISK_PROMPT.format(
            lab_data=json.dumps(lab_data, indent=2, default=str) if lab_data else "Not provided",
            visual_metrics=(
                json.dumps(primary_visual_metrics(visual_metrics), indent=2) if visual_metrics else "Not provided"
            ),
            user_data=json.dumps(user_data, indent=2, default=str),
        )
        return self._generate(prompt, temperature=0.3)

    def generate_health_insights(self, prompt: str) -> str:
        if not (prompt or "").strip():
            raise ValueError("Prompt is required")
        return self._generate(prompt, temperature=0.4, max_output_tokens=1000)
