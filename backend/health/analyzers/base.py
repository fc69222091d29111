import abc
from typing import Any


class HealthAnalyzer(abc.ABC):
    """Operations every analyzer backend provides.

    ``structure_ocr_data`` returns ``{"metrics": [...], "problems_detected": [...],
    "treatments": [...], "summary": str}``; each metric has at least ``name`` and
    ``value``. ``interpret_face_metrics`` returns ``{"observations": str,
    "recommendations": str}``. The two text operations return Markdown.
    """

    name = "analyzer"

    @abc.abstractmethod
    def structure_ocr_data(self, raw_text: str) -> dict[str, Any]:
        ...

    @abc.abstractmethod
    def interpret_face_metrics(self, visual_metrics: list[dict]) -> dict[str, str]:
        ...

    @abc.abstractmethod
    def generate_risk_assessment(self, lab_data: Any, visual_metrics: Any, user_data: dict) -> str:
        ...

    @abc.abstractmethod
    def generate_health_insights(self, prompt: str) -> str:
        ...


def primary_visual_metrics(visual_metrics: Any) -> dict:
    """Visual metrics arrive either as the per-face list or a single dict."""
    if isinstance(visual_metrics, list):
        return visual_metrics[0] if visual_metrics and isinstance(visual_metrics[0], dict) else {}
    if isinstance(visual_metrics, dict):
        return visual_metrics
    return {}


def require_risk_inputs(lab_data: Any, visual_metrics: Any, user_data: Any) -> None:
    if not lab_data and not visual_metrics:
        raise ValueError("At least one data source (lab data or visual metrics) is required")
    if user_data is None:
        raise ValueError("User data is required")
