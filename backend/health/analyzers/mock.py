import logging
import re
from typing import Any

from .base import HealthAnalyzer, primary_visual_metrics, require_risk_inputs

logger = logging.getLogger(__name__)


# (pattern, metric name, unit). A unit of None keeps the unit found in the text.
METRIC_PATTERNS = [
    (r"hemoglobin[:\s]+([0-9.]+)\s*(g/dl|gm/dl)", "Hemoglobin", "g/dL"),
    (r"\bhb[:\s]+([0-9.]+)\s*(g/dl|gm/dl)", "Hemoglobin", "g/dL"),
    (r"white blood cells?[:\s]+([0-9,]+)\s*(cells?/[μu]l|/[μu]l)", "White Blood Cells", "cells/μL"),
    (r"\bwbc[:\s]+([0-9,]+)\s*(cells?/[μu]l|/[μu]l)", "White Blood Cells", "cells/μL"),
    (r"cholesterol[:\s]+([0-9.]+)\s*(mg/dl)", "Total Cholesterol", "mg/dL"),
    (r"blood sugar[:\s]+([0-9.]+)\s*(mg/dl)", "Blood Sugar", "mg/dL"),
    (r"glucose[:\s]+([0-9.]+)\s*(mg/dl)", "Glucose", "mg/dL"),
    (r"blood pressure[:\s]+([0-9]+/[0-9]+)\s*(mmhg|mm hg)?", "Blood Pressure", "mmHg"),
    (r"\bbp[:\s]+([0-9]+/[0-9]+)\s*(mmhg|mm hg)?", "Blood Pressure", "mmHg"),
    (r"heart rate[:\s]+([0-9]+)\s*(bpm|beats/min)?", "Heart Rate", "bpm"),
    (r"pulse[:\s]+([0-9]+)\s*(bpm|beats/min)?", "Heart Rate", "bpm"),
    (r"temperature[:\s]+([0-9.]+)\s*(°f|°c|f|c)\b", "Temperature", None),
    (r"weight[:\s]+([0-9.]+)\s*(kg|lbs|pounds)", "Weight", None),
    (r"height[:\s]+([0-9.]+)\s*(cm|ft|feet|inches)", "Height", None),
]

UNIT_ALIASES = {
    "°f": "°F",
    "f": "°F",
    "°c": "°C",
    "c": "°C",
    "pounds": "lbs",
    "feet": "ft",
}

CURRENT_QUESTION_RE = re.compile(r"=== CURRENT QUESTION ===\s*\n([^\n]+)", re.IGNORECASE)
NAME_RE = re.compile(r"Name:\s*([^\n]+)", re.IGNORECASE)
CONTEXT_METRIC_RE = re.compile(
    r"^ {4}- (?P<name>[^:\n]+): (?P<value>[^\[\n]+)\[(?P<status>[a-z]+)\]", re.MULTILINE
)

SYMPTOM_PATTERNS = {
    "active": re.compile(r"itch|rash|burn|stinging|redness|peel", re.IGNORECASE),
    "acne": re.compile(r"acne|oily|breakout", re.IGNORECASE),
    "dry": re.compile(r"dry|flaky|itch|peel", re.IGNORECASE),
    "irritated": re.compile(r"redness|burn|stinging|rash", re.IGNORECASE),
}

MOCK_NOTE = (
    "*Note: This assessment was generated using mock analysis because the AI service "
    "was unavailable. Results will be more detailed once the AI service is reachable.*"
)


def _to_float(value) -> float | None:
    if value is None:
        return None
    try:
        return float(re.sub(r"[^0-9.]", "", str(value)))
    except ValueError:
        return None


def _percent(value) -> str:
    return f"{value:g}%"


def _section(prompt: str, header: str) -> str:
    """Return the block under ``header`` up to the next blank line."""
    start = prompt.find(header)
    if start == -1:
        return ""
    end = prompt.find("\n\n", start)
    return prompt[start:end if end != -1 else None].strip()


class MockAnalyzer(HealthAnalyzer):
    """Deterministic analyzer used when the remote provider is unavailable."""

    name = "mock"

    def structure_ocr_data(self, raw_text: str) -> dict[str, Any]:
        if not (raw_text or "").strip():
            raise ValueError("Raw text cannot be empty")

        metrics = []
        seen = set()
        for pattern, name, unit in METRIC_PATTERNS:
            if name in seen:
                continue
            match = re.search(pattern, raw_text, re.IGNORECASE)
            if not match:
                continue
            seen.add(name)
            if unit is None:
                found = (match.group(2) or "").lower()
                unit = UNIT_ALIASES.get(found, found)
            metrics.append({"name": name, "value": match.group(1).replace(",", ""), "unit": unit})

        if not metrics:
            metrics.append(
                {"name": "Analysis Status", "value": "No standard health metrics detected in the provided text"}
            )

        problems = []
        treatments = []
        for metric in metrics:
            value = _to_float(metric["value"])
            if value is None:
                continue

            if metric["name"] == "Hemoglobin":
                metric["status"] = "low" if value < 12 else "normal"
                if value < 12:
                    problems.append(
                        {
                            "type": "Low Hemoglobin",
                            "severity": "severe" if value < 10 else "moderate",
                            "description": (
                                f"Hemoglobin level of {metric['value']} is below normal range. "
                                "This may indicate anemia or blood loss."
                            ),
                            "confidence": 0.85,
                        }
                    )
                    treatments.append(
                        {
                            "category": "Medical Consultation",
                            "recommendation": (
                                "Consult with a healthcare provider for further evaluation "
                                "and possible iron supplementation."
                            ),
                            "priority": "high",
                            "timeframe": "Within 1 week",
                        }
                    )

            elif metric["name"] == "Total Cholesterol":
                metric["status"] = "high" if value > 200 else "normal"
                if value > 200:
                    problems.append(
                        {
                            "type": "Elevated Cholesterol",
                            "severity": "severe" if value > 240 else "moderate",
                            "description": (
                                f"Total cholesterol of {metric['value']} is above recommended levels, "
                                "increasing cardiovascular risk."
                            ),
                            "confidence": 0.8,
                        }
                    )
                    treatments.append(
                        {
                            "category": "Lifestyle Changes",
                            "recommendation": (
                                "Adopt a heart-healthy diet low in saturated fats, increase physical "
                                "activity, and consider medication if levels remain high."
                            ),
                            "priority": "medium",
                            "timeframe": "Ongoing",
                        }
                    )

            elif metric["name"] in ("Glucose", "Blood Sugar"):
                metric["status"] = "high" if value > 126 else "normal"
                if value > 126:
                    problems.append(
                        {
                            "type": "Elevated Blood Sugar",
                            "severity": "severe" if value > 200 else "moderate",
                            "description": (
                                f"Fasting glucose of {metric['value']} may indicate diabetes or prediabetes."
                            ),
                            "confidence": 0.85,
                        }
                    )
                    treatments.append(
                        {
                            "category": "Medical Follow-up",
                            "recommendation": (
                                "Schedule an HbA1c test and consult with an endocrinologist "
                                "for diabetes management."
                            ),
                            "priority": "high",
                            "timeframe": "Within 1-2 weeks",
                        }
                    )

        summary = "Report analysis completed. "
        if problems:
            summary += (
                f"{len(problems)} potential health concern(s) identified. "
                "Please review recommendations and consult healthcare provider."
            )
        else:
            summary += "All detected values appear within normal ranges. Continue regular health monitoring."

        return {"metrics": metrics, "problems_detected": problems, "treatments": treatments, "summary": summary}

    def interpret_face_metrics(self, visual_metrics: list[dict]) -> dict[str, str]:
        metrics = primary_visual_metrics(visual_metrics)
        if not metrics:
            raise ValueError("Visual metrics are required for interpretation")

        redness = _to_float(metrics.get("redness_percentage")) or 0
        yellowness = _to_float(metrics.get("yellowness_percentage")) or 0

        observations = []
        if redness > 70:
            observations.append(f"Redness is high ({_percent(redness)}), consistent with significant skin irritation.")
        elif redness > 50:
            observations.append(f"Redness is moderately elevated ({_percent(redness)}).")
        elif redness > 30:
            observations.append(f"Mild redness is present ({_percent(redness)}).")
        else:
            observations.append(f"Redness is within the expected range ({_percent(redness)}).")

        if yellowness > 60:
            observations.append(f"A marked yellow undertone was measured ({_percent(yellowness)}).")
        elif yellowness > 40:
            observations.append(f"A moderate yellow undertone was measured ({_percent(yellowness)}).")
        elif yellowness > 25:
            observations.append(f"A slight yellow undertone was measured ({_percent(yellowness)}).")
        else:
            observations.append(f"Skin tone balance appears even ({_percent(yellowness)} yellowness).")

        if redness > 70 or yellowness > 60:
            recommendations = (
                "Book a dermatologist or physician review soon. Yellowing of the skin can have "
                "causes that need blood tests to rule out."
            )
        elif redness > 30 or yellowness > 25:
            recommendations = (
                "Use gentle, fragrance-free skincare and daily sunscreen, then re-scan in consistent "
                "lighting over the next weeks. See a dermatologist if changes persist."
            )
        else:
            recommendations = "Keep your current skincare routine and re-scan periodically to track changes."

        observations.append("Lighting and camera settings affect these measurements.")
        return {"observations": " ".join(observations), "recommendations": recommendations}

    def generate_risk_assessment(self, lab_data: Any, visual_metrics: Any, user_data: dict) -> str:
        require_risk_inputs(lab_data, visual_metrics, user_data)

        concerns = []
        strengths = []
        symptoms = user_data.get("symptoms") or []
        if isinstance(symptoms, str):
            symptoms = [s.strip() for s in symptoms.split(",") if s.strip()]
        visual = primary_visual_metrics(visual_metrics)

        sources = " and ".join(
            label for label, present in (("skin photo analysis", visual), ("report data", lab_data)) if present
        )
        lines = [
            "# Dermatology Health Check Report",
            "",
            "## Executive Summary",
            "",
            f"This dermatologist-focused assessment is based on {sources or 'the data provided'} for a "
            f"{user_data.get('age') or 'unknown age'}-year-old {user_data.get('gender') or 'individual'}. "
            "The findings below focus only on skin-related risk, with clear follow-up guidance.",
            "",
            "## Key Dermatology Findings",
            "",
        ]

        if visual:
            lines += ["### Skin Photo Analysis", ""]
            redness = _to_float(visual.get("redness_percentage"))
            if redness is not None:
                if redness >= 65:
                    lines.append(f"- **Facial Redness**: {_percent(redness)} - Elevated")
                    concerns.append(
                        ("moderate", "Pronounced facial redness may indicate active irritation or inflammatory skin activity.")
                    )
                elif redness >= 35:
                    lines.append(f"- **Facial Redness**: {_percent(redness)} - Mild elevation")
                    concerns.append(("low", "Mild redness is present and may reflect sensitivity or temporary irritation."))
                else:
                    lines.append(f"- **Facial Redness**: {_percent(redness)} - Within expected range")
                    strengths.append("Redness level is within a low-risk range")
            yellowness = _to_float(visual.get("yellowness_percentage"))
            if yellowness is not None:
                if yellowness >= 70:
                    lines.append(f"- **Facial Yellowness**: {_percent(yellowness)} - Concerning")
                    concerns.append(
                        (
                            "high",
                            "Marked yellowness should be reviewed urgently by a clinician to rule out "
                            "jaundice-related causes.",
                        )
                    )
                elif yellowness >= 40:
                    lines.append(f"- **Facial Yellowness**: {_percent(yellowness)} - Mild elevation")
                    concerns.append(
                        ("low", "Mild yellow undertone is present; confirm under consistent lighting and monitor trend.")
                    )
                else:
                    lines.append(f"- **Facial Yellowness**: {_percent(yellowness)} - Within expected range")
                    strengths.append("Skin tone balance appears stable")
            lines.append("")

        if lab_data:
            lines += ["### Dermatology-Relevant Report Findings", ""]
            lab_metrics = lab_data.get("metrics", []) if isinstance(lab_data, dict) else []
            matched = False
            for metric in lab_metrics:
                if not isinstance(metric, dict):
                    continue
                name = str(metric.get("name") or "").strip()
                if not name:
                    continue
                lower = name.lower()
                value_text = str(metric.get("value") or "").strip()
                unit = f" {metric['unit']}" if metric.get("unit") else ""
                value = _to_float(value_text)

                if any(marker in lower for marker in ("crp", "esr", "ige", "eosin")):
                    matched = True
                    lines.append(
                        f"- **{name}**: {value_text}{unit} (inflammation/allergy marker potentially relevant to skin)"
                    )
                    if value:
                        concerns.append(
                            ("low", f"{name} may support inflammatory or allergic skin activity when correlated with symptoms.")
                        )
                elif "bilirubin" in lower:
                    matched = True
                    lines.append(f"- **{name}**: {value_text}{unit} (color-change marker relevant to yellowing concerns)")
                    if value is not None and value > 1.2:
                        concerns.append(
                            ("high", "Elevated bilirubin with visible yellowness warrants prompt clinical evaluation.")
                        )
                elif any(
                    marker in lower
                    for marker in ("hba1c", "glucose", "vitamin d", "ferritin", "zinc", "thyroid", "tsh")
                ):
                    matched = True
                    lines.append(
                        f"- **{name}**: {value_text}{unit} (may influence skin healing, barrier, or flare tendency)"
                    )
            if not matched:
                lines.append(
                    "- No clearly dermatology-relevant report markers were identified from the provided report data."
                )
            lines.append("")

        if symptoms:
            lines += [f"- **Reported skin symptoms**: {', '.join(symptoms)}", ""]
            if any(SYMPTOM_PATTERNS["active"].search(s) for s in symptoms):
                concerns.append(
                    (
                        "moderate",
                        "Reported active skin symptoms suggest ongoing irritation that should be clinically "
                        "reviewed if persistent.",
                    )
                )

        high = [text for level, text in concerns if level == "high"]
        moderate = [text for level, text in concerns if level == "moderate"]
        low = [text for level, text in concerns if level == "low"]

        lines += ["## Dermatology Risk Stratification", ""]
        for title, items, empty in (
            ("Immediate Concerns (High Priority)", high, "No immediate dermatology concerns identified."),
            ("Moderate Concerns (Monitor)", moderate, "No moderate dermatology concerns identified."),
            ("Low-Level Observations", low, "No minor dermatology observations to note."),
        ):
            lines += [f"### {title}", ""]
            lines += [f"- {item}" for item in items] or [empty]
            lines.append("")

        lines += [
            "## Personalized Dermatology Plan",
            "",
            "### Daily Skin Care Actions",
            "",
            "- Use a gentle, fragrance-free cleanser and moisturizer twice daily",
            "- Apply broad-spectrum SPF 30+ every morning and reapply when outdoors",
            "- Avoid harsh exfoliants or frequent product switching during active irritation",
        ]
        if symptoms:
            lines.append(f"- Track symptom triggers and flare patterns: {', '.join(symptoms)}")
        lines += ["", "### Targeted Treatment Considerations", ""]
        if any(SYMPTOM_PATTERNS["acne"].search(s) for s in symptoms):
            lines.append("- Consider acne-focused actives (salicylic acid, adapalene) with gradual introduction")
        if any(SYMPTOM_PATTERNS["dry"].search(s) for s in symptoms):
            lines.append("- Prioritize barrier repair with ceramides, petrolatum, and reduced irritant exposure")
        if any(SYMPTOM_PATTERNS["irritated"].search(s) for s in symptoms):
            lines.append("- Use low-irritation products and pause known triggers until symptoms settle")
        if not symptoms:
            lines.append("- No specific symptom-targeted treatment needed; continue maintenance skin care")

        lines += ["", "### Follow-up Actions", ""]
        if high:
            lines.append("- **Urgent**: Arrange prompt clinical review (same week) for high-priority skin findings")
        elif moderate:
            lines.append("- Book a routine dermatologist follow-up within 2-6 weeks")
        else:
            lines.append("- Continue monitoring skin changes and review with dermatology if new symptoms appear")
        lines += [
            "- Bring photos and symptom timeline to improve clinical evaluation accuracy",
            "",
            "## Skin Risk Overview",
            "",
        ]

        risk_level = "High" if high else "Moderate" if moderate else "Low"
        improvements = [text for _, text in concerns[:3]]
        lines += [
            f"- **Overall Risk Level**: {risk_level}",
            "- **Areas of Strength**: "
            + (", ".join(strengths[:3]) or "No major adverse skin indicators were detected from available data"),
            "- **Areas for Improvement**: " + (", ".join(improvements) or "Continue current skin-maintenance practices"),
            "",
            "---",
            "",
            "**Important Notes:**",
            "- This assessment is AI-generated and for informational purposes only",
            "- Always consult a qualified dermatologist for diagnosis and treatment",
            "- Skin findings can vary with lighting, image quality, and timing",
            "",
            MOCK_NOTE,
        ]
        return "\n".join(lines)

    def generate_health_insights(self, prompt: str) -> str:
        if not (prompt or "").strip():
            raise ValueError("Prompt cannot be empty")

        match = CURRENT_QUESTION_RE.search(prompt)
        question = (match.group(1) if match else prompt).strip().lower()

        has_report = "MEDICAL REPORTS (" in prompt
        has_face = "FACIAL HEALTH ANALYSES (" in prompt
        has_risk = "HEALTH CHECKS (" in prompt
        has_any = has_report or has_face or has_risk

        name_match = NAME_RE.search(prompt)
        name = name_match.group(1).strip() if name_match else ""
        greeting = f"{name}, " if name and name != "Not provided" else ""

        def asks(*phrases):
            return any(phrase in question for phrase in phrases)

        if asks("what is sehat", "what's sehat", "sehatscan", "sehat scan", "about this app", "about this platform"):
            return self._about_reply(greeting)
        if asks("latest report", "health report", "my report", "explain my", "my results", "lab results", "blood test"):
            return self._report_reply(greeting, prompt) if has_report else self._missing_reply(greeting, "report")
        if asks("face", "facial", "skin", "appearance"):
            if not has_face:
                return self._missing_reply(greeting, "face")
            indicators = _section(prompt, "Visual Health Indicators:")
            return (
                f"{greeting}Based on your facial health analysis:\n\n"
                + (f"**Your Visual Health Indicators:**\n{indicators}\n\n" if indicators else "")
                + "**General Guidance:**\n"
                "- Skin color changes may reflect irritation, sun exposure or underlying conditions\n"
                "- Lighting affects the measurements, so compare scans taken in similar light\n"
                "- Regular scans help track changes over time\n\n"
                "Would you like more details about any specific indicator?"
            )
        if asks("risk", "assessment", "health check"):
            if not has_risk:
                return self._missing_reply(greeting, "risk")
            latest = _section(prompt, "[Health Check 1]")
            return (
                f"{greeting}Here's a summary of your latest health check:\n\n"
                + (f"{latest}\n\n" if latest else "")
                + "**Next Steps:**\n"
                "- Review high-priority findings with your healthcare provider\n"
                "- Focus on the lifestyle and skincare changes you can control\n"
                "- Continue regular monitoring\n\n"
                "Would you like me to explain any finding in detail?"
            )
        if asks("trend", "history", "progress", "over time", "compare"):
            if not has_any:
                return (
                    f"{greeting}I need more data to show you trends.\n\n"
                    "Upload health reports over time and I'll be able to show how your metrics change "
                    "and whether they are improving or declining.\n\n"
                    "Start by uploading your first report in **Scan Report**!"
                )
            parts = [_section(prompt, "TEMPORAL CONTEXT:"), _section(prompt, "TRENDS:")]
            timeline = "\n\n".join(part for part in parts if part)
            return (
                f"{greeting}Let me walk you through your health timeline:\n\n"
                + (f"{timeline}\n\n" if timeline else "")
                + "**To better track trends:**\n"
                "- Upload reports regularly (monthly or quarterly)\n"
                "- Compare the same types of tests over time\n"
                "- Note any lifestyle changes between tests\n\n"
                "Would you like to focus on a specific metric?"
            )
        if asks("what should i upload", "upload first"):
            return (
                f"{greeting}To get the most out of SehatScan, start with:\n\n"
                "1. **Medical lab reports**: blood tests (CBC, lipid panel, glucose) or urine analysis\n"
                "2. **A clear facial photo**: well-lit, front-facing, no filters\n"
                "3. **A health check**: combines your report and photo into one assessment\n\n"
                "Once you upload these I can explain your results and track how they change."
            )
        if asks("help", "what can you"):
            return (
                f"{greeting}I'm your AI Health Assistant. I can:\n\n"
                "- Explain your lab report results in simple terms\n"
                "- Describe what your facial analysis measured\n"
                "- Summarize your health checks\n"
                "- Point out trends across your reports\n"
                "- Suggest questions to bring to your doctor\n\n"
                "I provide insights, not medical diagnoses. Always consult a healthcare professional "
                "for medical concerns."
            )

        if has_any:
            status = [
                "- You have medical reports uploaded" if has_report else "- No medical reports yet",
                "- You have facial health analyses" if has_face else "- No facial scans yet",
                "- You have health checks" if has_risk else "- No health checks yet",
            ]
            return (
                f"{greeting}I'm here to help with your health questions!\n\n"
                "**Your Health Data Summary:**\n" + "\n".join(status) + "\n\n"
                "Try asking me about your latest report, your facial analysis or trends in your metrics."
            )
        return (
            f"{greeting}Welcome to SehatScan! I notice you haven't uploaded any health data yet.\n\n"
            "**Get Started:**\n"
            "1. **Scan Report**: upload a blood test or lab report\n"
            "2. **Scan Face**: take a photo for visual skin analysis\n"
            "3. **Health Check**: get a dermatology-focused evaluation\n\n"
            "Once you have data I can explain your results and track trends over time."
        )

    @staticmethod
    def _about_reply(greeting: str) -> str:
        return (
            f"{greeting}**SehatScan** is an AI-powered health analysis platform.\n\n"
            "**Key Features:**\n"
            "- **Report Analysis**: upload lab reports and get your metrics extracted and explained\n"
            "- **Facial Analysis**: visual skin assessment from a photo\n"
            "- **Health Check**: a dermatology-focused evaluation combining your data\n"
            "- **AI Health Assistant**: personalized answers based on your data\n\n"
            "SehatScan provides educational insights, not medical diagnoses. Always consult healthcare "
            "professionals for medical decisions."
        )

    @staticmethod
    def _report_reply(greeting: str, prompt: str) -> str:
        lines = [f"{greeting}Based on your uploaded health reports, here's what I found:", ""]
        metrics = list(CONTEXT_METRIC_RE.finditer(prompt))
        if metrics:
            lines += ["**Your Health Metrics:**", "", "| Metric | Value | Status |", "|--------|-------|--------|"]
            lines += [
                f"| {m.group('name').strip()} | {m.group('value').strip()} | {m.group('status')} |" for m in metrics
            ]
            lines.append("")
        problems = _section(prompt, "  Problems Detected:").split("Recommended Treatments:")[0]
        if problems:
            lines += ["**Issues Found:**", problems.replace("Problems Detected:", "").strip(), ""]
        treatments = _section(prompt, "  Recommended Treatments:")
        if treatments:
            lines += ["**Recommended Actions:**", treatments.replace("Recommended Treatments:", "").strip(), ""]
        lines += [
            "**General Recommendations:**",
            "- Discuss any abnormal values with your healthcare provider",
            "- Consider follow-up tests for concerning metrics",
            "- Maintain balanced nutrition and regular exercise",
            "",
            "Would you like me to explain any specific metric in more detail?",
        ]
        return "\n".join(lines)

    @staticmethod
    def _missing_reply(greeting: str, kind: str) -> str:
        steps = {
            "report": (
                "I don't see any health reports in your account yet.",
                "Go to **Scan Report**, upload a clear photo of your lab report, and come back here. "
                "I'll explain everything in detail.",
            ),
            "face": (
                "You haven't done a facial health analysis yet.",
                "Go to **Scan Face** and upload a clear, well-lit photo of your face to get skin insights.",
            ),
            "risk": (
                "You haven't generated a health check yet.",
                "Upload a report or a face scan first, then open **Health Check** to combine them "
                "into one assessment.",
            ),
        }
        first, second = steps[kind]
        return f"{greeting}{first}\n\n{second}"
