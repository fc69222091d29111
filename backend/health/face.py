import base64
import io
import logging

from PIL import Image, ImageDraw, ImageStat, UnidentifiedImageError

from .validators import UnprocessableUpload

logger = logging.getLogger(__name__)

SAMPLE_WIDTH_RATIO = 0.3
SAMPLE_HEIGHT_RATIO = 0.4
MAX_SAMPLE_WIDTH = 200
MAX_SAMPLE_HEIGHT = 250
OPAQUE_ALPHA = 128

TREATMENTS = {
    "inflammation": [
        {
            "category": "Immediate Care",
            "recommendation": (
                "Apply cool compresses for 10-15 minutes several times daily to reduce inflammation. "
                "Avoid hot water and harsh skincare products."
            ),
            "priority": "high",
            "timeframe": "Start immediately",
        },
        {
            "category": "Skincare",
            "recommendation": (
                "Use gentle, fragrance-free moisturizers and cleansers. Consider products with aloe vera, "
                "chamomile, or niacinamide to soothe irritation."
            ),
            "priority": "high",
            "timeframe": "Daily routine",
        },
        {
            "category": "Lifestyle",
            "recommendation": (
                "Identify and avoid potential triggers (new skincare products, detergents, foods). "
                "Protect skin from sun exposure with SPF 30+ sunscreen."
            ),
            "priority": "medium",
            "timeframe": "Ongoing",
        },
    ],
    "severe": [
        {
            "category": "Medical Consultation",
            "recommendation": (
                "Schedule an appointment with a dermatologist or healthcare provider within 24-48 hours "
                "for proper diagnosis and treatment plan."
            ),
            "priority": "high",
            "timeframe": "Within 1-2 days",
        },
        {
            "category": "Monitoring",
            "recommendation": (
                "Document symptoms with photos and notes. Monitor for changes in color, size, or associated "
                "symptoms like itching, pain, or fever."
            ),
            "priority": "high",
            "timeframe": "Daily until seen by doctor",
        },
    ],
    "jaundice": [
        {
            "category": "Urgent Medical Care",
            "recommendation": (
                "Seek immediate medical attention. Jaundice can indicate serious liver or blood conditions "
                "requiring prompt treatment."
            ),
            "priority": "high",
            "timeframe": "Immediately",
        },
        {
            "category": "Preparation for Medical Visit",
            "recommendation": (
                "Prepare a list of all medications, supplements, and recent dietary changes. Note any "
                "associated symptoms like fatigue, abdominal pain, or dark urine."
            ),
            "priority": "high",
            "timeframe": "Before medical appointment",
        },
    ],
    "maintenance": [
        {
            "category": "Prevention",
            "recommendation": (
                "Maintain a consistent skincare routine with gentle cleansing, moisturizing, and daily sun "
                "protection to prevent future skin issues."
            ),
            "priority": "medium",
            "timeframe": "Daily routine",
        },
        {
            "category": "Nutrition",
            "recommendation": (
                "Maintain a balanced diet rich in antioxidants and stay hydrated. Consider omega-3 "
                "supplements for skin health."
            ),
            "priority": "low",
            "timeframe": "Ongoing lifestyle",
        },
    ],
}

GENERAL_TREATMENT = {
    "category": "General Health",
    "recommendation": (
        "Regular health check-ups can help detect underlying conditions early. "
        "Keep a skin diary to track changes over time."
    ),
    "priority": "low",
    "timeframe": "Schedule annually",
}


def _round(value: float) -> int:
    return int(value + 0.5)


def redness_percentage(red: float, green: float, blue: float) -> int:
    total = red + green + blue
    if total == 0:
        return 0
    return _round(max(0.0, (red / total - 0.33) / 0.33) * 100)


def yellowness_percentage(red: float, green: float, blue: float) -> int:
    yellow = (red + green) / 2
    total = yellow + blue
    if total == 0:
        return 0
    return _round(max(0.0, (yellow / total - 0.5) / 0.5) * 100)


def describe_skin_tone(red: float, green: float, blue: float) -> str:
    brightness = (red + green + blue) / 3
    if redness_percentage(red, green, blue) > 60:
        return "High redness detected - may indicate inflammation or irritation"
    if yellowness_percentage(red, green, blue) > 70:
        return "High yellowness detected - may indicate jaundice or liver-related issues"
    if brightness < 80:
        return "Darker skin tone detected - normal variation"
    if brightness > 200:
        return "Lighter skin tone detected - normal variation"
    return "Normal skin tone detected"


def detect_skin_problems(redness: int, yellowness: int) -> list[dict]:
    problems = []

    if redness > 70:
        problems.append(
            {
                "type": "Severe Inflammation",
                "severity": "severe",
                "description": (
                    "High levels of redness detected, indicating possible severe inflammation, acute dermatitis, "
                    "or allergic reaction."
                ),
                "confidence": 0.85,
            }
        )
    elif redness > 50:
        problems.append(
            {
                "type": "Moderate Inflammation",
                "severity": "moderate",
                "description": (
                    "Moderate redness detected, suggesting inflammation, irritation, or possible rosacea. "
                    "Sun exposure or skincare products can contribute."
                ),
                "confidence": 0.75,
            }
        )
    elif redness > 30:
        problems.append(
            {
                "type": "Mild Irritation",
                "severity": "mild",
                "description": (
                    "Mild redness detected, which may indicate minor skin irritation, sensitivity, or recent sun "
                    "exposure. This is often temporary."
                ),
                "confidence": 0.65,
            }
        )

    if yellowness > 60:
        problems.append(
            {
                "type": "Possible Jaundice",
                "severity": "severe",
                "description": (
                    "Significant yellowness detected in the skin, which may indicate jaundice. "
                    "Medical consultation is recommended."
                ),
                "confidence": 0.8,
            }
        )
    elif yellowness > 40:
        problems.append(
            {
                "type": "Mild Yellowing",
                "severity": "moderate",
                "description": (
                    "Moderate yellowness detected, which could indicate early jaundice, carotenemia, "
                    "or a medication side effect."
                ),
                "confidence": 0.7,
            }
        )
    elif yellowness > 25:
        problems.append(
            {
                "type": "Slight Discoloration",
                "severity": "mild",
                "description": (
                    "Slight yellowish tint detected, which may be due to natural skin tone variation, "
                    "lighting conditions, or dietary factors."
                ),
                "confidence": 0.6,
            }
        )

    if redness > 40 and yellowness > 30:
        problems.append(
            {
                "type": "Mixed Skin Discoloration",
                "severity": "moderate",
                "description": (
                    "Both redness and yellowness detected, which should be reviewed by a professional."
                ),
                "confidence": 0.7,
            }
        )

    if not problems:
        problems.append(
            {
                "type": "Normal Skin Appearance",
                "severity": "mild",
                "description": (
                    "Skin color appears within normal ranges. No significant discoloration or "
                    "inflammation detected."
                ),
                "confidence": 0.9,
            }
        )
    return problems


def recommend_treatments(problems: list[dict]) -> list[dict]:
    types = [problem["type"] for problem in problems]
    treatments = []
    if any("Inflammation" in t or "Irritation" in t for t in types):
        treatments += TREATMENTS["inflammation"]
    if any("Severe" in t or "Jaundice" in t for t in types):
        treatments += TREATMENTS["severe"]
    if any("Jaundice" in t for t in types):
        treatments += TREATMENTS["jaundice"]
    if any("Normal" in t or "Mild" in t for t in types):
        treatments += TREATMENTS["maintenance"]
    treatments.append(GENERAL_TREATMENT)
    return [dict(item) for item in treatments]


def sample_box(width: int, height: int) -> tuple[int, int, int, int]:
    """Centred sampling rectangle as (x, y, width, height)."""
    sample_width = max(1, _round(min(width * SAMPLE_WIDTH_RATIO, MAX_SAMPLE_WIDTH)))
    sample_height = max(1, _round(min(height * SAMPLE_HEIGHT_RATIO, MAX_SAMPLE_HEIGHT)))
    x = max(0, _round((width - sample_width) / 2))
    y = max(0, _round((height - sample_height) / 2))
    return x, y, sample_width, sample_height


def analyze_face_image(upload) -> dict:
    """Measure skin colour indicators over the centre of a face photo."""
    try:
        upload.seek(0)
        with Image.open(upload) as source:
            image = source.convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        logger.warning("Could not decode face image %s: %s", getattr(upload, "name", "upload"), exc)
        raise UnprocessableUpload(
            "Failed to analyze face image. Please ensure the image contains a clear face."
        ) from exc

    x, y, box_width, box_height = sample_box(*image.size)
    region = image.crop((x, y, x + box_width, y + box_height))

    mask = region.getchannel("A").point(lambda a: 255 if a > OPAQUE_ALPHA else 0)
    if mask.getbbox() is None:
        raise UnprocessableUpload("No visible skin could be sampled from the image.")
    red, green, blue = ImageStat.Stat(region.convert("RGB"), mask=mask).mean
    redness = redness_percentage(red, green, blue)
    yellowness = yellowness_percentage(red, green, blue)
    problems = detect_skin_problems(redness, yellowness)

    annotated = image.convert("RGB")
    ImageDraw.Draw(annotated).rectangle((x, y, x + box_width, y + box_height), outline=(0, 255, 0), width=2)
    buffer = io.BytesIO()
    annotated.save(buffer, format="JPEG", quality=80)

    return {
        "face_detected": True,
        "faces_count": 1,
        "faces": [{"x": x, "y": y, "width": box_width, "height": box_height}],
        "visual_metrics": [
            {
                "face_index": 0,
                "redness_percentage": redness,
                "yellowness_percentage": yellowness,
                "skin_tone_analysis": describe_skin_tone(red, green, blue),
            }
        ],
        "problems_detected": problems,
        "treatments": recommend_treatments(problems),
        "annotated_image": base64.b64encode(buffer.getvalue()).decode("ascii"),
    }
