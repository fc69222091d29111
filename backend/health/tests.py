import io
import json
from unittest.mock import Mock, PropertyMock, patch

from django.apps import apps
from django.contrib.auth.models import User
from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import Client, SimpleTestCase, TestCase
from django.urls import reverse
from google.api_core import exceptions as google_exceptions
from PIL import Image

from .analyzers import AIErrorKind, AIProviderError, HealthAnalyzer, MockAnalyzer, create_analyzer
from .analyzers.gemini import GeminiAnalyzer, parse_json_response
from .context import (
    build_chat_prompt,
    build_conversation_context,
    build_user_context,
    chat_context_cache_key,
    compute_metric_trends,
    extract_risk_level,
    load_chat_context,
)
from .face import analyze_face_image, sample_box
from .models import Analysis
from .services import (
    AnalysisService,
    get_dashboard_stats,
    paginate_analyses,
    save_analysis,
    validate_pagination,
)
from .validators import FACE_CONTENT_TYPES, REPORT_CONTENT_TYPES, UnprocessableUpload, validate_upload


def make_image(color=(200, 100, 80), size=(100, 100), fmt="PNG", name="photo.png", content_type="image/png"):
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return SimpleUploadedFile(name, buffer.getvalue(), content_type=content_type)


def mock_service():
    return AnalysisService(primary=None, fallback=MockAnalyzer())


def report_snapshot(value, status, created_at, name="Hemoglobin", unit="g/dL"):
    return {
        "type": "report",
        "createdAt": created_at,
        "structuredData": {
            "metrics": [{"name": name, "value": value, "unit": unit, "status": status}],
            "summary": "Report analysis completed.",
        },
        "problemsDetected": [],
        "treatments": [],
    }


class MockAnalyzerTests(SimpleTestCase):
    def setUp(self):
        self.analyzer = MockAnalyzer()

    def test_low_hemoglobin_is_severe_below_ten(self):
        data = self.analyzer.structure_ocr_data("Hemoglobin: 9 g/dL")
        self.assertEqual(data["metrics"][0]["name"], "Hemoglobin")
        self.assertEqual(data["metrics"][0]["value"], "9")
        self.assertEqual(data["metrics"][0]["unit"], "g/dL")
        self.assertEqual(data["problems_detected"][0]["type"], "Low Hemoglobin")
        self.assertEqual(data["problems_detected"][0]["severity"], "severe")
        self.assertEqual(len(data["treatments"]), 1)
        self.assertIn("1 potential health concern", data["summary"])

    def test_cholesterol_and_glucose_thresholds(self):
        data = self.analyzer.structure_ocr_data(
            "Total Cholesterol: 250 mg/dL\nFasting Glucose: 150 mg/dL\nWBC: 7,500 cells/uL"
        )
        problems = {p["type"]: p["severity"] for p in data["problems_detected"]}
        self.assertEqual(problems, {"Elevated Cholesterol": "severe", "Elevated Blood Sugar": "moderate"})
        wbc = next(m for m in data["metrics"] if m["name"] == "White Blood Cells")
        self.assertEqual(wbc["value"], "7500")

    def test_normal_values_have_no_problems(self):
        data = self.analyzer.structure_ocr_data("Hb: 13.5 g/dL, Blood Pressure: 120/80 mmHg, Pulse: 72 bpm")
        self.assertEqual(data["problems_detected"], [])
        self.assertEqual({m["name"] for m in data["metrics"]}, {"Hemoglobin", "Blood Pressure", "Heart Rate"})
        self.assertIn("normal ranges", data["summary"])

    def test_temperature_keeps_reported_unit(self):
        data = self.analyzer.structure_ocr_data("Temperature: 37.2 C")
        self.assertEqual(data["metrics"][0]["unit"], "°C")

    def test_unrecognized_text_reports_status_entry(self):
        data = self.analyzer.structure_ocr_data("Patient seems well.")
        self.assertEqual(data["metrics"][0]["name"], "Analysis Status")

    def test_structured_data_survives_json(self):
        data = self.analyzer.structure_ocr_data("Hemoglobin: 9 g/dL\nGlucose: 210 mg/dL")
        self.assertEqual(json.loads(json.dumps(data)), data)

    def test_empty_input_raises(self):
        with self.assertRaises(ValueError):
            self.analyzer.structure_ocr_data("   ")
        with self.assertRaises(ValueError):
            self.analyzer.generate_health_insights("")

    def test_face_interpretation_bands(self):
        result = self.analyzer.interpret_face_metrics([{"redness_percentage": 75, "yellowness_percentage": 10}])
        self.assertIn("75%", result["observations"])
        self.assertIn("dermatologist", result["recommendations"])

    def test_percentages_given_as_text_are_compared_numerically(self):
        result = self.analyzer.interpret_face_metrics({"redness_percentage": "72", "yellowness_percentage": "n/a"})
        self.assertIn("Redness is high (72%)", result["observations"])
        text = self.analyzer.generate_risk_assessment(None, [{"redness_percentage": "45.5"}], {"age": 30})
        self.assertIn("**Facial Redness**: 45.5% - Mild elevation", text)

    def test_risk_assessment_requires_a_data_source(self):
        with self.assertRaises(ValueError):
            self.analyzer.generate_risk_assessment(None, None, {"age": 30})

    def test_risk_assessment_flags_high_yellowness(self):
        text = self.analyzer.generate_risk_assessment(
            None, [{"redness_percentage": 20, "yellowness_percentage": 80}], {"age": 40, "symptoms": ["itching"]}
        )
        self.assertIn("**Overall Risk Level**: High", text)
        self.assertIn("mock analysis", text)
        self.assertEqual(extract_risk_level(text), "High")

    def test_chat_without_data_invites_upload(self):
        prompt = build_chat_prompt("hello", build_user_context([], {"name": "Asha", "memberSince": "Jan 01, 2026"}))
        reply = self.analyzer.generate_health_insights(prompt)
        self.assertTrue(reply.startswith("Asha, "))
        self.assertIn("haven't uploaded any health data", reply)

    def test_chat_explains_report_metrics(self):
        context = build_user_context([report_snapshot("9", "low", "2026-03-01T10:00:00+00:00")])
        reply = self.analyzer.generate_health_insights(build_chat_prompt("Explain my latest report", context))
        self.assertIn("| Hemoglobin | 9 g/dL | low |", reply)

    def test_chat_without_face_scan_points_to_scan_face(self):
        context = build_user_context([report_snapshot("9", "low", "2026-03-01T10:00:00+00:00")])
        reply = self.analyzer.generate_health_insights(build_chat_prompt("What about my skin?", context))
        self.assertIn("Scan Face", reply)


class GeminiAnalyzerTests(SimpleTestCase):
    def setUp(self):
        patcher = patch("health.analyzers.gemini.genai")
        self.genai = patcher.start()
        self.addCleanup(patcher.stop)
        self.analyzer = GeminiAnalyzer(api_key="test-key", model_name="gemini-test")
        self.model = self.analyzer._model

    def _respond(self, text):
        self.model.generate_content.return_value = Mock(text=text)

    def test_requires_api_key(self):
        with self.assertRaises(ValueError):
            GeminiAnalyzer(api_key="")

    def test_factory_builds_both_providers(self):
        self.assertIsInstance(create_analyzer("mock"), MockAnalyzer)
        self.assertIsInstance(create_analyzer("gemini", api_key="k"), GeminiAnalyzer)
        with self.assertRaises(ValueError):
            create_analyzer("other")

    def test_structures_fenced_json(self):
        self._respond('```json\n{"metrics": [{"name": "Glucose", "value": 95, "unit": "mg/dL"}], "summary": "ok"}\n```')
        data = self.analyzer.structure_ocr_data("Glucose 95")
        self.assertEqual(data["metrics"], [{"name": "Glucose", "value": "95", "unit": "mg/dL"}])
        self.assertEqual(data["problems_detected"], [])

    def test_missing_metrics_is_invalid_response(self):
        self._respond('{"summary": "nothing"}')
        with self.assertRaises(AIProviderError) as ctx:
            self.analyzer.structure_ocr_data("Glucose 95")
        self.assertEqual(ctx.exception.kind, AIErrorKind.INVALID_RESPONSE)

    def test_blocked_response_is_invalid_response(self):
        response = Mock()
        type(response).text = PropertyMock(side_effect=ValueError("blocked"))
        self.model.generate_content.return_value = response
        with self.assertRaises(AIProviderError) as ctx:
            self.analyzer.generate_health_insights("hi")
        self.assertEqual(ctx.exception.kind, AIErrorKind.INVALID_RESPONSE)

    def test_provider_errors_are_classified_by_type(self):
        cases = [
            (google_exceptions.ResourceExhausted("quota"), AIErrorKind.QUOTA_EXCEEDED),
            (google_exceptions.TooManyRequests("slow down"), AIErrorKind.RATE_LIMITED),
            (google_exceptions.ServiceUnavailable("down"), AIErrorKind.SERVICE),
        ]
        for error, kind in cases:
            with self.subTest(kind=kind):
                self.model.generate_content.side_effect = error
                with self.assertRaises(AIProviderError) as ctx:
                    self.analyzer.generate_health_insights("hi")
                self.assertEqual(ctx.exception.kind, kind)

    def test_unexpected_transport_error_is_a_service_error(self):
        self.model.generate_content.side_effect = RuntimeError("socket closed")
        with self.assertRaises(AIProviderError) as ctx:
            self.analyzer.generate_health_insights("hi")
        self.assertEqual(ctx.exception.kind, AIErrorKind.SERVICE)
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)


    def test_error_kind_policy(self):
        self.assertTrue(AIErrorKind.QUOTA_EXCEEDED.should_fall_back)
        self.assertTrue(AIErrorKind.RATE_LIMITED.should_fall_back)
        self.assertFalse(AIErrorKind.SERVICE.should_fall_back)
        self.assertEqual(AIErrorKind.RATE_LIMITED.http_status, 429)
        self.assertEqual(AIErrorKind.INVALID_RESPONSE.http_status, 502)

    def test_parse_json_response_extracts_embedded_object(self):
        self.assertEqual(parse_json_response('Sure! {"a": 1} Hope that helps.'), {"a": 1})
        self.assertIsNone(parse_json_response("no json here"))
        self.assertIsNone(parse_json_response("[1, 2]"))


class AnalysisServiceTests(SimpleTestCase):
    def setUp(self):
        self.primary = Mock(spec=HealthAnalyzer)
        self.primary.name = "gemini"
        self.fallback = Mock(wraps=MockAnalyzer())
        self.fallback.name = "mock"
        self.service = AnalysisService(primary=self.primary, fallback=self.fallback)

    def test_primary_result_is_not_flagged(self):
        self.primary.generate_health_insights.return_value = "Hello"
        outcome = self.service.chat("question")
        self.assertEqual(outcome.value, "Hello")
        self.assertFalse(outcome.fallback)
        self.fallback.generate_health_insights.assert_not_called()

    def test_quota_error_runs_fallback(self):
        self.primary.structure_ocr_data.side_effect = AIProviderError(AIErrorKind.QUOTA_EXCEEDED, "quota")
        outcome = self.service.structure_report("Hemoglobin: 9 g/dL")
        self.assertTrue(outcome.fallback)
        self.assertEqual(outcome.source, "mock")
        self.assertEqual(outcome.value["metrics"][0]["value"], "9")
        self.fallback.structure_ocr_data.assert_called_once_with("Hemoglobin: 9 g/dL")
        self.assertEqual(outcome.annotate({})["fallback"], True)

    def test_service_error_propagates_without_fallback(self):
        self.primary.generate_risk_assessment.side_effect = AIProviderError(AIErrorKind.SERVICE, "boom")
        with self.assertRaises(AIProviderError):
            self.service.assess_risk({"metrics": []}, None, {"age": 30})
        self.fallback.generate_risk_assessment.assert_not_called()

    def test_missing_primary_uses_fallback(self):
        outcome = AnalysisService(primary=None, fallback=self.fallback).interpret_face(
            [{"redness_percentage": 10, "yellowness_percentage": 10}]
        )
        self.assertTrue(outcome.fallback)
        self.assertIn("not configured", outcome.warning)


class FaceAnalysisTests(SimpleTestCase):
    def test_metrics_from_solid_colour(self):
        result = analyze_face_image(make_image((200, 100, 80)))
        metrics = result["visual_metrics"][0]
        self.assertEqual(metrics["redness_percentage"], 59)
        self.assertEqual(metrics["yellowness_percentage"], 30)
        types = [p["type"] for p in result["problems_detected"]]
        self.assertEqual(types, ["Moderate Inflammation", "Slight Discoloration"])
        self.assertEqual(result["treatments"][-1]["category"], "General Health")
        self.assertEqual(result["faces"][0], {"x": 35, "y": 30, "width": 30, "height": 40})
        self.assertTrue(result["annotated_image"])

    def test_neutral_grey_is_normal(self):
        result = analyze_face_image(make_image((120, 120, 120)))
        self.assertEqual(result["problems_detected"][0]["type"], "Normal Skin Appearance")

    def test_sample_box_is_capped(self):
        self.assertEqual(sample_box(2000, 2000), (900, 875, 200, 250))

    def test_undecodable_image_is_unprocessable(self):
        upload = SimpleUploadedFile("face.png", b"not an image", content_type="image/png")
        with self.assertRaises(UnprocessableUpload):
            analyze_face_image(upload)

    def test_transparent_pixels_are_ignored(self):
        image = Image.new("RGBA", (100, 100), (0, 0, 0, 0))
        image.paste((200, 100, 80, 255), (50, 0, 100, 100))
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        result = analyze_face_image(SimpleUploadedFile("face.png", buffer.getvalue(), content_type="image/png"))
        metrics = result["visual_metrics"][0]
        self.assertEqual((metrics["redness_percentage"], metrics["yellowness_percentage"]), (59, 30))

    def test_fully_transparent_image_is_unprocessable(self):
        buffer = io.BytesIO()
        Image.new("RGBA", (100, 100), (200, 100, 80, 0)).save(buffer, format="PNG")
        upload = SimpleUploadedFile("face.png", buffer.getvalue(), content_type="image/png")
        with self.assertRaisesMessage(UnprocessableUpload, "No visible skin"):
            analyze_face_image(upload)

    def test_oversized_image_is_unprocessable(self):
        with patch("health.face.Image.open", side_effect=Image.DecompressionBombError("too many pixels")):
            with self.assertRaises(UnprocessableUpload):
                analyze_face_image(make_image())



class UploadValidationTests(SimpleTestCase):
    def test_rejects_missing_empty_wrong_type_and_large_files(self):
        with self.assertRaisesMessage(ValidationError, "No file provided"):
            validate_upload(None, REPORT_CONTENT_TYPES)
        with self.assertRaisesMessage(ValidationError, "File is empty"):
            validate_upload(SimpleUploadedFile("a.png", b"", content_type="image/png"), FACE_CONTENT_TYPES)
        with self.assertRaisesMessage(ValidationError, "JPEG or PNG"):
            validate_upload(SimpleUploadedFile("a.gif", b"GIF8", content_type="image/gif"), FACE_CONTENT_TYPES)
        with self.assertRaisesMessage(ValidationError, "less than"):
            validate_upload(
                SimpleUploadedFile("a.png", b"x" * 11, content_type="image/png"), FACE_CONTENT_TYPES, max_size=10
            )

    def test_accepts_pdf_for_reports_only(self):
        pdf = SimpleUploadedFile("r.pdf", b"%PDF-1.4", content_type="application/pdf")
        self.assertIs(validate_upload(pdf, REPORT_CONTENT_TYPES), pdf)
        with self.assertRaises(ValidationError):
            validate_upload(pdf, FACE_CONTENT_TYPES)


class ChatContextTests(SimpleTestCase):
    def test_empty_history_states_no_data(self):
        context = build_user_context([], {"name": None, "memberSince": "Jan 01, 2026"})
        self.assertIn("Name: Not provided", context)
        self.assertIn("No health data available yet", context)
        self.assertNotIn("MEDICAL REPORTS", context)
        self.assertNotIn("TEMPORAL CONTEXT", context)

    def test_groups_analyses_and_flags_metrics(self):
        analyses = [
            report_snapshot("9", "low", "2026-03-01T10:00:00+00:00"),
            {
                "type": "face",
                "createdAt": "2026-03-02T10:00:00+00:00",
                "visualMetrics": [{"face_index": 0, "redness_percentage": 40, "yellowness_percentage": 20}],
                "structuredData": {"observations": "Mild redness.", "recommendations": "Use sunscreen."},
            },
            {"type": "risk", "createdAt": "2026-03-03T10:00:00+00:00", "riskAssessment": "x" * 1500},
        ]
        context = build_user_context(analyses)
        self.assertIn("MEDICAL REPORTS (1 total):", context)
        self.assertIn("    - Hemoglobin: 9 g/dL [low]", context)
        self.assertIn("FACIAL HEALTH ANALYSES (1 total):", context)
        self.assertIn("Redness Percentage: 40", context)
        self.assertIn("HEALTH CHECKS (1 total):", context)
        self.assertIn("x" * 1000 + "...", context)
        self.assertNotIn("x" * 1001, context)
        self.assertIn("Health data spans: Mar 01, 2026 to Mar 03, 2026", context)

    def test_trends_compare_earliest_and_latest(self):
        analyses = [
            report_snapshot("12.5", "normal", "2026-04-01T10:00:00+00:00"),
            report_snapshot("9", "low", "2026-03-01T10:00:00+00:00"),
        ]
        trends = compute_metric_trends(analyses)
        self.assertEqual(trends[0]["first"], 9.0)
        self.assertEqual(trends[0]["last"], 12.5)
        self.assertEqual(trends[0]["direction"], "improving")
        self.assertIn("- Hemoglobin: 9 -> 12.5 g/dL [improving]", build_user_context(analyses))

    def test_missing_and_invalid_dates_sort_first(self):
        analyses = [
            report_snapshot("12.5", "normal", "2026-04-01T10:00:00Z"),
            {"type": "face"},
            report_snapshot("9", "low", "2026-02-30T00:00:00Z"),
            report_snapshot("11", "low", "2026-01-05"),
        ]
        trends = compute_metric_trends(analyses)
        self.assertEqual((trends[0]["first"], trends[0]["last"]), (9.0, 12.5))

        context = build_user_context(analyses)
        self.assertIn("Health data spans: Unknown to Apr 01, 2026", context)
        self.assertIn("[Report 3] Date: Jan 05, 2026", context)
        self.assertIn("[Report 2] Date: Unknown", context)

    def test_conversation_keeps_last_turns_truncated(self):
        turns = [{"role": "user" if i % 2 == 0 else "assistant", "content": f"turn {i}"} for i in range(14)]
        turns[-1]["content"] = "y" * 600
        context = build_conversation_context(turns)
        self.assertNotIn("turn 3\n", context)
        self.assertIn("User: turn 4", context)
        self.assertIn("Assistant: " + "y" * 500 + "...", context)
        self.assertEqual(build_conversation_context([]), "")

    def test_prompt_places_question_last(self):
        prompt = build_chat_prompt("Is my sugar high?", "USER PROFILE:\n", "")
        self.assertIn("=== CURRENT QUESTION ===\nIs my sugar high?", prompt)
        self.assertLess(prompt.index("=== USER CONTEXT ==="), prompt.index("=== CURRENT QUESTION ==="))


class PersistenceTests(TestCase):
    def setUp(self):
        cache.clear()
        self.user = User.objects.create_user(username="u1", password="pass12345")
        self.other = User.objects.create_user(username="u2", password="pass12345")

    def _create(self, user, analysis_type, count):
        for _ in range(count):
            save_analysis(user, analysis_type, {"source": "test"})

    def test_pagination_limits_and_counts(self):
        self._create(self.user, Analysis.TYPE_REPORT, 25)
        self._create(self.other, Analysis.TYPE_REPORT, 3)

        first = paginate_analyses(self.user, page=1, limit=10)
        self.assertEqual(len(first["analyses"]), 10)
        self.assertEqual(first["total"], 25)
        self.assertEqual(first["totalPages"], 3)

        last = paginate_analyses(self.user, page=3, limit=10)
        self.assertEqual(len(last["analyses"]), 5)
        self.assertEqual(paginate_analyses(self.user, page=4, limit=10)["analyses"], [])

    def test_pagination_rejects_out_of_range_parameters(self):
        for page, limit in ((0, 10), (1, 0), (1, 101), ("x", 10)):
            with self.subTest(page=page, limit=limit):
                with self.assertRaises(ValueError):
                    validate_pagination(page, limit)
        self.assertEqual(validate_pagination(None, None), (1, 10))

    def test_pagination_filters_by_type(self):
        self._create(self.user, Analysis.TYPE_REPORT, 2)
        self._create(self.user, Analysis.TYPE_FACE, 3)
        page = paginate_analyses(self.user, analysis_type=Analysis.TYPE_FACE)
        self.assertEqual(page["total"], 3)
        self.assertTrue(all(a.type == Analysis.TYPE_FACE for a in page["analyses"]))

    def test_empty_history_has_zero_pages(self):
        self.assertEqual(paginate_analyses(self.user)["totalPages"], 0)

    def test_stats_are_cached_and_invalidated_on_save(self):
        self._create(self.user, Analysis.TYPE_REPORT, 2)
        stats = get_dashboard_stats(self.user)
        self.assertEqual(stats["total"], 2)
        self.assertEqual(stats["by_type"], {"report": 2, "face": 0, "risk": 0})
        self.assertIsNotNone(stats["latest_at"])

        Analysis.objects.create(user=self.user, type=Analysis.TYPE_RISK, raw_data={})
        self.assertEqual(get_dashboard_stats(self.user)["total"], 2)

        save_analysis(self.user, Analysis.TYPE_FACE, {})
        self.assertEqual(get_dashboard_stats(self.user)["by_type"], {"report": 2, "face": 1, "risk": 1})

    def test_chat_context_cache_is_cleared_on_save(self):
        self.assertEqual(load_chat_context(self.user)["analyses"], [])
        self.assertIsNotNone(cache.get(chat_context_cache_key(self.user.pk)))
        save_analysis(self.user, Analysis.TYPE_REPORT, {}, structured_data={"metrics": []})
        self.assertIsNone(cache.get(chat_context_cache_key(self.user.pk)))
        self.assertEqual(len(load_chat_context(self.user)["analyses"]), 1)


class HealthFlowTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = Client()
        self.user1 = User.objects.create_user(username="u1", password="pass12345")
        self.user2 = User.objects.create_user(username="u2", password="pass12345")
        patcher = patch.object(apps.get_app_config("health"), "analysis_service", mock_service())
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client.login(username="u1", password="pass12345")

    def test_user_cannot_access_other_user_analysis(self):
        analysis = save_analysis(self.user2, Analysis.TYPE_REPORT, {})
        response = self.client.get(reverse("analysis-detail", args=[analysis.id]))
        self.assertEqual(response.status_code, 404)

    def test_pasted_report_text_creates_fallback_analysis(self):
        response = self.client.post(reverse("scan-report"), {"report_text": "Hemoglobin: 9 g/dL"})
        analysis = Analysis.objects.get(user=self.user1)
        self.assertRedirects(response, reverse("analysis-detail", args=[analysis.id]))
        self.assertTrue(analysis.is_fallback)
        self.assertEqual(analysis.problems_detected[0]["type"], "Low Hemoglobin")
        self.assertContains(self.client.get(response.url), "Low Hemoglobin")

    @patch("health.ocr.pytesseract.image_to_string", return_value="Glucose: 150 mg/dL")
    def test_report_image_is_read_with_ocr(self, mock_ocr):
        response = self.client.post(reverse("scan-report"), {"file": make_image()})
        self.assertEqual(response.status_code, 302)
        analysis = Analysis.objects.get(user=self.user1)
        self.assertEqual(analysis.raw_data["raw_text"], "Glucose: 150 mg/dL")
        mock_ocr.assert_called_once()

    @patch("health.ocr.pytesseract.image_to_string", return_value="   ")
    def test_blank_ocr_text_is_unprocessable(self, mock_ocr):
        response = self.client.post(reverse("scan-report"), {"file": make_image()})
        self.assertEqual(response.status_code, 422)
        self.assertFalse(Analysis.objects.exists())

    def test_pdf_report_is_unprocessable(self):
        pdf = SimpleUploadedFile("r.pdf", b"%PDF-1.4 test", content_type="application/pdf")
        response = self.client.post(reverse("scan-report"), {"file": pdf})
        self.assertEqual(response.status_code, 422)
        self.assertContains(response, "PDF processing not yet implemented", status_code=422)

    def test_wrong_file_type_is_rejected_before_analysis(self):
        upload = SimpleUploadedFile("r.txt", b"Hemoglobin: 9 g/dL", content_type="text/plain")
        response = self.client.post(reverse("scan-report"), {"file": upload})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(Analysis.objects.exists())

    def test_face_scan_renders_results(self):
        response = self.client.post(reverse("scan-face"), {"file": make_image()})
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Redness: 59%")
        analysis = Analysis.objects.get(user=self.user1, type=Analysis.TYPE_FACE)
        self.assertEqual(analysis.primary_visual_metrics["yellowness_percentage"], 30)
        self.assertNotIn("annotated_image", analysis.raw_data)

    def test_health_check_combines_selected_analyses(self):
        report = save_analysis(
            self.user1,
            Analysis.TYPE_REPORT,
            {},
            structured_data={"metrics": [{"name": "Bilirubin", "value": "2.0", "unit": "mg/dL"}]},
        )
        response = self.client.post(
            reverse("health-check"), {"report_analysis": report.id, "symptoms": "itching, rash"}
        )
        self.assertEqual(response.status_code, 302)
        check = Analysis.objects.get(user=self.user1, type=Analysis.TYPE_RISK)
        self.assertEqual(check.structured_data["overall_risk_level"], "High")
        self.assertEqual(check.raw_data["user_data"]["symptoms"], ["itching", "rash"])

    def test_health_check_cannot_use_other_users_analysis(self):
        foreign = save_analysis(self.user2, Analysis.TYPE_REPORT, {}, structured_data={"metrics": []})
        response = self.client.post(reverse("health-check"), {"report_analysis": foreign.id})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(Analysis.objects.filter(type=Analysis.TYPE_RISK).exists())

    def test_history_paginates_and_filters(self):
        for _ in range(12):
            save_analysis(self.user1, Analysis.TYPE_REPORT, {})
        save_analysis(self.user1, Analysis.TYPE_FACE, {})

        response = self.client.get(reverse("history"))
        self.assertEqual(len(response.context["analyses"]), 10)
        self.assertTrue(response.context["has_next"])

        response = self.client.get(reverse("history"), {"type": "face"})
        self.assertEqual(response.context["page"]["total"], 1)

    def test_chatbot_keeps_history_in_session(self):
        response = self.client.post(reverse("chatbot"), {"message": "What can you help with?"})
        self.assertRedirects(response, reverse("chatbot"))
        history = self.client.session["chat_history"]
        self.assertEqual([turn["role"] for turn in history], ["user", "assistant"])
        self.assertIn("AI Health Assistant", history[1]["content"])

        self.client.post(reverse("chatbot"), {"reset": "1"})
        self.assertEqual(self.client.session["chat_history"], [])

    def test_surfaced_ai_error_is_reported(self):
        primary = Mock(spec=HealthAnalyzer)
        primary.name = "gemini"
        primary.generate_health_insights.side_effect = AIProviderError(AIErrorKind.SERVICE, "down")
        service = AnalysisService(primary=primary, fallback=MockAnalyzer())
        with patch.object(apps.get_app_config("health"), "analysis_service", service):
            response = self.client.post(reverse("chatbot"), {"message": "hello"})
        self.assertEqual(response.status_code, 502)
        self.assertNotIn("chat_history", self.client.session)
