import io
from unittest.mock import Mock, patch

from django.apps import apps
from django.contrib.auth.models import User
from django.core.cache import cache
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import Client, TestCase, override_settings
from django.urls import reverse
from PIL import Image

from health.analyzers import AIErrorKind, AIProviderError, HealthAnalyzer, MockAnalyzer
from health.models import Analysis
from health.services import FALLBACK_WARNING, AnalysisService, save_analysis


def png_upload(name="photo.png", color=(200, 100, 80)):
    buffer = io.BytesIO()
    Image.new("RGB", (100, 100), color).save(buffer, format="PNG")
    return SimpleUploadedFile(name, buffer.getvalue(), content_type="image/png")


class ApiTestCase(TestCase):
    def setUp(self):
        cache.clear()
        self.client = Client()
        self.user = User.objects.create_user(username="u1", password="pass12345")
        self.client.login(username="u1", password="pass12345")

        self.primary = Mock(spec=HealthAnalyzer)
        self.primary.name = "gemini"
        self.fallback = Mock(wraps=MockAnalyzer())
        self.fallback.name = "mock"
        patcher = patch.object(
            apps.get_app_config("health"),
            "analysis_service",
            AnalysisService(primary=self.primary, fallback=self.fallback),
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def post_json(self, name, data):
        return self.client.post(reverse(name), data, content_type="application/json")


class ApiAuthTests(ApiTestCase):
    def test_unauthenticated_requests_get_401(self):
        self.client.logout()
        for name in ("api-stats", "api-analyses", "api-user-analyses"):
            with self.subTest(name=name):
                response = self.client.get(reverse(name))
                self.assertEqual(response.status_code, 401)
                self.assertIn("error", response.json())
        self.assertEqual(self.post_json("api-chatbot", {"message": "hi"}).status_code, 401)

    @override_settings(IDENTITY_SUBJECT_HEADER="HTTP_X_IDENTITY_SUBJECT")
    def test_identity_header_authenticates_api_calls(self):
        self.client.logout()
        response = self.client.get(reverse("api-stats"), HTTP_X_IDENTITY_SUBJECT="idp_api")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total"], 0)
        self.assertTrue(User.objects.filter(username="idp_api").exists())

    @override_settings(IDENTITY_SUBJECT_HEADER="HTTP_X_IDENTITY_SUBJECT")
    def test_identity_header_cannot_read_password_account_data(self):
        save_analysis(self.user, Analysis.TYPE_REPORT, {})
        self.client.logout()
        response = self.client.get(reverse("api-analyses"), HTTP_X_IDENTITY_SUBJECT="u1")
        self.assertEqual(response.status_code, 401)
        self.assertNotIn("analyses", response.json())

    @override_settings(IDENTITY_SUBJECT_HEADER="")
    def test_identity_header_is_ignored_unless_configured(self):
        self.client.logout()
        response = self.client.get(reverse("api-stats"), HTTP_X_IDENTITY_SUBJECT="idp_api")
        self.assertEqual(response.status_code, 401)
        self.assertFalse(User.objects.filter(username="idp_api").exists())


class AnalyzeReportApiTests(ApiTestCase):
    def test_missing_file_is_rejected_before_analysis(self):
        response = self.client.post(reverse("api-analyze-report"), {})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "No file provided"})
        self.primary.structure_ocr_data.assert_not_called()

    def test_wrong_type_is_rejected(self):
        upload = SimpleUploadedFile("report.txt", b"Hemoglobin 9", content_type="text/plain")
        response = self.client.post(reverse("api-analyze-report"), {"file": upload})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Please upload a JPEG, PNG, or PDF file")

    def test_pdf_is_unprocessable(self):
        upload = SimpleUploadedFile("report.pdf", b"%PDF-1.4 test", content_type="application/pdf")
        response = self.client.post(reverse("api-analyze-report"), {"file": upload})
        self.assertEqual(response.status_code, 422)
        self.assertIn("PDF processing not yet implemented", response.json()["error"])
        self.assertFalse(Analysis.objects.exists())

    @patch("api.views.extract_text_from_image", return_value="Hemoglobin: 9 g/dL")
    def test_primary_result_is_saved(self, mock_ocr):
        self.primary.structure_ocr_data.return_value = {
            "metrics": [{"name": "Hemoglobin", "value": "9", "unit": "g/dL", "status": "low"}],
            "problems_detected": [],
            "treatments": [],
            "summary": "Low hemoglobin.",
        }
        response = self.client.post(reverse("api-analyze-report"), {"file": png_upload("report.png")})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["raw_text"], "Hemoglobin: 9 g/dL")
        self.assertNotIn("fallback", body)
        analysis = Analysis.objects.get(pk=body["analysis_id"])
        self.assertEqual(analysis.user, self.user)
        self.assertFalse(analysis.is_fallback)
        self.fallback.structure_ocr_data.assert_not_called()

    @patch("api.views.extract_text_from_image", return_value="Hemoglobin: 9 g/dL")
    def test_quota_error_falls_back_to_pattern_matching(self, mock_ocr):
        self.primary.structure_ocr_data.side_effect = AIProviderError(AIErrorKind.QUOTA_EXCEEDED, "quota")
        response = self.client.post(reverse("api-analyze-report"), {"file": png_upload("report.png")})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["fallback"])
        self.assertEqual(body["warning"], FALLBACK_WARNING)
        self.assertEqual(body["structured_data"]["metrics"][0]["value"], "9")
        self.assertTrue(Analysis.objects.get(pk=body["analysis_id"]).is_fallback)

    @patch("api.views.extract_text_from_image", return_value="Hemoglobin: 9 g/dL")
    def test_service_error_is_surfaced(self, mock_ocr):
        self.primary.structure_ocr_data.side_effect = AIProviderError(AIErrorKind.SERVICE, "boom")
        response = self.client.post(reverse("api-analyze-report"), {"file": png_upload("report.png")})

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["errorType"], "service")
        self.fallback.structure_ocr_data.assert_not_called()
        self.assertFalse(Analysis.objects.exists())


class AnalyzeFaceApiTests(ApiTestCase):
    def test_face_upload_returns_metrics_and_interpretation(self):
        self.primary.interpret_face_metrics.return_value = {
            "observations": "Moderate redness.",
            "recommendations": "Use sunscreen.",
        }
        response = self.client.post(reverse("api-analyze-face"), {"file": png_upload()})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["face_detected"])
        self.assertEqual(body["visual_metrics"][0]["redness_percentage"], 59)
        self.assertEqual(body["observations"], "Moderate redness.")
        self.assertTrue(body["annotated_image"])
        analysis = Analysis.objects.get(pk=body["analysis_id"])
        self.assertEqual(analysis.type, Analysis.TYPE_FACE)

    def test_undecodable_image_is_unprocessable(self):
        upload = SimpleUploadedFile("face.png", b"not an image", content_type="image/png")
        response = self.client.post(reverse("api-analyze-face"), {"file": upload})
        self.assertEqual(response.status_code, 422)
        self.primary.interpret_face_metrics.assert_not_called()

    def test_pdf_is_not_a_face_photo(self):
        upload = SimpleUploadedFile("face.pdf", b"%PDF-1.4", content_type="application/pdf")
        response = self.client.post(reverse("api-analyze-face"), {"file": upload})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Please upload a JPEG or PNG image")


class AnalyzeRiskApiTests(ApiTestCase):
    def test_requires_user_data(self):
        response = self.post_json("api-analyze-risk", {"visual_metrics": [{"redness_percentage": 10}]})
        self.assertEqual(response.status_code, 400)
        self.assertTrue(response.json()["error"].startswith("user_data:"))

    def test_requires_a_data_source(self):
        response = self.post_json("api-analyze-risk", {"user_data": {"age": 30}})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "At least one of lab_data or visual_metrics is required")
        self.primary.generate_risk_assessment.assert_not_called()

    def test_rate_limit_falls_back(self):
        self.primary.generate_risk_assessment.side_effect = AIProviderError(AIErrorKind.RATE_LIMITED, "slow")
        response = self.post_json(
            "api-analyze-risk",
            {"visual_metrics": [{"redness_percentage": 80, "yellowness_percentage": 10}], "user_data": {"age": 30}},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["fallback"])
        self.assertIn("**Overall Risk Level**: Moderate", body["risk_assessment"])
        analysis = Analysis.objects.get(pk=body["analysis_id"])
        self.assertEqual(analysis.structured_data, {"overall_risk_level": "Moderate"})

    def test_numeric_strings_are_accepted_as_percentages(self):
        self.primary.generate_risk_assessment.side_effect = AIProviderError(AIErrorKind.RATE_LIMITED, "slow")
        response = self.post_json(
            "api-analyze-risk", {"visual_metrics": [{"redness_percentage": "72"}], "user_data": {"age": 30}}
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("**Facial Redness**: 72% - Elevated", response.json()["risk_assessment"])
        self.primary.generate_risk_assessment.assert_called_once_with(None, [{"redness_percentage": 72.0}], {"age": 30})

    def test_non_numeric_percentage_is_rejected(self):
        for metrics in ({"redness_percentage": "abc"}, [{"yellowness_percentage": 140}], ["red"]):
            with self.subTest(metrics=metrics):
                response = self.post_json("api-analyze-risk", {"visual_metrics": metrics, "user_data": {"age": 30}})
                self.assertEqual(response.status_code, 400)
                self.assertTrue(response.json()["error"].startswith("visual_metrics:"))
        self.primary.generate_risk_assessment.assert_not_called()


class AnalysisListApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        for _ in range(25):
            save_analysis(self.user, Analysis.TYPE_REPORT, {})
        save_analysis(self.user, Analysis.TYPE_FACE, {})
        other = User.objects.create_user(username="u2", password="pass12345")
        save_analysis(other, Analysis.TYPE_REPORT, {})

    def test_paginates_own_analyses(self):
        response = self.client.get(reverse("api-analyses"), {"page": 3, "limit": 10})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total"], 26)
        self.assertEqual(body["totalPages"], 3)
        self.assertEqual(len(body["analyses"]), 6)
        self.assertIn("createdAt", body["analyses"][0])

    def test_rejects_invalid_pagination(self):
        for params in ({"limit": 101}, {"limit": 0}, {"page": 0}, {"page": "x"}):
            with self.subTest(params=params):
                self.assertEqual(self.client.get(reverse("api-analyses"), params).status_code, 400)

    def test_filters_by_type(self):
        response = self.client.get(reverse("api-analyses"), {"type": "face"})
        self.assertEqual(response.json()["total"], 1)

        response = self.client.get(reverse("api-user-analyses"), {"type": "report"})
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(len(body["analyses"]), 25)
        self.assertTrue(all(item["type"] == "report" for item in body["analyses"]))

    def test_unknown_type_is_rejected(self):
        self.assertEqual(self.client.get(reverse("api-user-analyses"), {"type": "xray"}).status_code, 400)

    def test_stats_count_by_type(self):
        body = self.client.get(reverse("api-stats")).json()
        self.assertEqual(body["total"], 26)
        self.assertEqual(body["by_type"], {"report": 25, "face": 1, "risk": 0})


class ChatbotApiTests(ApiTestCase):
    def test_empty_message_is_a_validation_error(self):
        response = self.post_json("api-chatbot", {"message": ""})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(), {"success": False, "error": "Message is required", "errorType": "validation"}
        )

    def test_long_message_is_rejected(self):
        response = self.post_json("api-chatbot", {"message": "a" * 2001})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Message is too long (max 2000 characters)")
        self.primary.generate_health_insights.assert_not_called()

    def test_primary_reply_uses_saved_analyses(self):
        save_analysis(
            self.user,
            Analysis.TYPE_REPORT,
            {},
            structured_data={"metrics": [{"name": "Glucose", "value": "150", "unit": "mg/dL", "status": "high"}]},
        )
        self.primary.generate_health_insights.return_value = "Your glucose is high."
        response = self.post_json(
            "api-chatbot",
            {
                "message": "How is my glucose?",
                "conversationHistory": [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}],
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["response"], "Your glucose is high.")
        self.assertIn("timestamp", body)
        prompt = self.primary.generate_health_insights.call_args[0][0]
        self.assertIn("    - Glucose: 150 mg/dL [high]", prompt)
        self.assertIn("Assistant: hello", prompt)
        self.assertIn("=== CURRENT QUESTION ===\nHow is my glucose?", prompt)

    def test_client_analyses_used_when_none_saved(self):
        self.primary.generate_health_insights.side_effect = AIProviderError(AIErrorKind.QUOTA_EXCEEDED, "quota")
        response = self.post_json(
            "api-chatbot",
            {
                "message": "Explain my latest report",
                "userAnalyses": [
                    {
                        "type": "report",
                        "createdAt": "2026-03-01T10:00:00+00:00",
                        "structuredData": {"metrics": [{"name": "Hemoglobin", "value": "9", "status": "low"}]},
                    }
                ],
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["fallback"])
        self.assertIn("| Hemoglobin | 9 | low |", body["response"])

    def test_client_analyses_with_missing_dates(self):
        self.primary.generate_health_insights.return_value = "Here is your summary."
        response = self.post_json(
            "api-chatbot",
            {
                "message": "Summarize my history",
                "userAnalyses": [{"type": "report", "createdAt": "2024-01-01T00:00:00Z"}, {"type": "face"}],
            },
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["response"], "Here is your summary.")
        prompt = self.primary.generate_health_insights.call_args[0][0]
        self.assertIn("Health data spans: Unknown to Jan 01, 2024", prompt)

    def test_service_error_is_reported(self):
        self.primary.generate_health_insights.side_effect = AIProviderError(AIErrorKind.SERVICE, "down")
        response = self.post_json("api-chatbot", {"message": "hello"})

        self.assertEqual(response.status_code, 502)
        body = response.json()
        self.assertFalse(body["success"])
        self.assertEqual(body["errorType"], "service")
        self.fallback.generate_health_insights.assert_not_called()

    def test_rate_limit_without_fallback_success_is_reported_as_429(self):
        self.primary.generate_health_insights.side_effect = AIProviderError(AIErrorKind.RATE_LIMITED, "slow")
        self.fallback.generate_health_insights.side_effect = AIProviderError(AIErrorKind.RATE_LIMITED, "slow")
        response = self.post_json("api-chatbot", {"message": "hello"})

        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.json()["errorType"], "rate_limit")
