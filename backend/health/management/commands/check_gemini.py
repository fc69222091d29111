from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from health.analyzers import AIProviderError, create_analyzer


class Command(BaseCommand):
    help = "Checks that GEMINI_API_KEY is configured and the Gemini model answers."

    def add_arguments(self, parser):
        parser.add_argument("--model", default=None, help="Model to check instead of GEMINI_MODEL.")

    def handle(self, *args, **options):
        if not settings.GEMINI_API_KEY:
            raise CommandError("GEMINI_API_KEY not set.")

        model_name = options["model"] or settings.GEMINI_MODEL
        analyzer = create_analyzer("gemini", api_key=settings.GEMINI_API_KEY, model_name=model_name)
        try:
            text = analyzer.generate_health_insights("Reply with exactly: OK")
        except AIProviderError as exc:
            raise CommandError(f"Gemini API check failed ({exc.kind.value}): {exc}") from exc

        if "OK" not in text.upper():
            self.stdout.write(self.style.WARNING(f"Unexpected response from {model_name}: {text}"))
        else:
            self.stdout.write(self.style.SUCCESS(f"Gemini API is working with {model_name}."))
