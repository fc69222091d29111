from .base import HealthAnalyzer
from .errors import AIErrorKind, AIProviderError
from .gemini import GeminiAnalyzer
from .mock import MockAnalyzer


def create_analyzer(provider: str, api_key: str = "", model_name: str = "gemini-2.0-flash") -> HealthAnalyzer:
    if provider == "mock":
        return MockAnalyzer()
    if provider == "gemini":
        return GeminiAnalyzer(api_key=api_key, model_name=model_name)
    raise ValueError(f"Unknown analyzer provider: {provider}")


__all__ = [
    "AIErrorKind",
    "AIProviderError",
    "GeminiAnalyzer",
    "HealthAnalyzer",
    "MockAnalyzer",
    "create_analyzer",
]
