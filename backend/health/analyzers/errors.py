import enum


class AIErrorKind(enum.Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    INVALID_RESPONSE = "invalid_response"
    SERVICE = "service"

    @property
    def should_fall_back(self) -> bool:
        return self in (AIErrorKind.QUOTA_EXCEEDED, AIErrorKind.RATE_LIMITED)

    @property
    def http_status(self) -> int:
        if self.should_fall_back:
            return 429
        return 502


class AIProviderError(Exception):
    """Failure reported by a remote analyzer, already classified."""

    def __init__(self, kind: AIErrorKind, message: str):
        super().__init__(message)
        self.kind = kind

    @property
    def user_message(self) -> str:
        if self.kind.should_fall_back:
            return "AI service rate limit exceeded. Please try again in a few moments."
        if self.kind is AIErrorKind.INVALID_RESPONSE:
            return "AI service returned an unreadable response. Please try again."
        return "AI service is temporarily unavailable. Please try again later."
