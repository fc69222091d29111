import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

from health.analyzers import AIProviderError
from health.validators import UnprocessableUpload

logger = logging.getLogger(__name__)


def _first_message(detail) -> str:
    if isinstance(detail, dict):
        for key, value in detail.items():
            message = _first_message(value)
            return message if key == "non_field_errors" else f"{key}: {message}"
        return "Invalid request"
    if isinstance(detail, (list, tuple)):
        return _first_message(detail[0]) if detail else "Invalid request"
    return str(detail)


def api_exception_handler(exc, context):
    """Shape every API error as ``{"error": message}``."""
    if isinstance(exc, DjangoValidationError):
        return Response({"error": exc.messages[0]}, status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, UnprocessableUpload):
        return Response({"error": str(exc)}, status=status.HTTP_422_UNPROCESSABLE_ENTITY)
    if isinstance(exc, AIProviderError):
        return Response(
            {"error": exc.user_message, "errorType": exc.kind.value}, status=exc.kind.http_status
        )

    response = exception_handler(exc, context)
    if response is not None:
        if isinstance(exc, ValidationError):
            response.data = {"error": _first_message(exc.detail)}
        else:
            response.data = {"error": _first_message(response.data.get("detail", response.data))}
        return response

    view = context.get("view")
    logger.exception("Unhandled error in %s", view.__class__.__name__ if view else "API view")
    return Response({"error": "Internal server error"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
