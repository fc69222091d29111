from django.conf import settings
from django.core.exceptions import ValidationError

PDF_CONTENT_TYPE = "application/pdf"
REPORT_CONTENT_TYPES = ("image/jpeg", "image/png", PDF_CONTENT_TYPE)
FACE_CONTENT_TYPES = ("image/jpeg", "image/png")

TYPE_LABELS = {
    REPORT_CONTENT_TYPES: "Please upload a JPEG, PNG, or PDF file",
    FACE_CONTENT_TYPES: "Please upload a JPEG or PNG image",
}


class UnprocessableUpload(Exception):
    """The upload is well-formed but its content cannot be analyzed."""


def validate_upload(upload, allowed_types, max_size: int | None = None):
    """Reject missing, empty, oversized or wrongly typed uploads before any processing."""
    if upload is None:
        raise ValidationError("No file provided")

    max_size = max_size or settings.MAX_UPLOAD_SIZE
    if upload.size == 0:
        raise ValidationError("File is empty")
    if upload.content_type not in allowed_types:
        raise ValidationError(TYPE_LABELS.get(tuple(allowed_types), "Unsupported file type"))
    if upload.size > max_size:
        raise ValidationError(f"File size must be less than {max_size // (1024 * 1024)}MB")
    return upload


def ensure_report_processable(upload):
    if upload.content_type == PDF_CONTENT_TYPE:
        raise UnprocessableUpload("PDF processing not yet implemented. Please upload an image file.")
