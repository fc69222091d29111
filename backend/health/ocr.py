import logging

import pytesseract
from PIL import Image, ImageOps, UnidentifiedImageError

from .validators import UnprocessableUpload

logger = logging.getLogger(__name__)

OCR_FAILED_MESSAGE = "Failed to extract text from image. Please ensure the image is clear and readable."


def extract_text_from_image(upload) -> str:
    """OCR an uploaded image after grayscale and contrast normalization."""
    try:
        upload.seek(0)
        with Image.open(upload) as image:
            prepared = ImageOps.autocontrast(ImageOps.grayscale(image))
            text = pytesseract.image_to_string(prepared)
    except (UnidentifiedImageError, Image.DecompressionBombError, pytesseract.TesseractError, OSError) as exc:
        logger.warning("OCR failed for %s: %s", getattr(upload, "name", "upload"), exc)
        raise UnprocessableUpload(OCR_FAILED_MESSAGE) from exc

    text = text.strip()
    if not text:
        raise UnprocessableUpload(
            "No text could be extracted from the image. Please ensure the image contains readable text."
        )
    return text
