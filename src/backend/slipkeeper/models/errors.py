"""
Error taxonomy surfaced to callers of the extraction pipeline.
"""

from enum import Enum
from typing import Dict

from pydantic import BaseModel


class OCRErrorType(str, Enum):
    NO_TEXT_DETECTED = "NO_TEXT_DETECTED"
    LOW_QUALITY_IMAGE = "LOW_QUALITY_IMAGE"
    PROCESSING_FAILED = "PROCESSING_FAILED"
    INVALID_FORMAT = "INVALID_FORMAT"
    PARTIAL_EXTRACTION = "PARTIAL_EXTRACTION"


class OCRError(BaseModel):
    """User-facing error with a remediation hint."""
    type: OCRErrorType
    message: str
    suggestion: str
    can_retry: bool


OCR_ERRORS: Dict[OCRErrorType, Dict] = {
    OCRErrorType.NO_TEXT_DETECTED: {
        'message': "No text was detected in the image",
        'suggestion': "Retake the photo with the whole receipt in frame, well lit and in focus, "
                      "ideally on a dark, contrasting surface.",
        'can_retry': False,
    },
    OCRErrorType.LOW_QUALITY_IMAGE: {
        'message': "The image quality is too low for accurate scanning",
        'suggestion': "Use better lighting, hold the camera steady and avoid shadows and glare.",
        'can_retry': True,
    },
    OCRErrorType.PROCESSING_FAILED: {
        'message': "Something went wrong while processing the receipt",
        'suggestion': "Please try again. If the problem persists, enter the details manually.",
        'can_retry': True,
    },
    OCRErrorType.INVALID_FORMAT: {
        'message': "The file format is not supported",
        'suggestion': "Please upload a JPEG, PNG or PDF file, or paste the receipt text.",
        'can_retry': False,
    },
    OCRErrorType.PARTIAL_EXTRACTION: {
        'message': "Some receipt details couldn't be read automatically",
        'suggestion': "The fields that couldn't be detected are highlighted. Please fill them in manually.",
        'can_retry': False,
    },
}


def make_error(error_type: OCRErrorType, **overrides) -> OCRError:
    """Build an OCRError from the catalog, optionally overriding message or suggestion."""
    fields = dict(OCR_ERRORS[error_type])
    fields.update(overrides)
    return OCRError(type=error_type, **fields)


class SupplierError(Exception):
    """A text supplier failed to produce a result."""


class UnsupportedFormatError(SupplierError):
    """The payload is not a format the supplier can read."""
