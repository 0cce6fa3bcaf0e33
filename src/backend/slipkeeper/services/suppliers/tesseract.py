"""
Local OCR supplier for receipt images and PDFs.
"""

import asyncio
import io
import logging
from typing import List, Optional, Tuple

import PyPDF2
import pytesseract
from pdf2image import convert_from_bytes
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
from PIL import Image, ImageEnhance, UnidentifiedImageError
from PyPDF2.errors import PdfReadError

from slipkeeper.config import settings
from slipkeeper.models.errors import SupplierError, UnsupportedFormatError
from slipkeeper.services.suppliers.base import ReceiptPayload, SupplierResult, TextSupplier

logger = logging.getLogger(__name__)

# Below this many characters a PDF is treated as scanned and OCRed
PDF_TEXT_MIN_LENGTH = 50

OCR_ERRORS = (
    pytesseract.TesseractError,
    pytesseract.TesseractNotFoundError,
    UnidentifiedImageError,
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFSyntaxError,
    OSError,
)


class TesseractSupplier(TextSupplier):
    """Service for extracting text from receipt files."""

    name = "tesseract"

    def __init__(self, tesseract_cmd: Optional[str] = None, config: Optional[str] = None,
                 contrast: Optional[float] = None):
        """Initialize OCR service with Tesseract configuration."""
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd or settings.TESSERACT_CMD
        self.config = config or settings.TESSERACT_CONFIG
        self.contrast = contrast or settings.OCR_CONTRAST_FACTOR

    async def supply(self, payload: ReceiptPayload) -> SupplierResult:
        if not (payload.is_pdf or payload.is_image):
            raise UnsupportedFormatError(f"Unsupported file type: {payload.mime_type}")

        try:
            text, confidence = await asyncio.to_thread(self.extract_text_from_file, payload)
        except OCR_ERRORS as e:
            raise SupplierError(f"Tesseract failed on {payload.filename or payload.mime_type}: {e}") from e

        logger.info("OCR complete", extra={'provider': self.name, 'length': len(text), 'confidence': confidence})
        return SupplierResult(text=text, provider=self.name, confidence=confidence)

    def extract_text_from_file(self, payload: ReceiptPayload) -> Tuple[str, float]:
        """
        Extract text from a file (auto-detects format).

        Returns:
            (text, confidence in 0..1)
        """
        if payload.is_pdf:
            return self.extract_text_from_pdf(payload.as_bytes())
        return self.extract_text_from_image(payload.as_bytes())

    def extract_text_from_image(self, image_data: bytes) -> Tuple[str, float]:
        """
        Extract text from an image using Tesseract OCR.

        Args:
            image_data: Raw image bytes (JPEG, PNG, etc.)

        Returns:
            Extracted text and mean word confidence
        """
        image = Image.open(io.BytesIO(image_data))
        return self._ocr(self._preprocess_image(image))

    def extract_text_from_pdf(self, pdf_data: bytes) -> Tuple[str, float]:
        """
        Extract text from a PDF file.
        First tries to extract text directly, then falls back to OCR.
        """
        text = self._extract_pdf_text_direct(pdf_data)
        if len(text.strip()) >= PDF_TEXT_MIN_LENGTH:
            return text.strip(), 1.0

        logger.info("PDF appears to be image-based, using OCR")
        pages = [self._ocr(self._preprocess_image(image)) for image in convert_from_bytes(pdf_data)]
        if not pages:
            return "", 0.0

        text = "\n".join(page_text for page_text, _ in pages)
        confidence = sum(conf for _, conf in pages) / len(pages)
        return text.strip(), confidence

    def _extract_pdf_text_direct(self, pdf_data: bytes) -> str:
        """Extract text directly from PDF (for text-based PDFs)."""
        try:
            pdf_reader = PyPDF2.PdfReader(io.BytesIO(pdf_data))
            return "\n".join((page.extract_text() or "") for page in pdf_reader.pages)

        except PdfReadError:
            logger.warning("Direct PDF text extraction failed", exc_info=True)
            return ""

    def _ocr(self, image: Image.Image) -> Tuple[str, float]:
        data = pytesseract.image_to_data(image, config=self.config, output_type=pytesseract.Output.DICT)
        text = pytesseract.image_to_string(image, config=self.config)
        return text.strip(), mean_word_confidence(data.get('text', []), data.get('conf', []))

    def _preprocess_image(self, image: Image.Image) -> Image.Image:
        """
        Preprocess image to improve OCR accuracy.

        Args:
            image: PIL Image object

        Returns:
            Preprocessed image
        """
        if image.mode != 'RGB':
            image = image.convert('RGB')

        # Grayscale plus extra contrast helps with faded thermal paper
        image = image.convert('L')
        return ImageEnhance.Contrast(image).enhance(self.contrast)


def mean_word_confidence(words: List[str], confidences: List) -> float:
    """Mean Tesseract confidence over recognised words, scaled to 0..1."""
    scores = []
    for word, conf in zip(words, confidences):
        try:
            value = float(conf)
        except (TypeError, ValueError):
            continue
        # -1 marks layout blocks rather than words
        if value >= 0 and str(word).strip():
            scores.append(value)

    if not scores:
        return 0.0
    return round(sum(scores) / len(scores) / 100, 2)
