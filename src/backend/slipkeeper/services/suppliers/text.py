"""Supplier for text the user pasted or uploaded directly."""

import logging

from slipkeeper.models.errors import UnsupportedFormatError
from slipkeeper.services.email import convert_html_to_text, looks_like_html
from slipkeeper.services.suppliers.base import ReceiptPayload, SupplierResult, TextSupplier

logger = logging.getLogger(__name__)

EMAIL_MIME_TYPES = ('text/html', 'message/rfc822')
EMAIL_EXTENSIONS = ('.html', '.htm', '.eml')


class PlainTextSupplier(TextSupplier):
    """Passes text through; HTML e-mails are converted to plain text first."""

    name = "text"

    async def supply(self, payload: ReceiptPayload) -> SupplierResult:
        if payload.is_image or payload.is_pdf:
            raise UnsupportedFormatError(f"{self.name} supplier cannot read {payload.mime_type}")

        text = payload.as_text()
        is_email = (
            payload.mime_type in EMAIL_MIME_TYPES
            or payload.filename.lower().endswith(EMAIL_EXTENSIONS)
            or looks_like_html(text)
        )
        if looks_like_html(text):
            text = convert_html_to_text(text)

        logger.debug("Text supplied", extra={'length': len(text), 'email': is_email})
        return SupplierResult(
            text=text,
            provider=self.name,
            confidence=1.0,
            kind="email" if is_email else "receipt",
        )
