"""Contract for anything that turns an upload into receipt text."""

import abc
from dataclasses import dataclass
from typing import Optional, Union

from slipkeeper.models.receipt import ReceiptHints

IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.gif', '.webp', '.bmp', '.tif', '.tiff')


@dataclass(frozen=True)
class ReceiptPayload:
    """One uploaded file or pasted text."""
    content: Union[bytes, str]
    mime_type: str = "text/plain"
    filename: str = ""

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == 'application/pdf' or self.filename.lower().endswith('.pdf')

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith('image/') or self.filename.lower().endswith(IMAGE_EXTENSIONS)

    def as_bytes(self) -> bytes:
        if isinstance(self.content, str):
            return self.content.encode('utf-8')
        return self.content

    def as_text(self) -> str:
        if isinstance(self.content, bytes):
            return self.content.decode('utf-8', errors='replace')
        return self.content


@dataclass(frozen=True)
class SupplierResult:
    """Immutable result returned by every supplier."""
    text: str
    provider: str
    confidence: float = 1.0  # 0..1
    hints: Optional[ReceiptHints] = None
    kind: str = "receipt"  # "receipt" or "email"


class TextSupplier(abc.ABC):
    """Contract that every text supplier must implement."""

    name: str = "base"

    @abc.abstractmethod
    async def supply(self, payload: ReceiptPayload) -> SupplierResult:
        """
        Return the text (and optional structured hints) for *payload*.

        Raises:
            UnsupportedFormatError: the payload type cannot be read
            SupplierError: the supplier failed
        """
