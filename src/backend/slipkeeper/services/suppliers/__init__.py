from slipkeeper.services.suppliers.base import ReceiptPayload, SupplierResult, TextSupplier
from slipkeeper.services.suppliers.tesseract import TesseractSupplier
from slipkeeper.services.suppliers.text import PlainTextSupplier
from slipkeeper.services.suppliers.vision import GeminiVisionSupplier

__all__ = [
    'ReceiptPayload',
    'SupplierResult',
    'TextSupplier',
    'PlainTextSupplier',
    'TesseractSupplier',
    'GeminiVisionSupplier',
]
