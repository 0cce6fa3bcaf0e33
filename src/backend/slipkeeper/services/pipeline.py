"""
Extraction pipeline: supplier → parser → (optionally) deadlines.

With a primary supplier configured the run is a two-step sequence: try the
primary, and when it fails or yields nothing usable, run the whole pipeline
again from scratch on the secondary.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from slipkeeper.config import settings
from slipkeeper.models.errors import OCRErrorType, SupplierError, UnsupportedFormatError, make_error
from slipkeeper.models.receipt import Deadlines, ExtractedReceipt, PolicySource
from slipkeeper.services.deadlines import DeadlineCalculator
from slipkeeper.services.email import EmailReceiptParser
from slipkeeper.services.parser import ParseContext, ReceiptParser
from slipkeeper.services.suppliers.base import ReceiptPayload, TextSupplier

logger = logging.getLogger(__name__)

# Errors that still leave a record worth keeping
USABLE_ERRORS = {OCRErrorType.PARTIAL_EXTRACTION}


@dataclass(frozen=True)
class PipelineOutcome:
    receipt: ExtractedReceipt
    deadlines: Deadlines


class ExtractionPipeline:
    """Runs one payload through a supplier and the receipt parser."""

    def __init__(
        self,
        secondary: TextSupplier,
        primary: Optional[TextSupplier] = None,
        parser: Optional[ReceiptParser] = None,
        email_parser: Optional[ReceiptParser] = None,
        deadline_calculator: Optional[DeadlineCalculator] = None,
        min_text_length: Optional[int] = None,
        min_provider_confidence: Optional[float] = None,
    ):
        self.primary = primary
        self.secondary = secondary
        self.parser = parser or ReceiptParser()
        self.email_parser = email_parser or EmailReceiptParser()
        self.deadline_calculator = deadline_calculator or DeadlineCalculator()
        self.min_text_length = min_text_length if min_text_length is not None else settings.MIN_TEXT_LENGTH
        self.min_provider_confidence = (
            min_provider_confidence if min_provider_confidence is not None else settings.MIN_PROVIDER_CONFIDENCE
        )

    async def run(self, payload: ReceiptPayload, context: Optional[ParseContext] = None) -> ExtractedReceipt:
        """
        Extract one receipt. Never raises; failures are carried in `receipt.error`.
        """
        context = context or ParseContext()

        if self.primary is not None:
            receipt = await self._run_supplier(self.primary, payload, context)
            if is_usable(receipt):
                return receipt
            logger.warning(
                "Primary supplier gave no usable result, falling back",
                extra={
                    'provider': self.primary.name,
                    'fallback': self.secondary.name,
                    'error': receipt.error.type.value if receipt.error else None,
                },
            )

        return await self._run_supplier(self.secondary, payload, context)

    async def run_with_deadlines(
        self,
        payload: ReceiptPayload,
        user_id: Optional[str] = None,
        context: Optional[ParseContext] = None,
    ) -> PipelineOutcome:
        """Extract a receipt and compute its return and warranty deadlines."""
        context = context or ParseContext()
        if user_id is not None:
            context = replace(context, user_id=user_id)

        receipt = await self.run(payload, context)
        if receipt.normalized_date is None:
            return PipelineOutcome(receipt=receipt, deadlines=Deadlines())

        try:
            deadlines = await self.deadline_calculator.compute(
                receipt.normalized_date,
                receipt.policy,
                user_id=context.user_id,
                merchant_name=receipt.merchant,
            )
        except Exception:
            logger.exception("Deadline computation failed", extra={'merchant': receipt.merchant})
            receipt.warnings.append("Return and warranty deadlines could not be computed")
            return PipelineOutcome(receipt=receipt, deadlines=Deadlines())

        if PolicySource.MERCHANT_DEFAULT in (deadlines.return_source, deadlines.warranty_source):
            policy = receipt.policy.model_copy(update={'policy_source': PolicySource.MERCHANT_DEFAULT})
            receipt = receipt.model_copy(update={'policy': policy})

        return PipelineOutcome(receipt=receipt, deadlines=deadlines)

    async def _run_supplier(
        self,
        supplier: TextSupplier,
        payload: ReceiptPayload,
        context: ParseContext,
    ) -> ExtractedReceipt:
        try:
            result = await supplier.supply(payload)
        except UnsupportedFormatError as e:
            logger.warning("Unsupported format", extra={'provider': supplier.name, 'error': str(e)})
            return _failed(supplier, OCRErrorType.INVALID_FORMAT)
        except SupplierError as e:
            logger.warning("Supplier failed", extra={'provider': supplier.name, 'error': str(e)})
            return _failed(supplier, OCRErrorType.PROCESSING_FAILED)
        except Exception:
            logger.exception("Supplier raised unexpectedly", extra={'provider': supplier.name})
            return _failed(supplier, OCRErrorType.PROCESSING_FAILED)

        text = result.text or ''
        if len(text.strip()) < self.min_text_length and result.hints is None:
            receipt = ExtractedReceipt(raw_text=text, provider=result.provider,
                                       provider_confidence=result.confidence)
            receipt.missing_fields = receipt.missing_key_fields()
            receipt.error = make_error(OCRErrorType.NO_TEXT_DETECTED)
            return receipt

        if result.confidence < self.min_provider_confidence:
            receipt = ExtractedReceipt(raw_text=text, provider=result.provider,
                                       provider_confidence=result.confidence)
            receipt.missing_fields = receipt.missing_key_fields()
            receipt.warnings.append(f"Provider confidence {result.confidence:.0%} is too low to read the receipt")
            receipt.error = make_error(OCRErrorType.LOW_QUALITY_IMAGE)
            return receipt

        parser = self.email_parser if result.kind == 'email' else self.parser
        receipt = parser.parse(text, context=context, hints=result.hints)
        receipt.provider = result.provider
        receipt.provider_confidence = result.confidence
        return receipt


def is_usable(receipt: ExtractedReceipt) -> bool:
    return receipt.error is None or receipt.error.type in USABLE_ERRORS


def _failed(supplier: TextSupplier, error_type: OCRErrorType) -> ExtractedReceipt:
    receipt = ExtractedReceipt(provider=supplier.name)
    receipt.missing_fields = receipt.missing_key_fields()
    receipt.error = make_error(error_type)
    return receipt
