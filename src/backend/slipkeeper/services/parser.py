"""
Receipt parser: one synchronous extraction pass over receipt text.

The record starts empty and a fixed sequence of steps fills it in:
fields → provider hints → date → tax → policy → confidence → missing fields.
"""

import datetime as dt
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from slipkeeper.models.errors import OCRError, OCRErrorType, make_error
from slipkeeper.models.receipt import ExtractedReceipt, PolicyInfo, ReceiptHints
from slipkeeper.services.fields import NON_MERCHANT_RE, ExtractedFields, FieldExtractor
from slipkeeper.services.policy import PolicyAnalyzer
from slipkeeper.services.tax import TaxReconciler, extract_tax, extract_vat
from slipkeeper.utils.dates import format_iso, normalize_date, parse_date
from slipkeeper.utils.money import parse_money
from slipkeeper.utils.scoring import ConfidenceScorer

logger = logging.getLogger(__name__)

MISSING_FIELD_LABELS = {
    'merchant': 'merchant name',
    'date': 'purchase date',
    'total': 'total amount',
}


@dataclass
class ParseContext:
    """
    Hints from the caller that are not in the receipt text.

    All fields are optional and can be None.
    """
    purchase_date: Optional[dt.date] = None  # user-entered date, overrides the receipt
    user_id: Optional[str] = None            # owner of merchant rules
    sender_name: Optional[str] = None        # e-mail sender display name
    subject: Optional[str] = None            # e-mail subject line
    today: Optional[dt.date] = None          # anchor for the date fallback


@dataclass
class _ParseState:
    text: str
    context: ParseContext
    hints: Optional[ReceiptHints] = None
    fields: Optional[ExtractedFields] = None
    hint_vat: Optional[Decimal] = None
    hint_policy: Optional[PolicyInfo] = None


class ReceiptParser:
    """Service for parsing receipt text into an ExtractedReceipt."""

    def __init__(
        self,
        field_extractor: Optional[FieldExtractor] = None,
        tax_reconciler: Optional[TaxReconciler] = None,
        policy_analyzer: Optional[PolicyAnalyzer] = None,
        scorer: Optional[ConfidenceScorer] = None,
    ):
        self.field_extractor = field_extractor or FieldExtractor()
        self.tax_reconciler = tax_reconciler or TaxReconciler()
        self.policy_analyzer = policy_analyzer or PolicyAnalyzer()
        self.scorer = scorer or ConfidenceScorer()

        # Order matters: hints override text fields, tax needs the total,
        # confidence and missing fields need everything before them.
        self.steps: List[Tuple[str, Callable[[ExtractedReceipt, _ParseState], None]]] = [
            ('fields', self._apply_fields),
            ('hints', self._apply_hints),
            ('date', self._apply_date),
            ('tax', self._apply_tax),
            ('policy', self._apply_policy),
            ('confidence', self._apply_confidence),
            ('missing_fields', self._apply_missing_fields),
        ]

    def parse(
        self,
        text: str,
        context: Optional[ParseContext] = None,
        hints: Optional[ReceiptHints] = None,
    ) -> ExtractedReceipt:
        """
        Parse receipt text and extract all available fields.

        Never raises: an unexpected fault becomes a PROCESSING_FAILED error on
        the returned record, which keeps whatever was extracted before it.

        Args:
            text: OCR or pasted receipt text
            context: Optional caller hints (purchase date, sender)
            hints: Optional structured fields from a provider, validated here

        Returns:
            ExtractedReceipt
        """
        text = text or ''
        receipt = ExtractedReceipt(raw_text=text)
        state = _ParseState(text=text, context=context or ParseContext(), hints=hints)

        for name, step in self.steps:
            try:
                step(receipt, state)
            except Exception:
                logger.exception("Receipt parsing failed during %s", name)
                receipt.missing_fields = receipt.missing_key_fields()
                receipt.warnings.append(f"Extraction stopped during {name}")
                receipt.error = make_error(OCRErrorType.PROCESSING_FAILED)
                return receipt

        logger.info(
            "Parsed receipt",
            extra={
                'merchant': receipt.merchant,
                'confidence': receipt.confidence.value,
                'missing': receipt.missing_fields,
            },
        )
        return receipt

    def _extract_fields(self, text: str, context: ParseContext) -> ExtractedFields:
        return self.field_extractor.extract(text)

    def _apply_fields(self, receipt: ExtractedReceipt, state: _ParseState):
        fields = self._extract_fields(state.text, state.context)
        state.fields = fields
        receipt.merchant = fields.merchant
        receipt.total = fields.total
        receipt.subtotal = fields.subtotal
        receipt.invoice_number = fields.invoice_number
        receipt.date = fields.date_token

    def _apply_hints(self, receipt: ExtractedReceipt, state: _ParseState):
        hints = state.hints
        if hints is None:
            return

        if hints.merchant:
            merchant = ' '.join(hints.merchant.split())
            if _is_usable_hint_merchant(merchant):
                receipt.merchant = merchant
            else:
                receipt.warnings.append(f"Ignoring provider merchant '{hints.merchant}'")

        if hints.date:
            if parse_date(hints.date) is not None:
                receipt.date = hints.date.strip()
            else:
                receipt.warnings.append(f"Ignoring provider date '{hints.date}'")

        for name in ('total', 'subtotal'):
            value = getattr(hints, name)
            if value is None:
                continue
            amount = parse_money(value)
            if amount is not None:
                setattr(receipt, name, amount)
            else:
                receipt.warnings.append(f"Ignoring provider {name} '{value}'")

        if hints.vat_amount is not None:
            state.hint_vat = parse_money(hints.vat_amount)

        if hints.invoice_number and hints.invoice_number.strip():
            receipt.invoice_number = hints.invoice_number.strip()

        state.hint_policy = hints.policy

    def _apply_date(self, receipt: ExtractedReceipt, state: _ParseState):
        context = state.context
        if context.purchase_date is not None:
            receipt.normalized_date = context.purchase_date
            if receipt.date is None:
                receipt.date = format_iso(context.purchase_date)
        elif receipt.date is not None:
            receipt.normalized_date = normalize_date(receipt.date, receipt.warnings, today=context.today)

    def _apply_tax(self, receipt: ExtractedReceipt, state: _ParseState):
        extracted_vat = state.hint_vat if state.hint_vat is not None else extract_vat(state.text)
        receipt.tax_amount = extract_tax(state.text)

        breakdown = self.tax_reconciler.reconcile(receipt.total, receipt.subtotal, extracted_vat)
        receipt.vat_amount = breakdown.vat_amount
        receipt.subtotal = breakdown.subtotal
        receipt.vat_source = breakdown.vat_source
        receipt.warnings.extend(breakdown.warnings)

    def _apply_policy(self, receipt: ExtractedReceipt, state: _ParseState):
        policy = self.policy_analyzer.analyze(state.text)
        if state.hint_policy is not None:
            provided = state.hint_policy.model_dump(exclude_none=True, exclude={'policy_source'})
            policy = self.policy_analyzer.analyze_terms(policy.model_copy(update=provided))
        receipt.policy = policy

    def _apply_confidence(self, receipt: ExtractedReceipt, state: _ParseState):
        has_date = receipt.date is not None or receipt.normalized_date is not None
        score, level = self.scorer.rate(receipt.merchant, has_date, receipt.total)
        receipt.raw_confidence_score = score
        receipt.confidence = level

    def _apply_missing_fields(self, receipt: ExtractedReceipt, state: _ParseState):
        missing = receipt.missing_key_fields()
        receipt.missing_fields = missing

        if 0 < len(missing) < len(MISSING_FIELD_LABELS):
            labels = ', '.join(MISSING_FIELD_LABELS[name] for name in missing)
            receipt.warnings.append(f"Could not detect: {labels}")
            receipt.error = make_error(OCRErrorType.PARTIAL_EXTRACTION)
        elif missing:
            receipt.warnings.append("No receipt information could be extracted")
            receipt.error = self._nothing_found_error()

    def _nothing_found_error(self) -> OCRError:
        # Text was present but none of the key fields: usually a bad photo
        return make_error(OCRErrorType.LOW_QUALITY_IMAGE)


def _is_usable_hint_merchant(name: str) -> bool:
    if len(name) < 2 or not re.search(r'[A-Za-z]', name):
        return False
    return not NON_MERCHANT_RE.match(name)
