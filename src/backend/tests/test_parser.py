"""
End-to-end tests for a single parse pass over receipt text.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import asyncio
from datetime import date
from decimal import Decimal
import pytest

from slipkeeper.models.errors import OCRErrorType
from slipkeeper.models.receipt import (
    ConfidenceLevel,
    PolicyInfo,
    PolicySource,
    ReceiptHints,
    RefundType,
    VatSource,
)
from slipkeeper.services.deadlines import DeadlineCalculator
from slipkeeper.services.parser import ParseContext, ReceiptParser
from slipkeeper.services.policy import PolicyAnalyzer

BRICK_RECEIPT = (
    "BRICK PARADISE HARDWARE CC\n"
    "Tel: 011 555 0101\n"
    "Subtotal: 100.00\n"
    "VAT: 15.00\n"
    "TOTAL : 115.00\n"
    "30 DAY RETURN POLICY\n"
)


class BrokenPolicyAnalyzer(PolicyAnalyzer):
    def analyze(self, text):
        raise RuntimeError("policy analyzer exploded")


@pytest.fixture
def parser():
    return ReceiptParser()


class TestEndToEnd:

    def test_brick_paradise(self, parser):
        receipt = parser.parse(BRICK_RECEIPT, context=ParseContext(purchase_date=date(2025, 1, 1)))

        assert receipt.merchant == "BRICK PARADISE HARDWARE CC"
        assert receipt.total == Decimal("115.00")
        assert receipt.subtotal == Decimal("100.00")
        assert receipt.vat_amount == Decimal("15.00")
        assert receipt.vat_source == VatSource.EXTRACTED
        assert receipt.normalized_date == date(2025, 1, 1)
        assert receipt.policy.return_policy_days == 30
        assert receipt.policy.refund_type == RefundType.FULL
        assert receipt.policy.policy_source == PolicySource.EXTRACTED
        assert receipt.confidence == ConfidenceLevel.HIGH
        assert receipt.error is None
        assert receipt.missing_fields == []
        assert receipt.warnings == []

        deadlines = asyncio.run(DeadlineCalculator().compute(receipt.normalized_date, receipt.policy))
        assert deadlines.return_by == date(2025, 1, 31)

    def test_purchase_date_overrides_receipt_date(self, parser):
        text = "BRICK PARADISE HARDWARE CC\nDate: 14/03/2025\nTOTAL : 115.00"
        receipt = parser.parse(text, context=ParseContext(purchase_date=date(2025, 1, 1)))
        assert receipt.date == "14/03/2025"
        assert receipt.normalized_date == date(2025, 1, 1)

    def test_receipt_date_is_normalized(self, parser):
        text = "BRICK PARADISE HARDWARE CC\nDate: 14/03/2025\nTOTAL : 115.00"
        receipt = parser.parse(text)
        assert receipt.date == "14/03/2025"
        assert receipt.normalized_date == date(2025, 3, 14)

    def test_bad_date_falls_back_to_today(self, parser):
        text = "BRICK PARADISE HARDWARE CC\nDate: 31/02/2025\nTOTAL: 10.00"
        receipt = parser.parse(text, context=ParseContext(today=date(2025, 6, 1)))
        assert receipt.normalized_date == date(2025, 6, 1)
        assert any("Could not parse date" in w for w in receipt.warnings)


class TestMissingFields:

    def test_partial_extraction(self, parser):
        receipt = parser.parse("TOTAL: 50.00\n14/03/2025")
        assert receipt.merchant is None
        assert receipt.missing_fields == ["merchant"]
        assert receipt.error.type == OCRErrorType.PARTIAL_EXTRACTION
        assert receipt.error.can_retry is False
        assert "Could not detect: merchant name" in receipt.warnings
        assert receipt.confidence == ConfidenceLevel.MEDIUM

    def test_nothing_found_is_low_quality(self, parser):
        receipt = parser.parse("---- 12 ---- 34 ----")
        assert receipt.missing_fields == ["merchant", "date", "total"]
        assert receipt.error.type == OCRErrorType.LOW_QUALITY_IMAGE
        assert receipt.error.can_retry is True
        assert receipt.confidence == ConfidenceLevel.LOW

    def test_internal_fault_keeps_partial_result(self):
        parser = ReceiptParser(policy_analyzer=BrokenPolicyAnalyzer())
        receipt = parser.parse(BRICK_RECEIPT)
        assert receipt.error.type == OCRErrorType.PROCESSING_FAILED
        assert receipt.error.can_retry is True
        # Fields built before the failing step survive
        assert receipt.merchant == "BRICK PARADISE HARDWARE CC"
        assert receipt.total == Decimal("115.00")
        assert receipt.vat_amount == Decimal("15.00")


class TestHints:
    """Structured provider hints are validated, then preferred over text."""

    def test_valid_hints_win(self, parser):
        hints = ReceiptHints(
            merchant="Builders Warehouse",
            date="2025-03-14",
            total=Decimal("1299.00"),
            vat_amount=Decimal("169.43"),
            invoice_number="INV123456",
            policy=PolicyInfo(
                refund_type=RefundType.NONE,
                return_policy_terms="No refunds without original invoice",
            ),
        )
        receipt = parser.parse("Gibberish OCR\nTOTAL: 99.00", hints=hints)

        assert receipt.merchant == "Builders Warehouse"
        assert receipt.total == Decimal("1299.00")
        assert receipt.normalized_date == date(2025, 3, 14)
        assert receipt.vat_amount == Decimal("169.43")
        assert receipt.vat_source == VatSource.EXTRACTED
        assert receipt.subtotal == Decimal("1129.57")
        assert receipt.invoice_number == "INV123456"
        # A conditional restriction is never a ban, even when the provider said so
        assert receipt.policy.refund_type == RefundType.NOT_SPECIFIED
        assert receipt.policy.policy_source == PolicySource.EXTRACTED

    def test_invalid_hints_ignored(self, parser):
        hints = ReceiptHints(merchant="12345", date="not a date", total=Decimal("-5"))
        receipt = parser.parse(BRICK_RECEIPT, hints=hints)

        assert receipt.merchant == "BRICK PARADISE HARDWARE CC"
        assert receipt.total == Decimal("115.00")
        assert "Ignoring provider merchant '12345'" in receipt.warnings
        assert "Ignoring provider date 'not a date'" in receipt.warnings
        assert "Ignoring provider total '-5'" in receipt.warnings
