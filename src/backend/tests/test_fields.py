"""
Tests for field extraction: merchant tiers, total vs subtotal, invoice
numbers and raw date tokens.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from decimal import Decimal
import pytest

from slipkeeper.services.fields import FieldExtractor, is_valid_store_name


@pytest.fixture
def extractor():
    return FieldExtractor()


class TestMerchantTiers:
    """Merchant detection walks the tiers in order over the header zone."""

    def test_business_keyword_line_trimmed_at_suffix(self, extractor):
        text = "BRICK PARADISE HARDWARE CC\nReg No 2001/123456/23\nTAX INVOICE"
        assert extractor.extract_merchant(text) == "BRICK PARADISE HARDWARE CC"

    def test_legal_suffix(self, extractor):
        text = "Acme Trading CC\nTAX INVOICE\nCashier: Thandi"
        assert extractor.extract_merchant(text) == "Acme Trading CC"

    def test_ampersand_caps(self, extractor):
        text = "SMITH & SONS\nTel 0115551234"
        assert extractor.extract_merchant(text) == "SMITH & SONS"

    def test_all_caps_beats_earlier_plain_line(self, extractor):
        text = "Thank you for visiting\nWOOLIES FOOD\n2025-01-15"
        assert extractor.extract_merchant(text) == "WOOLIES FOOD"

    def test_first_valid_line(self, extractor):
        text = "Mama's Kitchen\n14 Long Street\nTotal: 85.00"
        assert extractor.extract_merchant(text) == "Mama's Kitchen"

    def test_only_header_zone_is_searched(self, extractor):
        text = "\n".join(["1.00"] * 15 + ["BRICK HARDWARE"])
        assert extractor.extract_merchant(text) is None

    @pytest.mark.parametrize("line,valid", [
        ("Brick Paradise", True),
        ("TAX INVOICE", False),
        ("12 Main Street", False),
        ("ABC12345678", False),
        ("Tel 0115551234", False),
        ("|||===|||", False),
        ("Shop", False),
        ("Cashier: Thandi", False),
    ])
    def test_store_name_filter(self, line, valid):
        assert is_valid_store_name(line) is valid


class TestTotals:
    """Total extraction never returns a subtotal."""

    def test_total_not_subtotal(self, extractor):
        text = "Subtotal: 190.43\nVAT: 28.57\nTotal: 219.00"
        assert extractor.extract_total(text) == Decimal("219.00")

    def test_spaced_sub_total_is_skipped(self, extractor):
        text = "Sub Total: 190.43\nTotal 219.00"
        assert extractor.extract_total(text) == Decimal("219.00")

    def test_amount_due_with_thousands(self, extractor):
        assert extractor.extract_total("AMOUNT DUE: R 1,299.00") == Decimal("1299.00")

    def test_card_tender_line(self, extractor):
        assert extractor.extract_total("Card : 219.65") == Decimal("219.65")

    def test_whole_amount(self, extractor):
        assert extractor.extract_total("Total KES 1200/=") == Decimal("1200")

    def test_zero_total_skipped(self, extractor):
        assert extractor.extract_total("TOTAL: 0.00\nTOTAL: 50.00") == Decimal("50.00")

    def test_label_and_amount_on_different_lines(self, extractor):
        assert extractor.extract_total("TOTAL\n123456") is None

    def test_subtotal(self, extractor):
        assert extractor.extract_subtotal("Subtotal (excl VAT): 190.43") == Decimal("190.43")


class TestInvoiceNumber:

    def test_prefixed_on_invoice_line(self, extractor):
        text = "TAX INVOICE\nInvoice No: IN57937966"
        assert extractor.extract_invoice_number(text) == "IN57937966"

    def test_label_word_is_not_a_prefix(self, extractor):
        assert extractor.extract_invoice_number("INV-12345") == "12345"

    def test_till_transaction_fallback(self, extractor):
        assert extractor.extract_invoice_number("TM: 7 TX: 35933") == "35933"

    def test_phone_number_rejected(self, extractor):
        assert extractor.extract_invoice_number("Invoice 0115551234") is None


class TestExtract:

    def test_date_token_is_raw(self, extractor):
        assert extractor.extract_date_token("Date: 2025/01/15 14:32") == "2025/01/15"

    def test_extract_all(self, extractor):
        text = (
            "BRICK PARADISE HARDWARE CC\n"
            "TAX INVOICE IN57937966\n"
            "Date: 14/03/2025\n"
            "Subtotal: 190.43\n"
            "TOTAL : 219.00\n"
        )
        fields = extractor.extract(text)
        assert fields.merchant == "BRICK PARADISE HARDWARE CC"
        assert fields.invoice_number == "IN57937966"
        assert fields.date_token == "14/03/2025"
        assert fields.subtotal == Decimal("190.43")
        assert fields.total == Decimal("219.00")
