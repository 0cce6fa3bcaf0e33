"""
Tests for VAT/tax extraction and reconciliation.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from decimal import Decimal
import pytest

from slipkeeper.models.receipt import VatSource
from slipkeeper.services.tax import TaxReconciler, extract_tax, extract_vat


class TestExtractVat:

    @pytest.mark.parametrize("text,expected", [
        ("VAT: 15.00", Decimal("15.00")),
        ("VAT 15.00", Decimal("15.00")),
        ("VAT 15% 28.57", Decimal("28.57")),
        ("VAT (15%): 28.57", Decimal("28.57")),
        ("Value Added Tax R28.57", Decimal("28.57")),
        ("VAT Amount: 28.57", Decimal("28.57")),
    ])
    def test_vat_lines(self, text, expected):
        assert extract_vat(text) == expected

    def test_subtotal_line_is_skipped(self):
        text = "Subtotal excl VAT: 190.43\nVAT: 28.57\nTotal: 219.00"
        assert extract_vat(text) == Decimal("28.57")

    def test_rate_alone_is_not_an_amount(self):
        assert extract_vat("VAT 15%") is None

    def test_vat_registration_number_is_ignored(self):
        assert extract_vat("VAT Reg No: 4123456789") is None


class TestExtractTax:

    def test_sales_tax(self):
        assert extract_tax("Sales Tax (8%): 4.12") == Decimal("4.12")

    def test_hst(self):
        assert extract_tax("HST 13%: 6.50") == Decimal("6.50")

    def test_vat_lines_are_not_tax(self):
        assert extract_tax("TAX INVOICE\nVAT/Tax: 15.00") is None


class TestTaxReconciler:

    @pytest.fixture
    def reconciler(self):
        return TaxReconciler(default_rate=0.15, min_rate=0.05, max_rate=0.30)

    def test_extracted_vat_wins(self, reconciler):
        result = reconciler.reconcile(Decimal("115.00"), None, Decimal("15.00"))
        assert result.vat_amount == Decimal("15.00")
        assert result.vat_source == VatSource.EXTRACTED
        assert result.subtotal == Decimal("100.00")

    def test_vat_from_subtotal_in_band(self, reconciler):
        result = reconciler.reconcile(Decimal("219.00"), Decimal("190.43"), None)
        assert result.vat_amount == Decimal("28.57")
        assert result.vat_source == VatSource.CALCULATED
        assert result.subtotal == Decimal("190.43")
        rate = result.vat_amount / result.subtotal
        assert Decimal("0.05") <= rate <= Decimal("0.30")

    def test_subtotal_outside_band_is_not_used(self, reconciler):
        result = reconciler.reconcile(Decimal("200.00"), Decimal("100.00"), None)
        assert result.vat_amount is None
        assert result.vat_source == VatSource.NONE
        assert len(result.warnings) == 1

    @pytest.mark.parametrize("total,vat,subtotal", [
        (Decimal("115.00"), Decimal("15.00"), Decimal("100.00")),
        (Decimal("219.00"), Decimal("28.57"), Decimal("190.43")),
    ])
    def test_default_rate_back_calculation(self, reconciler, total, vat, subtotal):
        result = reconciler.reconcile(total, None, None)
        assert result.vat_amount == vat
        assert result.subtotal == subtotal
        assert result.vat_source == VatSource.CALCULATED

    def test_vat_not_smaller_than_total_is_discarded(self, reconciler):
        result = reconciler.reconcile(Decimal("15.00"), None, Decimal("115.00"))
        assert result.vat_source == VatSource.CALCULATED
        assert result.vat_amount == Decimal("1.96")
        assert any("not smaller than total" in w for w in result.warnings)

    def test_nothing_known(self, reconciler):
        result = reconciler.reconcile(None, None, None)
        assert result.vat_amount is None
        assert result.vat_source == VatSource.NONE

    def test_vat_without_total(self, reconciler):
        result = reconciler.reconcile(None, None, Decimal("15.00"))
        assert result.vat_amount == Decimal("15.00")
        assert result.subtotal is None
