"""
Tests for return/exchange/warranty policy classification.

The key distinction: a conditional restriction ("no refunds without original
invoice") still allows returns; only an unconditional ban is `none`.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from slipkeeper.models.receipt import PolicyInfo, PolicySource, RefundType
from slipkeeper.services.policy import PolicyAnalyzer, normalize_refund_type


@pytest.fixture
def analyzer():
    return PolicyAnalyzer(max_days=365, lifetime_months=120)


class TestRefundClassification:

    def test_conditional_is_not_a_ban(self, analyzer):
        policy = analyzer.analyze("NO REFUNDS WITHOUT ORIGINAL INVOICE")
        assert policy.refund_type != RefundType.NONE
        assert policy.refund_type == RefundType.NOT_SPECIFIED
        assert policy.return_policy_days is None
        assert "Original invoice required" in policy.return_policy_terms
        assert policy.policy_source == PolicySource.EXTRACTED

    def test_unconditional_ban(self, analyzer):
        policy = analyzer.analyze("ALL SALES FINAL")
        assert policy.refund_type == RefundType.NONE
        assert policy.return_policy_days == 0
        assert policy.returns_barred

    @pytest.mark.parametrize("text", ["NO REFUNDS", "NO RETURNS", "NO REFUNDS. NO RETURNS."])
    def test_bare_no_refunds_is_a_ban(self, analyzer, text):
        policy = analyzer.analyze(text)
        assert policy.refund_type == RefundType.NONE
        assert policy.return_policy_days == 0
        assert policy.returns_barred

    def test_bare_ban_loses_to_exchange_only(self, analyzer):
        policy = analyzer.analyze("NO REFUNDS. EXCHANGE ONLY")
        assert policy.refund_type == RefundType.EXCHANGE_ONLY
        assert not policy.returns_barred

    def test_bare_ban_with_exchange_window(self, analyzer):
        policy = analyzer.analyze("NO REFUNDS\n7 DAY EXCHANGE")
        assert policy.refund_type == RefundType.EXCHANGE_ONLY
        assert policy.exchange_policy_days == 7

    def test_no_returns_after_days_is_not_a_ban(self, analyzer):
        policy = analyzer.analyze("NO RETURNS AFTER 14 DAYS")
        assert policy.refund_type == RefundType.FULL
        assert policy.return_policy_days == 14

    def test_conditional_takes_precedence(self, analyzer):
        policy = analyzer.analyze("NO REFUNDS WITHOUT ORIGINAL INVOICE\nFINAL SALE ITEMS MARKED RED")
        assert policy.refund_type != RefundType.NONE

    def test_plain_day_return_is_full(self, analyzer):
        policy = analyzer.analyze("30 DAY RETURN POLICY")
        assert policy.refund_type == RefundType.FULL
        assert policy.return_policy_days == 30
        assert policy.return_policy_terms == "30 DAY RETURN POLICY"

    def test_conditional_with_days_keeps_days(self, analyzer):
        policy = analyzer.analyze("Returns accepted within 14 days. No refund without receipt.")
        assert policy.refund_type == RefundType.FULL
        assert policy.return_policy_days == 14

    def test_item_carve_out_does_not_ban(self, analyzer):
        policy = analyzer.analyze("SAND, CEMENT NOT RETURNABLE\n14 DAY RETURN POLICY")
        assert policy.refund_type == RefundType.FULL
        assert policy.return_policy_days == 14
        assert "Non-returnable: SAND, CEMENT" in policy.return_policy_terms

    def test_handling_fee_is_partial(self, analyzer):
        policy = analyzer.analyze("EXCHANGES WITHIN 7 DAYS\nHANDLING CHARGE OF 10% ON ALL RETURNS")
        assert policy.refund_type == RefundType.PARTIAL
        assert policy.exchange_policy_days == 7
        assert "10% handling charge on returns/exchanges" in policy.return_policy_terms

    def test_exchange_only(self, analyzer):
        policy = analyzer.analyze("EXCHANGE ONLY WITHIN 14 DAYS")
        assert policy.refund_type == RefundType.EXCHANGE_ONLY
        assert policy.exchange_policy_days == 14

    def test_store_credit(self, analyzer):
        assert analyzer.analyze("STORE CREDIT ONLY").refund_type == RefundType.STORE_CREDIT

    def test_no_policy_text(self, analyzer):
        policy = analyzer.analyze("Milk 2L 29.99")
        assert policy.refund_type is None
        assert policy.return_policy_days is None
        assert policy.policy_source == PolicySource.MERCHANT_DEFAULT

    def test_implausible_day_count_ignored(self, analyzer):
        assert analyzer.analyze("999 DAY RETURN").return_policy_days is None


class TestWarranty:

    @pytest.mark.parametrize("text,months", [
        ("2 YEAR WARRANTY", 24),
        ("Warranty: 1 year", 12),
        ("6 MONTH WARRANTY", 6),
        ("Warranty: 6 months", 6),
        ("LIFETIME WARRANTY", 120),
    ])
    def test_warranty_months(self, analyzer, text, months):
        assert analyzer.analyze(text).warranty_months == months

    def test_undated_warranty_sets_terms_only(self, analyzer):
        policy = analyzer.analyze("MANUFACTURER WARRANTY APPLIES")
        assert policy.warranty_months is None
        assert policy.warranty_terms == "MANUFACTURER WARRANTY"


class TestNormalizeRefundType:

    @pytest.mark.parametrize("value,expected", [
        (None, RefundType.NOT_SPECIFIED),
        ("", RefundType.NOT_SPECIFIED),
        ("full", RefundType.FULL),
        ("Cash refund", RefundType.FULL),
        ("store credit", RefundType.STORE_CREDIT),
        ("Exchange only", RefundType.EXCHANGE_ONLY),
        ("partial", RefundType.PARTIAL),
        ("No refunds", RefundType.NONE),
        ("banana", None),
    ])
    def test_mapping(self, value, expected):
        assert normalize_refund_type(value) == expected


class TestAnalyzeTerms:
    """Provider-supplied policies get the same precedence rules."""

    def test_conditional_clears_provider_ban(self, analyzer):
        provided = PolicyInfo(
            refund_type=RefundType.NONE,
            return_policy_days=0,
            return_policy_terms="No refunds without original invoice",
        )
        policy = analyzer.analyze_terms(provided)
        assert policy.refund_type == RefundType.NOT_SPECIFIED
        assert policy.return_policy_days is None
        assert policy.policy_source == PolicySource.EXTRACTED
        # The input is not modified
        assert provided.refund_type == RefundType.NONE

    def test_fills_missing_type_and_days(self, analyzer):
        policy = analyzer.analyze_terms(PolicyInfo(return_policy_terms="Returns accepted within 30 days"))
        assert policy.refund_type == RefundType.FULL
        assert policy.return_policy_days == 30

    def test_unconditional_forces_zero_days(self, analyzer):
        policy = analyzer.analyze_terms(PolicyInfo(return_policy_terms="All sales final", return_policy_days=30))
        assert policy.refund_type == RefundType.NONE
        assert policy.return_policy_days == 0

    def test_provider_type_is_kept(self, analyzer):
        provided = PolicyInfo(refund_type=RefundType.STORE_CREDIT, return_policy_terms="Refunds within 14 days")
        policy = analyzer.analyze_terms(provided)
        assert policy.refund_type == RefundType.STORE_CREDIT
        assert policy.return_policy_days == 14

    def test_no_terms(self, analyzer):
        policy = analyzer.analyze_terms(PolicyInfo(warranty_months=12))
        assert policy.warranty_months == 12
        assert policy.policy_source == PolicySource.EXTRACTED
