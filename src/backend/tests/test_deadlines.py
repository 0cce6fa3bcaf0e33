"""
Tests for return and warranty deadlines and the merchant-rule fallback.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import asyncio
from datetime import date
from typing import Optional
import pytest

from slipkeeper.models.receipt import Deadlines, MerchantRule, PolicyInfo, PolicySource, RefundType
from slipkeeper.services.deadlines import DeadlineCalculator, days_remaining, is_return_window_open
from slipkeeper.services.merchant_rules import InMemoryMerchantRuleLookup, MerchantRuleLookup

USER_ID = "407b70ad-8e64-43a1-81b4-da0977066e6d"
PURCHASED = date(2025, 1, 1)


class CountingLookup(MerchantRuleLookup):
    """Wraps an in-memory lookup and counts calls."""

    def __init__(self, rule: Optional[MerchantRule] = None):
        self.calls = 0
        self.inner = InMemoryMerchantRuleLookup()
        if rule:
            self.inner.add(rule)

    async def lookup(self, user_id, merchant_name):
        self.calls += 1
        return await self.inner.lookup(user_id, merchant_name)


def brick_rule(return_days=14, warranty_months=12):
    return MerchantRule(
        user_id=USER_ID,
        merchant_name="Brick Paradise Hardware CC",
        return_policy_days=return_days,
        warranty_months=warranty_months,
    )


def compute(lookup, policy, merchant="BRICK PARADISE HARDWARE CC", purchased=PURCHASED):
    calculator = DeadlineCalculator(lookup)
    return asyncio.run(calculator.compute(purchased, policy, user_id=USER_ID, merchant_name=merchant))


class TestReturnDeadline:

    def test_days_on_receipt(self):
        policy = PolicyInfo(return_policy_days=30, refund_type=RefundType.FULL, policy_source=PolicySource.EXTRACTED)
        deadlines = compute(CountingLookup(brick_rule()), policy)
        assert deadlines.return_by == date(2025, 1, 31)
        assert deadlines.return_source == PolicySource.EXTRACTED

    def test_no_returns_is_terminal(self):
        """A merchant rule with positive days must never reopen a banned return."""
        policy = PolicyInfo(return_policy_days=0, refund_type=RefundType.NONE, policy_source=PolicySource.EXTRACTED)
        deadlines = compute(CountingLookup(brick_rule(return_days=30)), policy)
        assert deadlines.return_by is None
        assert deadlines.return_source is None

    def test_refund_none_without_days_is_terminal(self):
        policy = PolicyInfo(refund_type=RefundType.NONE)
        assert compute(CountingLookup(brick_rule(return_days=30)), policy).return_by is None

    def test_merchant_rule_fallback(self):
        policy = PolicyInfo(refund_type=RefundType.NOT_SPECIFIED, policy_source=PolicySource.EXTRACTED)
        deadlines = compute(CountingLookup(brick_rule(return_days=14)), policy)
        assert deadlines.return_by == date(2025, 1, 15)
        assert deadlines.return_source == PolicySource.MERCHANT_DEFAULT

    def test_rule_match_ignores_case_and_spacing(self):
        deadlines = compute(CountingLookup(brick_rule()), PolicyInfo(), merchant="  brick   PARADISE hardware cc ")
        assert deadlines.return_by == date(2025, 1, 15)

    def test_no_policy_and_no_rule_is_null(self):
        deadlines = compute(CountingLookup(), PolicyInfo())
        assert deadlines == Deadlines()

    def test_rule_with_zero_days_is_ignored(self):
        assert compute(CountingLookup(brick_rule(return_days=0)), PolicyInfo()).return_by is None

    def test_no_lookup_configured(self):
        assert compute(None, PolicyInfo()).return_by is None


class TestWarrantyDeadline:

    def test_months_on_receipt_clamped(self):
        policy = PolicyInfo(warranty_months=1, policy_source=PolicySource.EXTRACTED)
        deadlines = compute(CountingLookup(), policy, purchased=date(2025, 1, 31))
        assert deadlines.warranty_ends == date(2025, 2, 28)
        assert deadlines.warranty_source == PolicySource.EXTRACTED

    def test_warranty_rule_independent_of_return_ban(self):
        policy = PolicyInfo(return_policy_days=0, refund_type=RefundType.NONE, policy_source=PolicySource.EXTRACTED)
        deadlines = compute(CountingLookup(brick_rule(warranty_months=12)), policy)
        assert deadlines.return_by is None
        assert deadlines.warranty_ends == date(2026, 1, 1)
        assert deadlines.warranty_source == PolicySource.MERCHANT_DEFAULT

    def test_zero_months_is_no_warranty(self):
        assert compute(CountingLookup(brick_rule()), PolicyInfo(warranty_months=0)).warranty_ends is None


class TestLookupUsage:

    def test_rule_not_fetched_when_receipt_has_everything(self):
        lookup = CountingLookup(brick_rule())
        compute(lookup, PolicyInfo(return_policy_days=30, warranty_months=12))
        assert lookup.calls == 0

    def test_rule_fetched_once(self):
        lookup = CountingLookup(brick_rule())
        compute(lookup, PolicyInfo())
        assert lookup.calls == 1


class TestDeadlineHelpers:

    def test_window_open(self):
        deadlines = Deadlines(return_by=date(2025, 1, 31))
        assert is_return_window_open(deadlines, today=date(2025, 1, 31))
        assert not is_return_window_open(deadlines, today=date(2025, 2, 1))
        assert not is_return_window_open(Deadlines(), today=date(2025, 1, 1))

    @pytest.mark.parametrize("deadline,expected", [
        (date(2025, 1, 31), 30),
        (date(2024, 12, 30), -2),
        (None, None),
    ])
    def test_days_remaining(self, deadline, expected):
        assert days_remaining(deadline, today=date(2025, 1, 1)) == expected
