"""
Return and warranty deadline computation.

Each deadline falls back extracted → merchant default → none:
- Returns barred (refund type `none` or 0 days): no return deadline, ever.
- Days on the receipt: purchase date + N days.
- A merchant rule with positive days: purchase date + rule days.
- Otherwise no deadline. No house default is invented.

Warranty follows the same chain in calendar months, independently.
"""

import datetime as dt
import logging
from typing import Optional

from slipkeeper.models.receipt import Deadlines, MerchantRule, PolicyInfo, PolicySource
from slipkeeper.services.merchant_rules import MerchantRuleLookup
from slipkeeper.utils.dates import add_months

logger = logging.getLogger(__name__)


class _RuleCache:
    """Fetches the merchant rule at most once, and only when asked."""

    def __init__(self, lookup: Optional[MerchantRuleLookup], user_id: Optional[str], merchant_name: Optional[str]):
        self.lookup = lookup
        self.user_id = user_id
        self.merchant_name = merchant_name
        self._fetched = False
        self._rule: Optional[MerchantRule] = None

    async def get(self) -> Optional[MerchantRule]:
        if self._fetched:
            return self._rule
        self._fetched = True
        if self.lookup is None or not self.user_id or not self.merchant_name:
            return None
        self._rule = await self.lookup.lookup(self.user_id, self.merchant_name)
        return self._rule


class DeadlineCalculator:
    """Computes return-by and warranty-end dates for a purchase."""

    def __init__(self, lookup: Optional[MerchantRuleLookup] = None):
        self.lookup = lookup

    async def compute(
        self,
        purchase_date: dt.date,
        policy: PolicyInfo,
        user_id: Optional[str] = None,
        merchant_name: Optional[str] = None,
    ) -> Deadlines:
        """
        Args:
            purchase_date: Normalized purchase date
            policy: Policy read off the receipt
            user_id: Owner of any merchant rules
            merchant_name: Merchant to look a rule up for

        Returns:
            Deadlines with the provenance of each date
        """
        rules = _RuleCache(self.lookup, user_id, merchant_name)

        return_by, return_source = await self._return_by(purchase_date, policy, rules)
        warranty_ends, warranty_source = await self._warranty_ends(purchase_date, policy, rules)

        logger.debug(
            "Computed deadlines",
            extra={'merchant': merchant_name, 'return_by': return_by, 'warranty_ends': warranty_ends},
        )
        return Deadlines(
            return_by=return_by,
            warranty_ends=warranty_ends,
            return_source=return_source,
            warranty_source=warranty_source,
        )

    async def _return_by(self, purchase_date, policy: PolicyInfo, rules: _RuleCache):
        if policy.returns_barred:
            return None, None

        days = policy.return_policy_days
        if days is not None and days > 0:
            return purchase_date + dt.timedelta(days=days), policy.policy_source

        rule = await rules.get()
        if rule and rule.return_policy_days and rule.return_policy_days > 0:
            logger.info("Using merchant rule for return window", extra={'merchant': rules.merchant_name})
            return purchase_date + dt.timedelta(days=rule.return_policy_days), PolicySource.MERCHANT_DEFAULT

        return None, None

    async def _warranty_ends(self, purchase_date, policy: PolicyInfo, rules: _RuleCache):
        months = policy.warranty_months
        if months == 0:
            return None, None
        if months is not None and months > 0:
            return add_months(purchase_date, months), policy.policy_source

        rule = await rules.get()
        if rule and rule.warranty_months and rule.warranty_months > 0:
            logger.info("Using merchant rule for warranty", extra={'merchant': rules.merchant_name})
            return add_months(purchase_date, rule.warranty_months), PolicySource.MERCHANT_DEFAULT

        return None, None


def is_return_window_open(deadlines: Deadlines, today: Optional[dt.date] = None) -> bool:
    """True while a return deadline exists and has not passed."""
    if deadlines.return_by is None:
        return False
    return (today or dt.date.today()) <= deadlines.return_by


def days_remaining(deadline: Optional[dt.date], today: Optional[dt.date] = None) -> Optional[int]:
    """Days until `deadline`; negative once passed, None when there is no deadline."""
    if deadline is None:
        return None
    return (deadline - (today or dt.date.today())).days
