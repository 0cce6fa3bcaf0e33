"""
Merchant-rule lookups: per-user return/warranty defaults keyed by merchant name.
"""

import abc
import asyncio
import logging
from typing import Dict, Optional, Tuple

from slipkeeper.config import settings
from slipkeeper.models.receipt import MerchantRule

logger = logging.getLogger(__name__)


def normalize_merchant_name(name: str) -> str:
    """Case- and whitespace-insensitive key for a merchant name."""
    return ' '.join(name.split()).lower()


class MerchantRuleLookup(abc.ABC):
    """Read-only source of merchant rules."""

    @abc.abstractmethod
    async def lookup(self, user_id: str, merchant_name: str) -> Optional[MerchantRule]:
        """Return the rule for (user, merchant) or None."""


class InMemoryMerchantRuleLookup(MerchantRuleLookup):
    """Dictionary-backed rules, used by tests and the CLI."""

    def __init__(self):
        self._rules: Dict[Tuple[str, str], MerchantRule] = {}

    def add(self, rule: MerchantRule) -> MerchantRule:
        key = (rule.user_id, normalize_merchant_name(rule.merchant_name))
        if key in self._rules:
            raise ValueError(f'A rule for merchant "{rule.merchant_name}" already exists')
        stored = rule.model_copy(update={'normalized_merchant_name': key[1]})
        self._rules[key] = stored
        return stored

    async def lookup(self, user_id: str, merchant_name: str) -> Optional[MerchantRule]:
        return self._rules.get((user_id, normalize_merchant_name(merchant_name)))


class SupabaseMerchantRuleLookup(MerchantRuleLookup):
    """Rules stored in the Supabase `merchant_rules` table."""

    def __init__(self, client=None, table: Optional[str] = None):
        if client is None:
            from slipkeeper.utils.supabase import get_supabase_client
            client = get_supabase_client()
        self.client = client
        self.table = table or settings.MERCHANT_RULES_TABLE

    async def lookup(self, user_id: str, merchant_name: str) -> Optional[MerchantRule]:
        # supabase-py is synchronous
        return await asyncio.to_thread(self._fetch, user_id, normalize_merchant_name(merchant_name))

    def _fetch(self, user_id: str, normalized_name: str) -> Optional[MerchantRule]:
        response = (
            self.client.table(self.table)
            .select('user_id, merchant_name, normalized_merchant_name, return_policy_days, warranty_months')
            .eq('user_id', user_id)
            .eq('normalized_merchant_name', normalized_name)
            .limit(1)
            .execute()
        )
        if not response.data:
            logger.debug("No merchant rule", extra={'user_id': user_id, 'merchant': normalized_name})
            return None
        return MerchantRule.model_validate(response.data[0])
