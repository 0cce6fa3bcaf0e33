"""
Return, exchange and warranty policy classification.

Refund-type precedence (first rule that applies wins):
1. Conditional restriction ("no refund without original invoice"): returns
   are allowed, so the refund type is never `none`.
2. Unconditional ban ("all sales final"): `none` with 0 return days. Terminal.
3. Exchange only ("exchange only", "no cash refund", "credit note only").
4. Store credit.
5. Bare "no refunds" / "no returns": `none` with 0 days, or exchange only when
   an exchange window is printed. Terminal like rule 2.
6. Handling or restocking fee: `partial`, even when otherwise unqualified.
7. Plain "N day return": `full`.
8. Explicit "full refund" / "money back" wording: `full`.

Item-specific carve-outs ("sand, cement not returnable") are noted in the
terms and never downgrade the receipt to no returns.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from slipkeeper.config import settings
from slipkeeper.models.receipt import PolicyInfo, PolicySource, RefundType
from slipkeeper.utils.patterns import PatternSpec, any_match, line_of

logger = logging.getLogger(__name__)


CONDITIONAL_PATTERNS = [
    PatternSpec(name='without_proof', pattern=r'\b(?:without|unless\s+accompanied\s+by)\s+(?:the\s+|an?\s+)?(?:original\s+)?(?:receipt|invoice|slip|proof)',
                example='NO REFUNDS WITHOUT ORIGINAL INVOICE'),
    PatternSpec(name='must_have_proof', pattern=r'\bmust\s+(?:have|produce|present)\s+(?:the\s+|an?\s+)?(?:original\s+)?(?:receipt|invoice|slip)',
                example='MUST HAVE RECEIPT'),
    PatternSpec(name='proof_required', pattern=r'\brequire[sd]?\s+(?:the\s+|an?\s+)?(?:original\s+)?(?:receipt|invoice|slip)',
                example='REQUIRES ORIGINAL SLIP'),
    PatternSpec(name='with_proof_only', pattern=r'\bwith\s+(?:the\s+|an?\s+)?(?:original\s+)?(?:receipt|invoice|slip)\s+only',
                example='RETURNS WITH RECEIPT ONLY'),
    PatternSpec(name='original_required', pattern=r'\boriginal\s+(?:receipt|invoice|slip)\s+(?:is\s+)?required',
                example='ORIGINAL RECEIPT REQUIRED'),
]

UNCONDITIONAL_PATTERNS = [
    PatternSpec(name='all_sales_final', pattern=r'\ball\s+sales?\s+(?:are\s+)?final', example='ALL SALES FINAL'),
    PatternSpec(name='final_sale', pattern=r'\bfinal\s+sale', example='FINAL SALE'),
    PatternSpec(name='no_returns_under_any', pattern=r'\bno\s+returns?\s+under\s+any', example='NO RETURNS UNDER ANY CIRCUMSTANCES'),
    PatternSpec(name='absolutely_no_returns', pattern=r'\babsolutely\s+no\s+(?:returns?|refunds?)', example='ABSOLUTELY NO RETURNS'),
    PatternSpec(name='non_refundable_item', pattern=r'\bnon[\s-]?refundable\s+items?', example='NON-REFUNDABLE ITEM'),
    PatternSpec(name='goods_once_sold', pattern=r'\bgoods\s+once\s+sold', example='GOODS ONCE SOLD WILL NOT BE ACCEPTED BACK'),
]

# Receipt-wide "no refunds" with no qualifying clause after it
BARE_BAN_PATTERNS = [
    PatternSpec(name='no_refunds',
                pattern=r'\bno[ \t]+(?:returns?|refunds?)\b(?![ \t]+(?:after|without|unless|on|within|of)\b)',
                example='NO REFUNDS',
                notes='Loses to exchange-only and store-credit wording on the same receipt'),
]

EXCHANGE_ONLY_PATTERNS = [
    PatternSpec(name='exchange_only', pattern=r'\b(?:exchanges?|swaps?)\s+only', example='EXCHANGE ONLY'),
    PatternSpec(name='no_cash_refund', pattern=r'\bno\s+cash\s+refunds?', example='NO CASH REFUNDS'),
    PatternSpec(name='credit_note_only', pattern=r'\bcredit\s+notes?\s+only', example='CREDIT NOTE ONLY'),
]

STORE_CREDIT_PATTERNS = [
    PatternSpec(name='store_credit', pattern=r'\b(?:in-?\s?store|store)\s+credit', example='STORE CREDIT'),
    PatternSpec(name='credit_only', pattern=r'\bcredit\s+only', example='CREDIT ONLY'),
    PatternSpec(name='voucher_only', pattern=r'\bvouchers?\s+only', example='VOUCHER ONLY'),
]

HANDLING_FEE_PATTERNS = [
    PatternSpec(name='handling_fee', pattern=r'\bhandling\s+(?:charge|fee)', example='HANDLING CHARGE OF 15%'),
    PatternSpec(name='restocking_fee', pattern=r'\brestocking\s+(?:charge|fee)', example='15% RESTOCKING FEE'),
    PatternSpec(name='partial_refund', pattern=r'\bpartial\s+refund', example='PARTIAL REFUND'),
]

FULL_REFUND_PATTERNS = [
    PatternSpec(name='full_refund', pattern=r'\b(?:full\s+refund|money\s+back\s+guarantee|100%\s+refund)', example='FULL REFUND'),
]

RETURN_DAY_PATTERNS = [
    PatternSpec(name='n_day_return', pattern=r'\b(\d{1,3})[ \t-]*days?[ \t-]*(?:returns?|refunds?)(?:[ \t]+(?:policy|period))?',
                example='30 DAY RETURN POLICY'),
    PatternSpec(name='returns_within', pattern=r'\b(?:returns?|refunds?)(?:\s+are)?(?:\s+(?:accepted|allowed|possible))?\s+within\s+(\d{1,3})\s*days?',
                example='RETURNS ACCEPTED WITHIN 30 DAYS'),
    PatternSpec(name='return_period', pattern=r'\b(?:return|refund)\s+(?:period|policy)[ \t:]*(\d{1,3})\s*days?',
                example='Return period: 14 days'),
    PatternSpec(name='no_returns_after', pattern=r'\bno\s+returns?\s+after\s+(\d{1,3})\s*days?',
                example='NO RETURNS AFTER 14 DAYS'),
    PatternSpec(name='money_back', pattern=r'\b(\d{1,3})[ \t-]*days?[ \t-]*money[ \t-]*back',
                example='7 DAY MONEY BACK'),
]

EXCHANGE_PATTERNS = [
    PatternSpec(name='n_day_exchange', pattern=r'\b(\d{1,3})[ \t-]*days?[ \t-]*(?:exchanges?|swaps?)(?:[ \t]+(?:policy|period))?',
                example='7 DAY EXCHANGE'),
    PatternSpec(name='exchange_within', pattern=r'\bexchanges?(?:\s+(?:accepted|allowed|only))?\s+within\s+(\d{1,3})\s*days?',
                example='EXCHANGES WITHIN 14 DAYS'),
    PatternSpec(name='exchange_only_terms', pattern=r'\bexchanges?\s+only', example='EXCHANGE ONLY'),
    PatternSpec(name='no_exchanges', pattern=r'\bno\s+exchanges?\b(?:[ \t,.]*(?:without|unless)[^\n]*)?', example='NO EXCHANGES'),
]

WARRANTY_PATTERNS = [
    PatternSpec(name='years_warranty', pattern=r'\b(\d{1,2})[ \t-]*(?:years?|yrs?)[ \t-]*(?:limited[ \t]+)?(?:warranty|guarantee)',
                example='2 YEAR WARRANTY'),
    PatternSpec(name='warranty_years', pattern=r'\b(?:warranty|guarantee)[ \t:]*(?:of[ \t]+)?(\d{1,2})[ \t-]*(?:years?|yrs?)\b',
                example='Warranty: 1 year'),
    PatternSpec(name='months_warranty', pattern=r'\b(\d{1,3})[ \t-]*(?:months?|mths?|mos?)[ \t-]*(?:limited[ \t]+)?(?:warranty|guarantee)',
                example='6 MONTH WARRANTY'),
    PatternSpec(name='warranty_months', pattern=r'\b(?:warranty|guarantee)[ \t:]*(?:of[ \t]+)?(\d{1,3})[ \t-]*(?:months?|mths?|mos?)\b',
                example='Warranty 6 months'),
    PatternSpec(name='lifetime_warranty', pattern=r'\blifetime[ \t]+(?:warranty|guarantee)', example='LIFETIME WARRANTY'),
    PatternSpec(name='warranty_until', pattern=r'\bwarranty[ \t]+(?:expires?|until|valid[ \t]+(?:for|until))[^\n]*',
                example='Warranty valid until 2026-01-01'),
    PatternSpec(name='manufacturer_warranty', pattern=r'\b(?:manufacturer|manufacturers|factory|limited)[ \t]+warranty',
                example="MANUFACTURER WARRANTY"),
]

HANDLING_PERCENT_RE = re.compile(r'\b(?:minimum\s+)?(?:handling|restocking)\s+(?:charge|fee)\s+(?:of\s+)?(\d{1,2})\s*%'
                                 r'|\b(\d{1,2})\s*%\s+(?:handling|restocking)\s+(?:charge|fee)', re.IGNORECASE)
ORIGINAL_INVOICE_RE = re.compile(r'\bwithout\s+(?:the\s+)?original\s+(?:invoice|receipt|slip)', re.IGNORECASE)
CARVE_OUT_RE = re.compile(r'^[ \t]*([A-Z][A-Z,&/ \t]*?)[ \t]+(?:products?[ \t]+|items?[ \t]+)?(?:are[ \t]+)?not[ \t]+returnable',
                          re.IGNORECASE | re.MULTILINE)
GENERIC_DAYS_RE = re.compile(r'\b(\d{1,3})\s*days?\b', re.IGNORECASE)


@dataclass(frozen=True)
class PolicySignals:
    """Which policy clauses were seen in a piece of text."""
    conditional: bool = False
    unconditional: bool = False
    bare_ban: bool = False
    exchange_only: bool = False
    store_credit: bool = False
    handling_fee: bool = False
    full_refund: bool = False
    return_days: Optional[int] = None
    exchange_days: Optional[int] = None


Resolution = Tuple[Optional[RefundType], Optional[int]]


def _resolve_conditional(s: PolicySignals) -> Resolution:
    # Returns are allowed with proof of purchase; days may come from a merchant rule later
    if s.exchange_only:
        return RefundType.EXCHANGE_ONLY, s.return_days or s.exchange_days
    if s.store_credit:
        return RefundType.STORE_CREDIT, s.return_days
    if s.handling_fee:
        return RefundType.PARTIAL, s.return_days
    if s.return_days:
        return RefundType.FULL, s.return_days
    return RefundType.NOT_SPECIFIED, None


def _resolve_bare_ban(s: PolicySignals) -> Resolution:
    # "No refunds" next to an exchange window still allows exchanges
    if s.exchange_days:
        return RefundType.EXCHANGE_ONLY, s.exchange_days
    return RefundType.NONE, 0


# (rule name, applies?, resolve) in precedence order
REFUND_RULES: List[Tuple[str, Callable[[PolicySignals], bool], Callable[[PolicySignals], Resolution]]] = [
    ('conditional', lambda s: s.conditional, _resolve_conditional),
    ('unconditional', lambda s: s.unconditional, lambda s: (RefundType.NONE, 0)),
    ('exchange_only', lambda s: s.exchange_only, lambda s: (RefundType.EXCHANGE_ONLY, s.return_days or s.exchange_days)),
    ('store_credit', lambda s: s.store_credit, lambda s: (RefundType.STORE_CREDIT, s.return_days)),
    ('bare_ban', lambda s: s.bare_ban, _resolve_bare_ban),
    ('handling_fee', lambda s: s.handling_fee, lambda s: (RefundType.PARTIAL, s.return_days)),
    ('return_days', lambda s: s.return_days is not None, lambda s: (RefundType.FULL, s.return_days)),
    ('full_refund', lambda s: s.full_refund, lambda s: (RefundType.FULL, None)),
]


def resolve_refund(signals: PolicySignals) -> Tuple[Optional[str], Optional[RefundType], Optional[int]]:
    """Apply REFUND_RULES; returns (rule name, refund type, return days)."""
    for name, applies, resolve in REFUND_RULES:
        if applies(signals):
            refund_type, days = resolve(signals)
            return name, refund_type, days
    return None, None, None


def normalize_refund_type(value: Optional[str]) -> Optional[RefundType]:
    """
    Map free-text refund wording from a provider onto RefundType.

    Empty input is `not_specified`; wording that matches nothing is None.
    """
    if value is None or not str(value).strip():
        return RefundType.NOT_SPECIFIED
    lower = str(value).strip().lower()
    try:
        return RefundType(lower)
    except ValueError:
        pass
    if 'full' in lower or 'cash' in lower:
        return RefundType.FULL
    if 'credit' in lower or 'store' in lower:
        return RefundType.STORE_CREDIT
    if 'exchange' in lower:
        return RefundType.EXCHANGE_ONLY
    if 'partial' in lower:
        return RefundType.PARTIAL
    if 'none' in lower or 'no refund' in lower:
        return RefundType.NONE
    return None


class PolicyAnalyzer:
    """Classifies return, exchange and warranty clauses into a PolicyInfo."""

    def __init__(self, max_days: Optional[int] = None, lifetime_months: Optional[int] = None):
        self.max_days = max_days or settings.MAX_POLICY_DAYS
        self.lifetime_months = lifetime_months or settings.LIFETIME_WARRANTY_MONTHS

    def analyze(self, text: str) -> PolicyInfo:
        """
        Read the whole receipt text and build its policy record.

        Args:
            text: Receipt text

        Returns:
            PolicyInfo; all-null with merchant_default source when nothing is found
        """
        policy = PolicyInfo()
        if not text:
            return policy

        try:
            return_match = self._first_days_match(RETURN_DAY_PATTERNS, text)
            exchange_days, exchange_terms = self._exchange(text)
            signals = self.signals(text, return_days=return_match[0] if return_match else None,
                                   exchange_days=exchange_days)

            rule, refund_type, days = resolve_refund(signals)
            if rule:
                logger.debug("Refund policy resolved by rule %s", rule, extra={'refund_type': refund_type})
            policy.refund_type = refund_type
            policy.return_policy_days = days

            terms = []
            if return_match:
                terms.append(return_match[1])
            elif rule in ('conditional', 'unconditional', 'bare_ban', 'exchange_only', 'store_credit', 'handling_fee', 'full_refund'):
                terms.extend(self._clause_lines(text))
            terms.extend(self._notes(text, signals))
            policy.return_policy_terms = '. '.join(terms) if terms else None

            policy.exchange_policy_days = exchange_days
            policy.exchange_policy_terms = exchange_terms
            policy.warranty_months, policy.warranty_terms = self._warranty(text)

        except (re.error, AttributeError, ValueError):
            logger.warning("Error analyzing policy", exc_info=True)

        if _has_values(policy):
            policy.policy_source = PolicySource.EXTRACTED
        return policy

    def analyze_terms(self, policy: PolicyInfo) -> PolicyInfo:
        """
        Re-classify provider-supplied policy terms.

        Fills refund type and return days from the terms only where the provider
        left them empty, applying the same precedence as `analyze`. Returns a
        new PolicyInfo.
        """
        updated = policy.model_copy()
        terms = policy.return_policy_terms or ''
        if not terms.strip():
            if _has_values(updated):
                updated.policy_source = PolicySource.EXTRACTED
            return updated

        try:
            return_match = self._first_days_match(RETURN_DAY_PATTERNS, terms)
            days = return_match[0] if return_match else None
            if days is None:
                generic = GENERIC_DAYS_RE.search(terms)
                if generic and 0 < int(generic.group(1)) <= self.max_days:
                    days = int(generic.group(1))
            signals = self.signals(terms, return_days=days, exchange_days=policy.exchange_policy_days)
            rule, refund_type, resolved_days = resolve_refund(signals)

            # "No refunds without invoice" is not a ban, whatever the provider read into it
            if rule == 'conditional' and updated.refund_type == RefundType.NONE:
                updated.refund_type = None
                if updated.return_policy_days == 0:
                    updated.return_policy_days = None
            if updated.refund_type in (None, RefundType.NOT_SPECIFIED) and refund_type is not None:
                updated.refund_type = refund_type
            if updated.return_policy_days is None and resolved_days is not None:
                updated.return_policy_days = resolved_days
            # A receipt-wide ban is terminal whatever the provider said about days
            if rule in ('unconditional', 'bare_ban') and updated.refund_type == RefundType.NONE:
                updated.return_policy_days = 0

        except (re.error, AttributeError, ValueError):
            logger.warning("Error analyzing policy terms", exc_info=True)

        updated.policy_source = PolicySource.EXTRACTED
        return updated

    def signals(self, text: str, return_days: Optional[int] = None,
                exchange_days: Optional[int] = None) -> PolicySignals:
        return PolicySignals(
            conditional=any_match(CONDITIONAL_PATTERNS, text),
            unconditional=any_match(UNCONDITIONAL_PATTERNS, text),
            bare_ban=any_match(BARE_BAN_PATTERNS, text),
            exchange_only=any_match(EXCHANGE_ONLY_PATTERNS, text),
            store_credit=any_match(STORE_CREDIT_PATTERNS, text),
            handling_fee=any_match(HANDLING_FEE_PATTERNS, text),
            full_refund=any_match(FULL_REFUND_PATTERNS, text),
            return_days=return_days,
            exchange_days=exchange_days,
        )

    def _first_days_match(self, specs: List[PatternSpec], text: str) -> Optional[Tuple[int, str]]:
        for spec in specs:
            for match in spec.finditer(text):
                days = int(match.group(1))
                if 0 < days <= self.max_days:
                    return days, match.group(0).strip()
        return None

    def _exchange(self, text: str) -> Tuple[Optional[int], Optional[str]]:
        for spec in EXCHANGE_PATTERNS:
            match = spec.search(text)
            if not match:
                continue
            if match.groups() and match.group(1):
                days = int(match.group(1))
                if 0 < days <= self.max_days:
                    return days, match.group(0).strip()
                continue
            return None, match.group(0).strip()
        return None, None

    def _warranty(self, text: str) -> Tuple[Optional[int], Optional[str]]:
        for spec in WARRANTY_PATTERNS:
            match = spec.search(text)
            if not match:
                continue
            if spec.name == 'lifetime_warranty':
                return self.lifetime_months, 'Lifetime warranty'
            if match.groups() and match.group(1):
                value = int(match.group(1))
                if value <= 0:
                    continue
                months = value * 12 if spec.name.startswith('years') or spec.name.endswith('years') else value
                return months, match.group(0).strip()
            return None, match.group(0).strip()
        return None, None

    def _clause_lines(self, text: str) -> List[str]:
        """Lines carrying a refund-type clause, verbatim and de-duplicated."""
        specs = (CONDITIONAL_PATTERNS + UNCONDITIONAL_PATTERNS + BARE_BAN_PATTERNS + EXCHANGE_ONLY_PATTERNS
                 + STORE_CREDIT_PATTERNS + HANDLING_FEE_PATTERNS + FULL_REFUND_PATTERNS)
        lines: List[str] = []
        for spec in specs:
            for match in spec.finditer(text):
                line = line_of(text, match).strip()
                if line and line not in lines:
                    lines.append(line)
        return lines

    def _notes(self, text: str, signals: PolicySignals) -> List[str]:
        notes = []

        handling = HANDLING_PERCENT_RE.search(text)
        if handling:
            percent = handling.group(1) or handling.group(2)
            notes.append(f"{percent}% handling charge on returns/exchanges")

        if ORIGINAL_INVOICE_RE.search(text):
            notes.append("Original invoice required")

        if not signals.unconditional:
            carve_out = CARVE_OUT_RE.search(text)
            if carve_out:
                items = carve_out.group(1).strip(' \t,&/')
                if items:
                    notes.append(f"Non-returnable: {items}")
        return notes


def _has_values(policy: PolicyInfo) -> bool:
    return any(value is not None for value in (
        policy.return_policy_days,
        policy.return_policy_terms,
        policy.refund_type,
        policy.exchange_policy_days,
        policy.exchange_policy_terms,
        policy.warranty_months,
        policy.warranty_terms,
    ))
