"""
VAT and sales-tax extraction and reconciliation.

Reconciliation order:
(a) VAT printed on the receipt is used as is (extracted).
(b) Otherwise total - subtotal, accepted only when the implied rate is in the
    plausible band (calculated).
(c) Otherwise the default VAT-inclusive rate is backed out of the total
    (calculated), which also yields the subtotal.
(d) A known VAT with no subtotal gives subtotal = total - VAT.
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from slipkeeper.config import settings
from slipkeeper.models.receipt import VatSource
from slipkeeper.utils.money import AMOUNT, CURRENCY_PREFIX as CUR, parse_money, round_money
from slipkeeper.utils.patterns import PatternSpec, line_of

logger = logging.getLogger(__name__)

# A rate group must carry a percent sign so "VAT 15.00" is read as an amount
RATE = r'(?:[ \t]*\(?[ \t]*\d{1,2}(?:\.\d+)?[ \t]*%[ \t]*\)?)?'
# An amount must not continue into more digits or a percent sign
NOT_RATE = r'(?!\d|\.\d|[ \t]*%)'

VAT_PATTERNS = [
    PatternSpec(
        name='vat_label',
        pattern=rf'(?:\bvat\b|\bv\.a\.t\.?){RATE}[ \t:]*{CUR}[ \t]*{AMOUNT}{NOT_RATE}',
        example='VAT (15%): 28.57',
    ),
    PatternSpec(
        name='value_added_tax',
        pattern=rf'\bvalue[ \t]+added[ \t]+tax{RATE}[ \t:]*{CUR}[ \t]*{AMOUNT}{NOT_RATE}',
        example='Value Added Tax 28.57',
    ),
    PatternSpec(
        name='vat_amount_label',
        pattern=rf'\bvat[ \t]+(?:amount|total){RATE}[ \t:]*{CUR}[ \t]*{AMOUNT}{NOT_RATE}',
        example='VAT Amount: 28.57',
    ),
    PatternSpec(
        name='rate_first_vat',
        pattern=rf'\b\d{{1,2}}[ \t]*%[ \t]*vat[ \t:]*{CUR}[ \t]*{AMOUNT}{NOT_RATE}',
        example='15% VAT 28.57',
    ),
    PatternSpec(
        name='excl_vat_line',
        pattern=rf'^(?!.*\bsub[- \t]?total).*\b(?:excl\.?|excluding)[ \t]*vat[ \t:]*{CUR}[ \t]*{AMOUNT}',
        example='Excl Vat: 28.65',
        notes='Some tills print the VAT figure on an "Excl Vat" line',
        flags=re.IGNORECASE | re.MULTILINE,
    ),
]

TAX_PATTERNS = [
    PatternSpec(
        name='sales_tax',
        pattern=rf'\b(?:sales[ \t]+tax|tax){RATE}[ \t:]*{CUR}[ \t]*{AMOUNT}{NOT_RATE}',
        example='Sales Tax (8%): 4.12',
    ),
    PatternSpec(
        name='gst_hst_pst',
        pattern=rf'\b(?:gst|hst|pst){RATE}[ \t:]*{CUR}[ \t]*{AMOUNT}{NOT_RATE}',
        example='HST 13%: 6.50',
    ),
]


def _first_amount(specs: List[PatternSpec], text: str, skip_words: tuple) -> Optional[Decimal]:
    for spec in specs:
        for match in spec.finditer(text):
            line = line_of(text, match).lower()
            if any(word in line for word in skip_words):
                continue
            amount = parse_money(match.group(1))
            if amount is not None:
                logger.debug("Tax amount %s from pattern %s", amount, spec.name)
                return amount
    return None


def extract_vat(text: str) -> Optional[Decimal]:
    """VAT amount printed on the receipt, if any."""
    try:
        return _first_amount(VAT_PATTERNS, text, ('subtotal', 'sub-total', 'sub total'))
    except (re.error, AttributeError, IndexError):
        logger.warning("Error extracting VAT", exc_info=True)
        return None


def extract_tax(text: str) -> Optional[Decimal]:
    """Sales tax (GST/HST/PST) for non-VAT receipts; lines mentioning VAT are skipped."""
    try:
        return _first_amount(TAX_PATTERNS, text, ('vat', 'v.a.t', 'tax invoice'))
    except (re.error, AttributeError, IndexError):
        logger.warning("Error extracting tax", exc_info=True)
        return None


@dataclass
class TaxBreakdown:
    vat_amount: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None
    vat_source: VatSource = VatSource.NONE
    warnings: List[str] = field(default_factory=list)


class TaxReconciler:
    """Derives VAT and subtotal from whatever the receipt printed."""

    def __init__(
        self,
        default_rate: Optional[float] = None,
        min_rate: Optional[float] = None,
        max_rate: Optional[float] = None,
    ):
        self.default_rate = Decimal(str(default_rate if default_rate is not None else settings.DEFAULT_VAT_RATE))
        self.min_rate = Decimal(str(min_rate if min_rate is not None else settings.VAT_RATE_MIN))
        self.max_rate = Decimal(str(max_rate if max_rate is not None else settings.VAT_RATE_MAX))

    def reconcile(
        self,
        total: Optional[Decimal],
        subtotal: Optional[Decimal],
        extracted_vat: Optional[Decimal],
    ) -> TaxBreakdown:
        """
        Work out the VAT amount, subtotal and VAT provenance.

        Args:
            total: Extracted grand total
            subtotal: Extracted subtotal
            extracted_vat: VAT amount read off the receipt

        Returns:
            TaxBreakdown with any warnings raised along the way
        """
        result = TaxBreakdown(subtotal=subtotal)

        if extracted_vat is not None and total is not None and extracted_vat >= total:
            message = f"Ignoring VAT {extracted_vat} that is not smaller than total {total}"
            logger.warning(message)
            result.warnings.append(message)
            extracted_vat = None

        try:
            if extracted_vat is not None:
                result.vat_amount = extracted_vat
                result.vat_source = VatSource.EXTRACTED
            elif total is not None:
                if subtotal is not None and subtotal < total:
                    self._from_subtotal(total, subtotal, result)
                else:
                    self._from_default_rate(total, result)

            if result.vat_amount is not None and total is not None and result.subtotal is None:
                result.subtotal = round_money(total - result.vat_amount)

        except (InvalidOperation, ZeroDivisionError):
            logger.warning("Error reconciling VAT", exc_info=True)
            result.warnings.append("VAT could not be reconciled")

        return result

    def _from_subtotal(self, total: Decimal, subtotal: Decimal, result: TaxBreakdown):
        vat = round_money(total - subtotal)
        rate = vat / subtotal
        if self.min_rate <= rate <= self.max_rate:
            result.vat_amount = vat
            result.vat_source = VatSource.CALCULATED
        else:
            message = (
                f"Subtotal {subtotal} implies a VAT rate of {rate * 100:.1f}%, "
                f"outside {self.min_rate * 100:.0f}-{self.max_rate * 100:.0f}%; VAT not calculated"
            )
            logger.info(message)
            result.warnings.append(message)

    def _from_default_rate(self, total: Decimal, result: TaxBreakdown):
        # VAT-inclusive total: vat = total / (1 + r) * r
        vat = round_money(total / (1 + self.default_rate) * self.default_rate)
        result.vat_amount = vat
        result.subtotal = round_money(total - vat)
        result.vat_source = VatSource.CALCULATED
