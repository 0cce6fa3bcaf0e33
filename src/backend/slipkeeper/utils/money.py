"""
Shared money parsing utilities for receipt amounts.

Handles the formats seen on receipts and order e-mails:
- Currency prefixes: R 219.00, ZAR219.00, KES 1,200, $12.34
- Thousands separators: 1,234.56 or 1 234.56
- Decimal comma: 1.234,56 or 219,00
- Missing decimals: 1234 → 1234
"""

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Union

# Receipt amounts at or above this are treated as misreads (phone/VAT numbers)
MONEY_LIMIT = Decimal('1000000')

CENTS = Decimal('0.01')

# Regex fragments shared by the extractors
CURRENCY_PREFIX = r'(?:ZAR|KES|KSH|USD|EUR|GBP|R|[$£€¥₹])?'
AMOUNT = r'(\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)'

_CURRENCY_RE = re.compile(r'^(?:ZAR|KES|KSH|USD|EUR|GBP|CAD|R|[$£€¥₹])\s*|\s*(?:ZAR|KES|USD|EUR|GBP|CAD)$',
                          re.IGNORECASE)


class MoneyFormat(Enum):
    """Money format locale hints."""
    US = "US"  # 1,234.56
    EUROPEAN = "EUROPEAN"  # 1.234,56 or 1 234,56
    AUTO = "AUTO"


def parse_money(
    amount: Union[str, int, float, Decimal, None],
    format_hint: Optional[MoneyFormat] = None,
    allow_zero: bool = False,
) -> Optional[Decimal]:
    """
    Parse a money value into a Decimal, or None when it is not a usable amount.

    Negative values, values at or above MONEY_LIMIT and (unless allow_zero)
    zero are rejected.

    Examples:
        >>> parse_money("R 1,234.56")
        Decimal('1234.56')
        >>> parse_money("219,00")
        Decimal('219.00')
        >>> parse_money("-5.00") is None
        True
    """
    if amount is None or isinstance(amount, bool):
        return None

    if isinstance(amount, (int, float, Decimal)):
        cleaned = str(amount)
    elif isinstance(amount, str):
        cleaned = _CURRENCY_RE.sub('', amount.strip()).strip()
    else:
        return None

    if not cleaned or cleaned.startswith('-') or cleaned.startswith('('):
        return None

    detected = format_hint or MoneyFormat.AUTO
    if detected == MoneyFormat.AUTO:
        detected = _detect_money_format(cleaned)

    if detected == MoneyFormat.EUROPEAN:
        cleaned = cleaned.replace('.', '').replace(' ', '').replace(',', '.')
    else:
        cleaned = cleaned.replace(',', '').replace(' ', '')

    try:
        value = Decimal(cleaned)
    except (InvalidOperation, ValueError):
        return None

    if not value.is_finite() or value < 0 or value >= MONEY_LIMIT:
        return None
    if value == 0 and not allow_zero:
        return None
    return value


def _detect_money_format(amount_str: str) -> MoneyFormat:
    """
    Detect a decimal comma.

    - Ends with ,XX (comma + 2 digits): European
    - Dot used before the last comma: European
    - Otherwise US
    """
    if re.search(r',\d{2}$', amount_str):
        return MoneyFormat.EUROPEAN
    if '.' in amount_str and ',' in amount_str and amount_str.index('.') < amount_str.rindex(','):
        return MoneyFormat.EUROPEAN
    return MoneyFormat.US


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half up."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def has_cents(value: Decimal) -> bool:
    """True if the amount was written with a decimal fraction (115.00 counts)."""
    return value.as_tuple().exponent < 0


def format_money(amount: Optional[Decimal], currency: str = 'ZAR') -> str:
    """
    Format a Decimal amount for display.

    Examples:
        >>> format_money(Decimal('1234.5'))
        'R1,234.50'
        >>> format_money(Decimal('12'), 'USD')
        '$12.00'
    """
    if amount is None:
        return 'N/A'

    symbol_map = {
        'ZAR': 'R',
        'KES': 'KSh',
        'USD': '$',
        'EUR': '€',
        'GBP': '£',
    }
    symbol = symbol_map.get(currency.upper(), currency)
    return f"{symbol}{round_money(amount):,.2f}"
