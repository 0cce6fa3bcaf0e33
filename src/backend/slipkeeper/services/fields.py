"""
Field extraction from raw receipt text: merchant, total, subtotal,
invoice number and the raw purchase date token.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from slipkeeper.config import settings
from slipkeeper.utils.money import AMOUNT, CURRENCY_PREFIX as CUR, parse_money
from slipkeeper.utils.patterns import PatternSpec

logger = logging.getLogger(__name__)

LEGAL_SUFFIXES = r'CC|PTY|LTD|INC|LLC|PLC|CO|CORP|LIMITED|INCORPORATED'

BUSINESS_KEYWORDS_RE = re.compile(
    r'\b(?:HARDWARE|STORE|SHOP|MARKET|SUPERMARKET|PHARMACY|BAKERY|RESTAURANT|CAFE|GARAGE|'
    r'MOTORS|AUTO|ELECTRONICS|FURNITURE|CLOTHING|PARADISE|BUILDERS|BUILDING|SUPPLIES|'
    r'WHOLESALE|RETAIL|CENTRE|CENTER|MALL|PLAZA)\b',
    re.IGNORECASE,
)
SUFFIX_TRIM_RE = re.compile(rf'^(.+?\s+(?:{LEGAL_SUFFIXES}))\b', re.IGNORECASE)
SUFFIX_LINE_RE = re.compile(rf"^([A-Z][A-Za-z0-9 &'.-]*?\s+(?:{LEGAL_SUFFIXES}))\b\.?", re.IGNORECASE)
AMPERSAND_LINE_RE = re.compile(r'^[A-Z\s&]+$')
ALL_CAPS_LINE_RE = re.compile(r"^[A-Z][A-Z\s&'.-]{7,}$")

# Store-name filters
PRODUCT_CODE_RE = re.compile(r'^[A-Z]{1,3}-?\d{5,}')
ADDRESS_RE = re.compile(
    r'\b(?:intersection|street|road|avenue|blvd|drive|way|fourways|jhb|'
    r'johannesburg|cape\s*town|durban|pretoria)\b',
    re.IGNORECASE,
)
LONG_NUMBER_RE = re.compile(r'\d{5,}')
NON_MERCHANT_RE = re.compile(
    r'^(?:receipt|invoice|tax|date|time|total|subtotal|qty|item|price|customer|vat|'
    r'no\s*collect|terms|conditions|description|your\s+cashier|collect|card\s+details|'
    r'cashier\b|till\b)',
    re.IGNORECASE,
)
NOISE_CHARS_RE = re.compile(r'''[|=><\[\]{}()\\/"':;,!@#$%^*~`_+]''')
REPEATED_PUNCT_RE = re.compile(r'([^\w\s])\1{2,}')

# Invoice number rules
PHONE_LIKE_RE = re.compile(r'^0\d{9,}$')
DATE_LIKE_RE = re.compile(r'^\d{1,2}[/-]\d{1,2}[/-]\d{2,4}$')
INVOICE_LINE_RE = re.compile(r'\binv(?:oice)?\b', re.IGNORECASE)
INVOICE_PREFIXED_RE = re.compile(r'#?\b([A-Z]{1,5})\s?(\d{5,15})\b', re.IGNORECASE)
INVOICE_NUMERIC_RE = re.compile(r'\b(\d{6,15})\b')
# Words that label an invoice number rather than prefix it
INVOICE_LABEL_WORDS = {'INV', 'NO', 'NR', 'NUM', 'REF', 'TX', 'DOC'}


@dataclass
class ExtractedFields:
    merchant: Optional[str] = None
    total: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None
    invoice_number: Optional[str] = None
    date_token: Optional[str] = None


def is_valid_store_name(line: str) -> bool:
    """Reject lines that look like OCR noise, codes, addresses or receipt labels."""
    clean = line.strip()
    if len(clean) < 5:
        return False
    if PRODUCT_CODE_RE.match(clean):
        return False
    if ADDRESS_RE.search(clean):
        return False
    if LONG_NUMBER_RE.search(clean):
        return False
    if NON_MERCHANT_RE.match(clean):
        return False
    letters = sum(1 for c in clean if c.isalpha())
    if letters < len(clean) * 0.5:
        return False
    if len(NOISE_CHARS_RE.findall(clean)) > 2:
        return False
    if REPEATED_PUNCT_RE.search(clean):
        return False
    return True


def _clean_business_line(line: str) -> Optional[str]:
    cleaned = re.sub(r'\s+', ' ', line)
    cleaned = re.sub(r'[|\\/]+$', '', cleaned).strip()
    suffix = SUFFIX_TRIM_RE.match(cleaned)
    if suffix:
        cleaned = suffix.group(1)
    return cleaned.strip()


def _business_keyword_tier(line: str) -> Optional[str]:
    if len(line) >= 8 and BUSINESS_KEYWORDS_RE.search(line) and is_valid_store_name(line):
        return _clean_business_line(line)
    return None


def _legal_suffix_tier(line: str) -> Optional[str]:
    match = SUFFIX_LINE_RE.match(line)
    if match and is_valid_store_name(match.group(1)):
        return match.group(1).strip()
    return None


def _ampersand_tier(line: str) -> Optional[str]:
    if '&' in line and len(line) >= 10 and AMPERSAND_LINE_RE.match(line) and is_valid_store_name(line):
        return line.strip()
    return None


def _all_caps_tier(line: str) -> Optional[str]:
    if ALL_CAPS_LINE_RE.match(line) and is_valid_store_name(line):
        return line.strip()
    return None


def _first_valid_tier(line: str) -> Optional[str]:
    if len(line) >= 8 and is_valid_store_name(line):
        return line.strip()
    return None


# Tried in order over the header zone; a later tier runs only when every
# earlier tier found nothing in any header line.
MERCHANT_TIERS: List[Tuple[str, Callable[[str], Optional[str]]]] = [
    # Trade words survive OCR damage to the rest of the name
    ('business_keyword', _business_keyword_tier),
    # "<Name> PTY LTD" style registered names
    ('legal_suffix', _legal_suffix_tier),
    # "BRICK & MORTAR" style headers
    ('ampersand', _ampersand_tier),
    # Shouted headers
    ('all_caps', _all_caps_tier),
    ('first_valid', _first_valid_tier),
]


class FieldExtractor:
    """Locates merchant, totals, invoice number and date token in receipt text."""

    def __init__(self, header_lines: Optional[int] = None):
        self.header_lines = header_lines or settings.HEADER_ZONE_LINES
        self._init_patterns()

    def _init_patterns(self):
        """Initialize regex patterns for parsing."""

        # Ordered: the first acceptable match wins
        self.total_patterns = [
            PatternSpec(
                name='total_colon',
                pattern=rf'\bTOTAL[ \t]*:[ \t]*{CUR}[ \t]*{AMOUNT}',
                example='TOTAL : 219.65',
                priority=1,
            ),
            PatternSpec(
                name='total_line_start',
                pattern=rf'^[ \t]*TOTAL[ \t:]*{CUR}[ \t]*{AMOUNT}',
                example='TOTAL R219.65',
                priority=1,
                flags=re.IGNORECASE | re.MULTILINE,
            ),
            PatternSpec(
                name='total_spaced',
                pattern=rf'\bTOTAL[ \t]+{CUR}[ \t]*{AMOUNT}',
                example='SALE TOTAL 219.65',
                priority=2,
            ),
            PatternSpec(
                name='grand_total',
                pattern=rf'\b(?:grand[ \t]*total|amount[ \t]*due|balance[ \t]*due|total[ \t]*due|'
                        rf'total[ \t]*amount|(?:amount|total)[ \t]*payable)[ \t:]*{CUR}[ \t]*{AMOUNT}',
                example='AMOUNT DUE: 219.65',
                priority=2,
            ),
            PatternSpec(
                name='card_payment',
                pattern=rf'\bCard[ \t]*:[ \t]*{CUR}[ \t]*{AMOUNT}',
                example='Card : 219.65',
                notes='Tender line, used when no total label is present',
                priority=3,
            ),
            PatternSpec(
                name='cash_payment',
                pattern=rf'\bCash[ \t]*:[ \t]*{CUR}[ \t]*{AMOUNT}',
                example='Cash : 219.65',
                priority=3,
            ),
            PatternSpec(
                name='rand_prefix',
                pattern=r'\bR[ \t]*(\d{1,3}(?:,\d{3})+\.\d{2}|\d+\.\d{2})\b',
                example='R219.65',
                notes='Bare currency-prefixed amount (case sensitive)',
                priority=4,
                flags=0,
            ),
            PatternSpec(
                name='total_currency_suffix',
                pattern=rf'\b(?:total|amount)[ \t:]*{AMOUNT}[ \t]*(?:KES|USD|GBP|EUR|ZAR)\b',
                example='Total 1,200.00 KES',
                priority=4,
            ),
            PatternSpec(
                name='total_whole_amount',
                pattern=rf'\b(?:total|amount)[ \t:]*{CUR}[ \t]*(\d+)[ \t]*(?:only|/=|$)',
                example='Total KES 1200/=',
                priority=5,
                flags=re.IGNORECASE | re.MULTILINE,
            ),
        ]

        self.subtotal_patterns = [
            PatternSpec(
                name='subtotal',
                pattern=rf'\b(?:subtotal|sub-total|sub[ \t]+total)'
                        rf'(?:[ \t]*\(?[ \t]*(?:ex|excl|excluding|before)\.?[ \t]*(?:vat|tax)[ \t]*\)?)?'
                        rf'[ \t:]*{CUR}[ \t]*{AMOUNT}',
                example='Subtotal (excl VAT): 190.43',
            ),
            PatternSpec(
                name='net_amount',
                pattern=rf'\b(?:net[ \t]+amount|net[ \t]+total|amount[ \t]+ex[ \t]*vat)[ \t:]*{CUR}[ \t]*{AMOUNT}',
                example='Net Total 190.43',
            ),
        ]

        self.invoice_fallback_patterns = [
            PatternSpec(name='invoice_prefixed', pattern=r'\b(?:invoice|inv)[\s#:\-]*([A-Z]{1,5}\d{5,15})\b',
                        example='Invoice #IN57937966'),
            PatternSpec(name='invoice_numeric', pattern=r'\b(?:invoice|inv)[\s#:\-]*(\d{5,15})\b',
                        example='INV-12345'),
            PatternSpec(name='receipt_number', pattern=r'\b(?:receipt|rcpt)[\s#:\-.]*(?:no\.?)?[\s#:]*([A-Z]{0,3}\d{5,15})\b',
                        example='Receipt No. 12345'),
            PatternSpec(name='order_number', pattern=r'\border[\s#:\-.]*(?:no\.?|number)?[\s#:]*([A-Z]{0,3}\d{5,15})\b',
                        example='Order #12345'),
            PatternSpec(name='confirmation_number', pattern=r'\bconfirmation[\s#:\-.]*(?:no\.?|number)?[\s#:]*([A-Z]{0,3}\d{5,15})\b',
                        example='Confirmation #AB12345'),
            PatternSpec(name='transaction_id', pattern=r'\b(?:transaction|trans|txn)[\s#:\-.]*(?:id)?[\s#:]*([A-Z]{0,3}\d{5,15})\b',
                        example='Transaction ID: 123456'),
            PatternSpec(name='reference', pattern=r'\b(?:reference|ref)[\s#:\-.]*(?:no\.?)?[\s#:]*([A-Z]{0,3}\d{5,15})\b',
                        example='Ref #12345'),
            PatternSpec(name='till_transaction', pattern=r'\bTX[\s:]*(\d{4,10})\b',
                        example='TM: 7 TX: 35933', notes='Till transaction counter'),
            PatternSpec(name='document_number', pattern=r'\b(?:doc|document)[\s#:\-.]*(?:no\.?)?[\s#:]*([A-Z]{0,3}\d{5,15})\b',
                        example='Doc No: 12345'),
        ]

        month = r'(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?'
        self.date_patterns = sorted([
            PatternSpec(name='numeric_4digit_year', pattern=r'\b(\d{1,2}[-/.]\d{1,2}[-/.]\d{4})\b',
                        example='25/12/2024', priority=1),
            PatternSpec(name='iso', pattern=r'\b(\d{4}[-/.]\d{1,2}[-/.]\d{1,2})\b',
                        example='2024-12-25', priority=1),
            PatternSpec(name='day_month_year', pattern=rf'\b(\d{{1,2}}(?:st|nd|rd|th)?\s+{month},?\s+\d{{4}})\b',
                        example='25 Dec 2024', priority=1),
            PatternSpec(name='month_day_year', pattern=rf'\b({month}\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}})\b',
                        example='Dec 25, 2024', priority=1),
            PatternSpec(name='numeric_2digit_year', pattern=r'\b(\d{1,2}[-/.]\d{1,2}[-/.]\d{2})\b',
                        example='25/12/24', priority=2),
            PatternSpec(name='day_month_short_year', pattern=rf'\b(\d{{1,2}}\s+{month}\s+\d{{2}})\b',
                        example='1 Jan 24', priority=2),
        ], key=lambda spec: spec.priority)

    def extract(self, text: str) -> ExtractedFields:
        """Run every field extractor over the text."""
        return ExtractedFields(
            merchant=self.extract_merchant(text),
            total=self.extract_total(text),
            subtotal=self.extract_subtotal(text),
            invoice_number=self.extract_invoice_number(text),
            date_token=self.extract_date_token(text),
        )

    def header_zone(self, text: str) -> List[str]:
        lines = [line.strip() for line in text.split('\n')]
        return [line for line in lines if line][:self.header_lines]

    def extract_merchant(self, text: str) -> Optional[str]:
        """
        Find the merchant name in the header zone using the ordered tiers.

        Args:
            text: Receipt text

        Returns:
            Merchant name or None
        """
        try:
            header = self.header_zone(text)
            for tier_name, tier in MERCHANT_TIERS:
                for line in header:
                    merchant = tier(line)
                    if merchant:
                        logger.debug("Merchant %r from tier %s", merchant, tier_name)
                        return merchant
            return None

        except (re.error, AttributeError):
            logger.warning("Error extracting merchant", exc_info=True)
            return None

    def extract_total(self, text: str) -> Optional[Decimal]:
        """
        Extract the grand total, skipping anything labelled as a subtotal.

        Args:
            text: Receipt text

        Returns:
            Total as Decimal or None
        """
        try:
            for spec in self.total_patterns:
                for match in spec.finditer(text):
                    if _mentions_subtotal(text, match):
                        continue
                    total = parse_money(match.group(1))
                    if total is not None:
                        logger.debug("Total %s from pattern %s", total, spec.name)
                        return total
            return None

        except (re.error, AttributeError, IndexError):
            logger.warning("Error extracting total", exc_info=True)
            return None

    def extract_subtotal(self, text: str) -> Optional[Decimal]:
        try:
            for spec in self.subtotal_patterns:
                for match in spec.finditer(text):
                    subtotal = parse_money(match.group(1))
                    if subtotal is not None:
                        return subtotal
            return None

        except (re.error, AttributeError, IndexError):
            logger.warning("Error extracting subtotal", exc_info=True)
            return None

    def extract_invoice_number(self, text: str) -> Optional[str]:
        """
        Extract the invoice number.

        Lines mentioning "invoice"/"inv" are searched first and the number must
        sit on that same line. Whole-text keyword patterns are the fallback.
        """
        try:
            for line in text.split('\n'):
                if not INVOICE_LINE_RE.search(line):
                    continue
                candidate = self._invoice_from_line(line)
                if candidate:
                    return candidate

            for spec in self.invoice_fallback_patterns:
                for match in spec.finditer(text):
                    candidate = match.group(1).strip()
                    if _is_plausible_invoice(candidate, min_length=4 if spec.name == 'till_transaction' else 5):
                        logger.debug("Invoice number %s from pattern %s", candidate, spec.name)
                        return candidate
            return None

        except (re.error, AttributeError, IndexError):
            logger.warning("Error extracting invoice number", exc_info=True)
            return None

    def _invoice_from_line(self, line: str) -> Optional[str]:
        for match in INVOICE_PREFIXED_RE.finditer(line):
            prefix, digits = match.group(1).upper(), match.group(2)
            candidate = digits if prefix in INVOICE_LABEL_WORDS else prefix + digits
            if _is_plausible_invoice(candidate):
                return candidate

        for match in INVOICE_NUMERIC_RE.finditer(line):
            if _is_plausible_invoice(match.group(1), min_length=6):
                return match.group(1)
        return None

    def extract_date_token(self, text: str) -> Optional[str]:
        """Return the highest-priority raw date token in the text, unparsed."""
        try:
            for spec in self.date_patterns:
                match = spec.search(text)
                if match:
                    return match.group(1).strip()
            return None

        except (re.error, AttributeError):
            logger.warning("Error extracting date", exc_info=True)
            return None


def _mentions_subtotal(text: str, match: re.Match) -> bool:
    # Include a few characters before the match so "Sub Total:" is caught
    line_start = text.rfind('\n', 0, match.start()) + 1
    window = text[max(line_start, match.start() - 4):match.end()].lower()
    return 'subtotal' in window or 'sub-total' in window or 'sub total' in window


def _is_plausible_invoice(candidate: str, min_length: int = 5) -> bool:
    if not (min_length <= len(candidate) <= 20):
        return False
    if PHONE_LIKE_RE.match(candidate) or DATE_LIKE_RE.match(candidate):
        return False
    return True
