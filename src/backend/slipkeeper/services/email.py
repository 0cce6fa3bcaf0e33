"""
E-mail receipt parsing: order confirmations and digital receipts pasted or
forwarded as text or HTML.
"""

import logging
import re
from decimal import Decimal
from typing import Optional

import html2text

from slipkeeper.models.errors import OCRError, OCRErrorType, make_error
from slipkeeper.services.fields import ExtractedFields, _mentions_subtotal
from slipkeeper.services.parser import ParseContext, ReceiptParser
from slipkeeper.utils.money import AMOUNT, CURRENCY_PREFIX as CUR, parse_money
from slipkeeper.utils.patterns import PatternSpec

logger = logging.getLogger(__name__)

HTML_TAG_RE = re.compile(r'<[a-z][\s\S]*>', re.IGNORECASE)
BLANK_LINES_RE = re.compile(r'\n{3,}')

# Captured names that are really labels
LABEL_PREFIX_RE = re.compile(
    r'^(?:order|receipt|invoice|tax|date|time|total|subtotal|qty|item|price|confirmation|thank|your\b|my\b)',
    re.IGNORECASE,
)

NAME = r"([A-Za-z0-9][A-Za-z0-9 &'.-]*?)"

MERCHANT_PATTERNS = [
    PatternSpec(
        name='order_from',
        pattern=rf'(?:order[ \t]+from|thank[ \t]+you[ \t]+for[ \t]+(?:your[ \t]+)?(?:order|purchase)[ \t]+(?:at|from|with))'
                rf'[ \t]*[:\-]?[ \t]*{NAME}[ \t]*(?:\n|!|\||\.(?:\s|$)|$)',
        example='Thank you for your order from Takealot!',
        flags=re.IGNORECASE | re.MULTILINE,
    ),
    PatternSpec(
        name='receipt_from',
        pattern=rf'receipt[ \t]+from[ \t]*[:\-]?[ \t]*{NAME}[ \t]*$',
        example='Your receipt from Apple',
        flags=re.IGNORECASE | re.MULTILINE,
    ),
    PatternSpec(
        name='sender_header',
        pattern=rf'^(?:from|sender)[ \t:]+{NAME}[ \t]*(?:<[^>\n]+>|$)',
        example='From: Woolworths <noreply@woolworths.co.za>',
        flags=re.IGNORECASE | re.MULTILINE,
    ),
    PatternSpec(
        name='name_before_document',
        pattern=r"^([A-Z][A-Za-z0-9 &'.-]{2,30}?)[ \t]+(?:[Oo]rder|[Rr]eceipt|[Ii]nvoice)\b",
        example='Superbalist Order Confirmation',
        notes='Case sensitive: the name must start with a capital',
        flags=re.MULTILINE,
    ),
    PatternSpec(
        name='labelled_store',
        pattern=rf'\b(?:store|merchant|seller|shop|vendor)[ \t:]+{NAME}[ \t]*$',
        example='Seller: Loot Online',
        flags=re.IGNORECASE | re.MULTILINE,
    ),
]

ORDER_ID = r'([A-Z]{0,5}\d{5,20})\b'

INVOICE_PATTERNS = [
    PatternSpec(name='order', pattern=rf'\border[ \t]*(?:number|no\.?)?[ \t#:\-.]*{ORDER_ID}',
                example='Order #MP12345678'),
    PatternSpec(name='invoice', pattern=rf'\b(?:invoice|inv)[ \t]*(?:number|no\.?)?[ \t#:\-.]*{ORDER_ID}',
                example='Invoice Number: 100234'),
    PatternSpec(name='confirmation', pattern=rf'\bconfirmation[ \t]*(?:number|no\.?)?[ \t#:\-.]*{ORDER_ID}',
                example='Confirmation #AB12345'),
    PatternSpec(name='receipt', pattern=rf'\b(?:receipt|rcpt)[ \t]*(?:number|no\.?)?[ \t#:\-.]*{ORDER_ID}',
                example='Receipt no. 2231-0098'),
    PatternSpec(name='transaction', pattern=rf'\b(?:transaction|trans|txn)[ \t]*(?:id)?[ \t#:\-.]*{ORDER_ID}',
                example='Transaction ID: 99812345'),
    PatternSpec(name='reference', pattern=rf'\b(?:reference|ref)[ \t#:\-.]*{ORDER_ID}',
                example='Reference: 5567123'),
]

DATE_LABEL_PATTERNS = [
    PatternSpec(name='labelled_date',
                pattern=r'\b(?:order[ \t]+date|purchase[ \t]+date|date[ \t]+ordered|transaction[ \t]+date)[ \t:|]+([^\n]+)',
                example='Order Date: 14 March 2025'),
    PatternSpec(name='placed_on',
                pattern=r'\b(?:placed|ordered|purchased)[ \t]+on[ \t:]+([^\n]+)',
                example='Placed on Mar 14, 2025 at 10:02'),
]

TOTAL_PATTERNS = [
    PatternSpec(
        name='labelled_total',
        pattern=rf'\b(?:order[ \t]+total|grand[ \t]+total|total[ \t]+charged|amount[ \t]+charged|you[ \t]+paid|'
                rf'payment[ \t]+total|total[ \t]+amount|total[ \t]+paid|amount[ \t]+due|balance[ \t]+due)'
                rf'[ \t:|*]*{CUR}[ \t]*{AMOUNT}',
        example='Order Total: R 1,299.00',
    ),
    PatternSpec(
        name='total_line_start',
        pattern=rf'^[ \t|*]*TOTAL[ \t:|*]*{CUR}[ \t]*{AMOUNT}',
        example='| Total | R219.00 |',
        flags=re.IGNORECASE | re.MULTILINE,
    ),
    PatternSpec(
        name='total_anywhere',
        pattern=rf'\bTOTAL[ \t:|*]+{CUR}[ \t]*{AMOUNT}',
        example='Your total: $54.20',
    ),
    PatternSpec(
        name='charged',
        pattern=rf'\b(?:charged|paid|billed)[ \t:]*{CUR}[ \t]*{AMOUNT}',
        example='We charged R 449.00 to your card',
    ),
]


def convert_html_to_text(html_content: str) -> str:
    """
    Convert HTML email to clean text.

    Args:
        html_content: HTML string

    Returns:
        Plain text version
    """
    h = html2text.HTML2Text()
    h.ignore_links = False
    h.ignore_images = True
    h.ignore_emphasis = False
    h.body_width = 0  # Don't wrap lines

    text = h.handle(html_content)
    return BLANK_LINES_RE.sub('\n\n', text).strip()


def looks_like_html(text: str) -> bool:
    return bool(HTML_TAG_RE.search(text or ''))


class EmailReceiptParser(ReceiptParser):
    """
    Parses order confirmation e-mails.

    E-mail specific patterns are tried first for each field, then the
    generic receipt extractors. For the merchant the sender display name
    sits between the two.
    """

    def parse(self, text: str, context: Optional[ParseContext] = None, hints=None):
        if looks_like_html(text):
            text = convert_html_to_text(text)
        return super().parse(text, context=context, hints=hints)

    def _extract_fields(self, text: str, context: ParseContext) -> ExtractedFields:
        generic = self.field_extractor.extract(text)

        merchant = self.extract_merchant(text)
        if not merchant and context.sender_name and context.sender_name.strip():
            merchant = context.sender_name.strip()
        merchant = merchant or generic.merchant

        return ExtractedFields(
            merchant=merchant,
            total=self.extract_total(text) or generic.total,
            subtotal=generic.subtotal,
            invoice_number=self.extract_invoice_number(text) or generic.invoice_number,
            date_token=self.extract_date_token(text) or generic.date_token,
        )

    def extract_merchant(self, text: str) -> Optional[str]:
        try:
            for spec in MERCHANT_PATTERNS:
                for match in spec.finditer(text):
                    merchant = match.group(1).strip(" .-'")
                    if len(merchant) > 2 and not LABEL_PREFIX_RE.match(merchant):
                        logger.debug(f"Email merchant found via {spec.name}: {merchant}")
                        return merchant
            return None

        except (re.error, AttributeError):
            logger.warning("Error extracting email merchant", exc_info=True)
            return None

    def extract_invoice_number(self, text: str) -> Optional[str]:
        for spec in INVOICE_PATTERNS:
            match = spec.search(text)
            if match and 5 <= len(match.group(1)) <= 25:
                return match.group(1)
        return None

    def extract_date_token(self, text: str) -> Optional[str]:
        """Labelled dates first; the date itself is cut out of the label's value."""
        for spec in DATE_LABEL_PATTERNS:
            match = spec.search(text)
            if match:
                token = self.field_extractor.extract_date_token(match.group(1))
                if token:
                    return token
        return None

    def extract_total(self, text: str) -> Optional[Decimal]:
        for spec in TOTAL_PATTERNS:
            for match in spec.finditer(text):
                if _mentions_subtotal(text, match):
                    continue
                amount = parse_money(match.group(1))
                if amount is not None:
                    return amount
        return None

    def _nothing_found_error(self) -> OCRError:
        return make_error(
            OCRErrorType.NO_TEXT_DETECTED,
            message="Could not extract receipt information from the email",
            suggestion="Make sure you pasted the full email, including the store name, order date and total.",
        )
