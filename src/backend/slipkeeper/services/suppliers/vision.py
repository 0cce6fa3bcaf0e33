"""
Gemini vision supplier: sends the receipt photo to the Gemini API and gets
back the transcribed text plus structured fields.
"""

import base64
import json
import logging
import re
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from slipkeeper.config import settings
from slipkeeper.models.errors import SupplierError, UnsupportedFormatError
from slipkeeper.models.receipt import PolicyInfo, ReceiptHints
from slipkeeper.services.policy import normalize_refund_type
from slipkeeper.services.suppliers.base import ReceiptPayload, SupplierResult, TextSupplier
from slipkeeper.utils.money import parse_money

logger = logging.getLogger(__name__)

JSON_FENCE_RE = re.compile(r'```(?:json)?\s*([\s\S]*?)```')

EXTENSION_MIME_TYPES = {
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
}

RECEIPT_PROMPT = """You are reading a photo of a South African till slip or tax invoice.

Rules:
- All amounts are plain numbers without currency symbols.
- merchant is the business name at the top, not an address, till ID or Wi-Fi password.
- total is the bottom-most TOTAL / AMOUNT DUE / AMOUNT PAYABLE line, never a line item.
- Only fill policy values that are written on the receipt. Use null otherwise.
- "No refunds without original invoice" is a condition, not a ban: do not use refundType "none" for it.
- "All sales final" or "absolutely no returns" is a ban: refundType "none", returnPolicyDays 0.

Reply with JSON only:
{
  "merchant": null,
  "date": "YYYY-MM-DD",
  "total": null,
  "subtotal": null,
  "vatAmount": null,
  "invoiceNumber": null,
  "rawText": "full text of the receipt",
  "policies": {
    "returnPolicyDays": null,
    "returnPolicyTerms": null,
    "refundType": null,
    "exchangePolicyDays": null,
    "exchangePolicyTerms": null,
    "warrantyMonths": null,
    "warrantyTerms": null
  }
}"""

# Provider confidence by number of key fields found (merchant, date, total, invoice)
FIELD_COUNT_CONFIDENCE = ((4, 0.95), (2, 0.70), (0, 0.40))


class GeminiVisionSupplier(TextSupplier):
    name = "gemini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key or settings.GEMINI_API_KEY
        self.model = model or settings.GEMINI_MODEL
        self.base_url = (base_url or settings.GEMINI_BASE_URL).rstrip('/')
        self.timeout_seconds = timeout_seconds or settings.VISION_TIMEOUT_SECONDS
        self._transport = transport

    async def supply(self, payload: ReceiptPayload) -> SupplierResult:
        if not payload.is_image:
            raise UnsupportedFormatError(f"{self.name} only reads images, got {payload.mime_type}")
        if not self._api_key:
            raise SupplierError("Gemini API key is not configured")

        body = {
            'contents': [{
                'parts': [
                    {'inline_data': {
                        'mime_type': _image_mime_type(payload),
                        'data': base64.b64encode(payload.as_bytes()).decode('ascii'),
                    }},
                    {'text': RECEIPT_PROMPT},
                ],
            }],
            'generationConfig': {'temperature': 0.1},
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.base_url}/models/{self.model}:generateContent",
                    headers={'x-goog-api-key': self._api_key},
                    json=body,
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            raise SupplierError(f"Gemini request failed: {e}") from e
        except ValueError as e:
            raise SupplierError("Gemini returned a non-JSON response") from e

        parsed = parse_model_reply(response_text(data))
        hints = hints_from_payload(parsed)
        confidence = confidence_for(hints)

        logger.info(
            "Gemini extraction complete",
            extra={'provider': self.name, 'model': self.model, 'confidence': confidence},
        )
        return SupplierResult(
            text=str(parsed.get('rawText') or ''),
            provider=self.name,
            confidence=confidence,
            hints=hints,
        )


def _image_mime_type(payload: ReceiptPayload) -> str:
    if payload.mime_type.startswith('image/'):
        return payload.mime_type
    for ext, mime_type in EXTENSION_MIME_TYPES.items():
        if payload.filename.lower().endswith(ext):
            return mime_type
    return 'image/jpeg'


def response_text(data: Dict[str, Any]) -> str:
    """Pull the first candidate's text out of a generateContent response."""
    try:
        parts = data['candidates'][0]['content']['parts']
    except (KeyError, IndexError, TypeError) as e:
        raise SupplierError("Gemini response has no candidates") from e
    return ''.join(part.get('text', '') for part in parts if isinstance(part, dict))


def parse_model_reply(reply: str) -> Dict[str, Any]:
    """Parse the model's JSON reply, unwrapping a ```json fence if present."""
    json_str = reply.strip()
    fenced = JSON_FENCE_RE.search(json_str)
    if fenced:
        json_str = fenced.group(1).strip()

    try:
        parsed = json.loads(json_str)
    except ValueError as e:
        logger.warning("Gemini reply is not JSON", extra={'reply': reply[:500]})
        raise SupplierError("Invalid JSON response from Gemini") from e

    if not isinstance(parsed, dict):
        raise SupplierError("Gemini response is not a JSON object")
    return parsed


def hints_from_payload(parsed: Dict[str, Any]) -> ReceiptHints:
    """
    Map the model's camelCase JSON onto ReceiptHints. Values are validated later by the parser.

    Raises:
        SupplierError: a field has a shape no hint can hold
    """
    try:
        return _build_hints(parsed)
    except ValidationError as e:
        logger.warning("Gemini reply has malformed fields", extra={'error': str(e)})
        raise SupplierError("Gemini reply has malformed fields") from e


def _build_hints(parsed: Dict[str, Any]) -> ReceiptHints:
    policies = parsed.get('policies') or {}
    policy = None
    if isinstance(policies, dict) and any(value not in (None, '') for value in policies.values()):
        policy = PolicyInfo(
            return_policy_days=_to_int(policies.get('returnPolicyDays')),
            return_policy_terms=_to_str(policies.get('returnPolicyTerms')),
            refund_type=normalize_refund_type(_to_str(policies.get('refundType'))) if policies.get('refundType') else None,
            exchange_policy_days=_to_int(policies.get('exchangePolicyDays')),
            exchange_policy_terms=_to_str(policies.get('exchangePolicyTerms')),
            warranty_months=_to_int(policies.get('warrantyMonths')),
            warranty_terms=_to_str(policies.get('warrantyTerms')),
        )

    return ReceiptHints(
        merchant=_to_str(parsed.get('merchant')),
        date=_to_str(parsed.get('date')),
        total=parse_money(parsed.get('total')),
        subtotal=parse_money(parsed.get('subtotal')),
        vat_amount=parse_money(parsed.get('vatAmount')),
        invoice_number=_to_str(parsed.get('invoiceNumber')),
        policy=policy,
    )


def confidence_for(hints: ReceiptHints) -> float:
    found = sum(1 for value in (hints.merchant, hints.date, hints.total, hints.invoice_number) if value)
    for minimum, confidence in FIELD_COUNT_CONFIDENCE:
        if found >= minimum:
            return confidence
    return FIELD_COUNT_CONFIDENCE[-1][1]


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
