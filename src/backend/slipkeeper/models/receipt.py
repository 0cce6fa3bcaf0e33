"""
Pydantic models for extracted receipts, policies and deadlines.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from slipkeeper.models.errors import OCRError


class RefundType(str, Enum):
    """How a purchase may be refunded, as stated on the receipt."""
    FULL = "full"
    STORE_CREDIT = "store_credit"
    EXCHANGE_ONLY = "exchange_only"
    PARTIAL = "partial"
    NONE = "none"  # returns unconditionally barred
    NOT_SPECIFIED = "not_specified"


class VatSource(str, Enum):
    EXTRACTED = "extracted"
    CALCULATED = "calculated"
    NONE = "none"


class PolicySource(str, Enum):
    EXTRACTED = "extracted"
    MERCHANT_DEFAULT = "merchant_default"
    USER_ENTERED = "user_entered"


class ConfidenceLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PolicyInfo(BaseModel):
    """
    Return, exchange and warranty terms read off a receipt.

    `policy_source` starts as `merchant_default`, the stored default for a
    record nothing has been read into. The analyzer stamps `extracted` once it
    reads a value, so an untouched default does not mean a merchant rule applied;
    `Deadlines.return_source` and `warranty_source` say that.
    """
    return_policy_days: Optional[int] = None  # 0 means explicitly no returns
    return_policy_terms: Optional[str] = None
    refund_type: Optional[RefundType] = None
    exchange_policy_days: Optional[int] = None
    exchange_policy_terms: Optional[str] = None
    warranty_months: Optional[int] = None
    warranty_terms: Optional[str] = None
    policy_source: PolicySource = PolicySource.MERCHANT_DEFAULT

    @property
    def returns_barred(self) -> bool:
        return self.refund_type == RefundType.NONE or self.return_policy_days == 0


class ReceiptHints(BaseModel):
    """Partially structured fields supplied by a provider, still to be validated."""
    merchant: Optional[str] = None
    date: Optional[str] = None
    total: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None
    vat_amount: Optional[Decimal] = None
    invoice_number: Optional[str] = None
    policy: Optional[PolicyInfo] = None


class ExtractedReceipt(BaseModel):
    """Structured purchase record produced by one extraction pass."""
    merchant: Optional[str] = None
    date: Optional[str] = None  # raw token as found on the receipt
    normalized_date: Optional[dt.date] = None
    total: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None
    vat_amount: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    vat_source: VatSource = VatSource.NONE
    invoice_number: Optional[str] = None
    policy: PolicyInfo = Field(default_factory=PolicyInfo)
    confidence: ConfidenceLevel = ConfidenceLevel.LOW
    raw_confidence_score: float = 0.0
    provider: Optional[str] = None
    provider_confidence: Optional[float] = None
    raw_text: str = ""
    missing_fields: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    error: Optional[OCRError] = None

    def missing_key_fields(self) -> List[str]:
        """Names of the key fields (merchant, date, total) that are still empty."""
        missing = []
        if not self.merchant:
            missing.append("merchant")
        if self.date is None and self.normalized_date is None:
            missing.append("date")
        if self.total is None:
            missing.append("total")
        return missing

    @property
    def has_key_fields(self) -> bool:
        return len(self.missing_key_fields()) < 3


class MerchantRule(BaseModel):
    """Per-user return/warranty defaults for a merchant."""
    user_id: str
    merchant_name: str
    normalized_merchant_name: str = ""
    return_policy_days: Optional[int] = None
    warranty_months: Optional[int] = None

    class Config:
        from_attributes = True


class Deadlines(BaseModel):
    """Computed once per extraction; recompute instead of editing."""
    return_by: Optional[dt.date] = None
    warranty_ends: Optional[dt.date] = None
    return_source: Optional[PolicySource] = None
    warranty_source: Optional[PolicySource] = None

    class Config:
        frozen = True
