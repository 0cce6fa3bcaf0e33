"""
Command line entry point: extract a receipt file and print the result.

    slipkeeper-parse receipt.jpg --purchase-date 2025-01-01
    slipkeeper-parse order.html --user 407b70ad --json
"""

import argparse
import asyncio
import datetime as dt
import json
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Optional

from slipkeeper.config import settings
from slipkeeper.models.receipt import Deadlines, ExtractedReceipt
from slipkeeper.services.deadlines import DeadlineCalculator, days_remaining
from slipkeeper.services.merchant_rules import SupabaseMerchantRuleLookup
from slipkeeper.services.parser import ParseContext
from slipkeeper.services.pipeline import ExtractionPipeline
from slipkeeper.services.suppliers import (
    GeminiVisionSupplier,
    PlainTextSupplier,
    ReceiptPayload,
    TesseractSupplier,
)
from slipkeeper.utils.money import format_money


def load_payload(path: Path) -> ReceiptPayload:
    mime_type, _ = mimetypes.guess_type(path.name)
    return ReceiptPayload(
        content=path.read_bytes(),
        mime_type=mime_type or 'text/plain',
        filename=path.name,
    )


def build_pipeline(payload: ReceiptPayload, user_id: Optional[str] = None) -> ExtractionPipeline:
    """Gemini first when a key is configured, then local OCR or plain text."""
    if payload.is_image or payload.is_pdf:
        secondary = TesseractSupplier()
    else:
        secondary = PlainTextSupplier()

    primary = None
    if settings.GEMINI_API_KEY and payload.is_image:
        primary = GeminiVisionSupplier()

    lookup = None
    if user_id and settings.SUPABASE_URL:
        lookup = SupabaseMerchantRuleLookup()

    return ExtractionPipeline(
        secondary=secondary,
        primary=primary,
        deadline_calculator=DeadlineCalculator(lookup),
    )


def print_summary(receipt: ExtractedReceipt, deadlines: Deadlines):
    print(f"\n{'='*60}")
    print(f"Merchant:   {receipt.merchant or '-'}")
    print(f"Date:       {receipt.normalized_date or '-'}  (raw: {receipt.date or '-'})")
    print(f"Total:      {format_money(receipt.total)}")
    print(f"Subtotal:   {format_money(receipt.subtotal)}")
    print(f"VAT:        {format_money(receipt.vat_amount)}  ({receipt.vat_source.value})")
    print(f"Invoice:    {receipt.invoice_number or '-'}")
    print(f"Confidence: {receipt.confidence.value} ({receipt.raw_confidence_score:.2f})")
    print(f"Provider:   {receipt.provider or '-'}")

    policy = receipt.policy
    print(f"\nRefund type: {policy.refund_type.value if policy.refund_type else '-'}")
    print(f"Return days: {policy.return_policy_days if policy.return_policy_days is not None else '-'}")
    print(f"Warranty:    {policy.warranty_months if policy.warranty_months is not None else '-'} months")
    if policy.return_policy_terms:
        print(f"Terms:       {policy.return_policy_terms}")

    if deadlines.return_by:
        print(f"\nReturn by:     {deadlines.return_by} ({days_remaining(deadlines.return_by)} days left)")
    if deadlines.warranty_ends:
        print(f"Warranty ends: {deadlines.warranty_ends}")

    for warning in receipt.warnings:
        print(f"  ⚠ {warning}")
    if receipt.error:
        print(f"\n✗ {receipt.error.message}")
        print(f"  {receipt.error.suggestion}")
    print(f"{'='*60}\n")


def main(argv=None):
    parser_args = argparse.ArgumentParser(description='Extract a receipt from a text, HTML, image or PDF file')
    parser_args.add_argument('path', type=Path, help='Receipt file')
    parser_args.add_argument('--user', '-u', type=str,
                             help='User ID used to look up merchant rules')
    parser_args.add_argument('--purchase-date', '-d', type=dt.date.fromisoformat,
                             help='Purchase date (YYYY-MM-DD), overrides the receipt')
    parser_args.add_argument('--json', action='store_true',
                             help='Print the full record as JSON')
    args = parser_args.parse_args(argv)

    logging.basicConfig(level=settings.LOG_LEVEL)

    if not args.path.exists():
        print(f"Error: File not found: {args.path}")
        sys.exit(1)

    payload = load_payload(args.path)
    pipeline = build_pipeline(payload, user_id=args.user)
    context = ParseContext(purchase_date=args.purchase_date)
    outcome = asyncio.run(pipeline.run_with_deadlines(payload, user_id=args.user, context=context))

    if args.json:
        print(json.dumps({
            "receipt": outcome.receipt.model_dump(mode="json"),
            "deadlines": outcome.deadlines.model_dump(mode="json"),
        }, indent=2))
    else:
        print_summary(outcome.receipt, outcome.deadlines)

    sys.exit(1 if outcome.receipt.error and not outcome.receipt.has_key_fields else 0)


if __name__ == '__main__':
    main()
