"""
Confidence scoring for extracted receipts.

The score is a weighted sum over the three key fields:
- merchant (0.30): scaled by word count, two or more words is full weight
- date     (0.35): flat when present
- total    (0.35): full when written with cents, 0.7 of the weight otherwise

It is advisory. It drives UI messaging and manual-entry hints, never persistence.
"""

from decimal import Decimal
from typing import Optional

from slipkeeper.models.receipt import ConfidenceLevel
from slipkeeper.utils.money import has_cents


class ConfidenceScorer:
    """Weighted low/medium/high rating from which key fields were found."""

    WEIGHTS = {
        'merchant': 0.30,
        'date': 0.35,
        'total': 0.35,
    }

    # Whole-number totals are more often misreads
    WHOLE_TOTAL_FACTOR = 0.7

    THRESHOLDS = {
        'high': 0.8,
        'medium': 0.5,
    }

    def score(
        self,
        merchant: Optional[str],
        has_date: bool,
        total: Optional[Decimal],
    ) -> float:
        """
        Score the key fields between 0.0 and 1.0.

        Args:
            merchant: Extracted merchant name
            has_date: Whether a purchase date was found
            total: Extracted total amount

        Returns:
            Score rounded to 2 places
        """
        score = 0.0

        if merchant and merchant.strip():
            word_count = len(merchant.split())
            score += self.WEIGHTS['merchant'] * min(word_count / 2, 1.0)

        if has_date:
            score += self.WEIGHTS['date']

        if total is not None:
            factor = 1.0 if has_cents(total) else self.WHOLE_TOTAL_FACTOR
            score += self.WEIGHTS['total'] * factor

        return round(max(0.0, min(1.0, score)), 2)

    def level(self, score: float) -> ConfidenceLevel:
        if score >= self.THRESHOLDS['high']:
            return ConfidenceLevel.HIGH
        if score >= self.THRESHOLDS['medium']:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW

    def rate(self, merchant: Optional[str], has_date: bool, total: Optional[Decimal]):
        """Return (score, level)."""
        score = self.score(merchant, has_date, total)
        return score, self.level(score)
