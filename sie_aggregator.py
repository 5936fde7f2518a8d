"""
BAS aggregation - Roll SIE balances up into coarse financial-statement figures.

Accounts are classified by number using the ranges of the Swedish BAS account
plan. Monthly #PSALDO balances give one period per month; files without them
fall back to the #UB closing balances and yield a single year-end period.
"""

import logging
from dataclasses import dataclass, fields
from enum import Enum
from typing import Dict, Optional

from sie_parser import SieData, parse_int

logger = logging.getLogger(__name__)


class Bucket(Enum):
    """Financial-statement buckets with their BAS account ranges (half-open)."""
    REVENUE = ("revenue", 3000, 4000, True)
    COST_OF_GOODS_SOLD = ("cost_of_goods_sold", 4000, 5000, False)
    OPERATING_EXPENSES = ("operating_expenses", 5000, 8000, False)
    ASSETS = ("assets", 1000, 2000, False)
    EQUITY = ("equity", 2000, 2100, True)
    LIABILITIES = ("liabilities", 2100, 3000, True)

    def __init__(self, field_name: str, low: int, high: int, absolute: bool):
        self.field_name = field_name
        self.low = low
        self.high = high
        # Credit-side buckets are reported as positive figures
        self.absolute = absolute

    def contains(self, account_number: int) -> bool:
        return self.low <= account_number < self.high

    def signed(self, balance: float) -> float:
        """Return the balance with this bucket's sign convention applied."""
        return abs(balance) if self.absolute else balance


def classify_account(account_number: int) -> Optional[Bucket]:
    """Get the bucket for a BAS account number.

    - 1000-1999: Tillgångar (Assets)
    - 2000-2099: Eget kapital (Equity)
    - 2100-2999: Skulder och avsättningar (Liabilities)
    - 3000-3999: Rörelsens intäkter (Revenue)
    - 4000-4999: Varor och material (Cost of goods sold)
    - 5000-7999: Övriga rörelsekostnader (Operating expenses)

    Financial items (8xxx) and anything outside the plan are not classified.

    Args:
        account_number: The account number

    Returns:
        The matching Bucket, or None
    """
    for bucket in Bucket:
        if bucket.contains(account_number):
            return bucket
    return None


@dataclass
class PeriodTotals:
    """Six-bucket totals for one calendar period."""
    revenue: float = 0.0
    cost_of_goods_sold: float = 0.0
    operating_expenses: float = 0.0
    assets: float = 0.0
    liabilities: float = 0.0
    equity: float = 0.0

    def add(self, account_number: int, balance: float) -> Optional[Bucket]:
        """Add a balance to the bucket its account belongs to. Returns that bucket, if any."""
        bucket = classify_account(account_number)
        if bucket is not None:
            setattr(self, bucket.field_name, getattr(self, bucket.field_name) + bucket.signed(balance))
        return bucket

    def as_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _period_key(year: int, month: int) -> str:
    return f"{year}-{month:02d}"


def aggregate_financials(data: SieData, year_index: int = 0) -> Dict[str, PeriodTotals]:
    """
    Aggregate parsed SIE balances into per-period financial totals.

    Period balances for the requested year are used when there are any; the
    closing balances of that year are only consulted when there are none.

    Args:
        data: Parsed SIE data
        year_index: Fiscal year to aggregate (0 = current, -1 = previous, ...)

    Returns:
        Mapping from "YYYY-MM" to PeriodTotals, in order of first appearance.
        Empty when the file declares no fiscal year with that index.
    """
    periods: Dict[str, PeriodTotals] = {}

    fiscal_year = data.fiscal_year(year_index)
    if fiscal_year is None:
        logger.info(f"No fiscal year with index {year_index}; nothing to aggregate")
        return periods

    start_year = parse_int(fiscal_year.start_date[:4], "fiscal year start")

    monthly = [pb for pb in data.period_balances if pb.year_index == year_index]
    if monthly:
        for pb in monthly:
            key = _period_key(start_year, pb.month)
            if key not in periods:
                periods[key] = PeriodTotals()
            periods[key].add(pb.account_number, pb.balance)
    else:
        year_end = PeriodTotals()
        for cb in data.closing_balances:
            if cb.year_index == year_index:
                year_end.add(cb.account_number, cb.balance)
        periods[_period_key(start_year, 12)] = year_end

    source = "period balances" if monthly else "closing balances"
    logger.info(f"Aggregated fiscal year {year_index} into {len(periods)} period(s) from {source}")
    return periods


__all__ = [
    "Bucket",
    "PeriodTotals",
    "classify_account",
    "aggregate_financials",
]
