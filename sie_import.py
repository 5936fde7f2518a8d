"""
SIE import - Turn aggregated SIE periods into financial-period records and store them.

Each aggregated period becomes one FinancialPeriod. The balance sheet split
into current and non-current parts is a flat 50/50 simplification, and net
income equals operating income since interest and tax are not modelled.

Periods are written one at a time. A failing write is recorded and the
remaining periods are still attempted, so an import can partially succeed.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple, Union, runtime_checkable

from sie_aggregator import PeriodTotals, aggregate_financials
from sie_parser import CompanyInfo, DEFAULT_ENCODING, SieData, parse_sie4_file

logger = logging.getLogger(__name__)

SIE_FILE_EXTENSIONS = (".se", ".si", ".sie")


class SieImportError(Exception):
    """Raised when a file cannot be imported at all."""
    pass


# Financial period record
@dataclass(frozen=True)
class IncomeStatement:
    revenue: float
    cost_of_goods_sold: float
    gross_profit: float
    operating_expenses: float
    operating_income: float
    interest_expense: float = 0.0
    interest_income: float = 0.0
    other_income: float = 0.0
    other_expenses: float = 0.0
    tax_expense: float = 0.0
    net_income: float = 0.0


@dataclass(frozen=True)
class BalanceSheet:
    total_current_assets: float
    total_non_current_assets: float
    total_assets: float
    total_current_liabilities: float
    total_non_current_liabilities: float
    total_liabilities: float
    retained_earnings: float
    total_equity: float
    cash_and_equivalents: float = 0.0
    accounts_receivable: float = 0.0
    inventory: float = 0.0
    prepaid_expenses: float = 0.0
    other_current_assets: float = 0.0
    property_plant_equipment: float = 0.0
    intangible_assets: float = 0.0
    long_term_investments: float = 0.0
    other_non_current_assets: float = 0.0
    accounts_payable: float = 0.0
    short_term_debt: float = 0.0
    accrued_liabilities: float = 0.0
    other_current_liabilities: float = 0.0
    long_term_debt: float = 0.0
    deferred_tax_liabilities: float = 0.0
    other_non_current_liabilities: float = 0.0
    common_stock: float = 0.0
    other_equity: float = 0.0


@dataclass(frozen=True)
class CashFlow:
    """Not derivable from balances; always zero."""
    operating_cash_flow: float = 0.0
    investing_cash_flow: float = 0.0
    financing_cash_flow: float = 0.0
    net_cash_flow: float = 0.0
    beginning_cash: float = 0.0
    ending_cash: float = 0.0


@dataclass(frozen=True)
class Kpis:
    gross_margin: float
    operating_margin: float
    net_margin: float
    ebitda: float
    ebitda_margin: float
    current_ratio: float
    quick_ratio: float
    debt_to_equity: float
    return_on_assets: float
    return_on_equity: float
    working_capital: float


@dataclass(frozen=True)
class SourceMetadata:
    imported_at: datetime
    imported_by: str
    erp_connection_id: str


@dataclass(frozen=True)
class FinancialPeriod:
    """One period record as written to the financial store."""
    tenant_id: str
    period: str
    fiscal_year: int
    income_statement: IncomeStatement
    balance_sheet: BalanceSheet
    cash_flow: CashFlow
    kpis: Kpis
    source_metadata: SourceMetadata
    created_at: datetime
    updated_at: datetime
    created_by: str
    period_type: str = "monthly"
    source: str = "import"
    status: str = "final"

    def to_dict(self) -> dict:
        """JSON-ready representation; datetimes become ISO 8601 strings."""
        data = asdict(self)
        data["source_metadata"]["imported_at"] = self.source_metadata.imported_at.isoformat()
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data


def _ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    return numerator / denominator * scale if denominator else 0.0


def build_financial_period(
    tenant_id: str,
    period_key: str,
    totals: PeriodTotals,
    program: str,
    imported_by: str,
    now: Optional[datetime] = None,
) -> FinancialPeriod:
    """Derive a full financial-period record from six-bucket totals."""
    now = now or datetime.now(timezone.utc)

    gross_profit = totals.revenue - totals.cost_of_goods_sold
    operating_income = gross_profit - totals.operating_expenses
    net_income = operating_income

    return FinancialPeriod(
        tenant_id=tenant_id,
        period=period_key,
        fiscal_year=int(period_key.split("-")[0]),
        income_statement=IncomeStatement(
            revenue=totals.revenue,
            cost_of_goods_sold=totals.cost_of_goods_sold,
            gross_profit=gross_profit,
            operating_expenses=totals.operating_expenses,
            operating_income=operating_income,
            net_income=net_income,
        ),
        balance_sheet=BalanceSheet(
            total_current_assets=totals.assets * 0.5,
            total_non_current_assets=totals.assets * 0.5,
            total_assets=totals.assets,
            total_current_liabilities=totals.liabilities * 0.5,
            total_non_current_liabilities=totals.liabilities * 0.5,
            total_liabilities=totals.liabilities,
            retained_earnings=totals.equity,
            total_equity=totals.equity,
        ),
        cash_flow=CashFlow(),
        kpis=Kpis(
            gross_margin=_ratio(gross_profit, totals.revenue, 100),
            operating_margin=_ratio(operating_income, totals.revenue, 100),
            net_margin=_ratio(net_income, totals.revenue, 100),
            ebitda=operating_income,
            ebitda_margin=_ratio(operating_income, totals.revenue, 100),
            current_ratio=_ratio(totals.assets, totals.liabilities),
            quick_ratio=_ratio(totals.assets, totals.liabilities),
            debt_to_equity=_ratio(totals.liabilities, totals.equity),
            return_on_assets=_ratio(net_income, totals.assets, 100),
            return_on_equity=_ratio(net_income, totals.equity, 100),
            working_capital=totals.assets - totals.liabilities,
        ),
        source_metadata=SourceMetadata(
            imported_at=now,
            imported_by=imported_by,
            erp_connection_id=f"sie4-import-{program}",
        ),
        created_at=now,
        updated_at=now,
        created_by=imported_by,
    )


# Stores
@runtime_checkable
class FinancialStore(Protocol):
    """Protocol for financial-period persistence backends."""

    async def add_period(self, tenant_id: str, record: FinancialPeriod) -> str:
        """Store one period record and return its id."""
        ...


class InMemoryFinancialStore:
    """Keeps records in a dict per tenant. Useful for previews and tests."""

    def __init__(self):
        self.records: Dict[str, List[Tuple[str, FinancialPeriod]]] = {}

    async def add_period(self, tenant_id: str, record: FinancialPeriod) -> str:
        tenant_records = self.records.setdefault(tenant_id, [])
        record_id = f"{tenant_id}-{len(tenant_records) + 1}"
        tenant_records.append((record_id, record))
        return record_id


class JsonlFinancialStore:
    """File-based store writing one JSON line per period record.

    Writes are plain blocking appends done by :meth:`write_period`; the async
    :meth:`add_period` calls it directly on the event loop thread.
    """

    def __init__(self, base_path: Union[str, Path]):
        self.base_path = Path(base_path)

    def _tenant_file(self, tenant_id: str) -> Path:
        return self.base_path / tenant_id / "financials.jsonl"

    async def add_period(self, tenant_id: str, record: FinancialPeriod) -> str:
        return self.write_period(tenant_id, record)

    def write_period(self, tenant_id: str, record: FinancialPeriod) -> str:
        """Append one period record to the tenant's file and return its id."""
        file_path = self._tenant_file(tenant_id)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        record_id = f"{record.period}-{record.created_at.strftime('%Y%m%d%H%M%S%f')}"
        log_entry = {"id": record_id, **record.to_dict()}

        with open(file_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(log_entry, ensure_ascii=False) + "\n")

        logger.debug(f"Wrote period {record.period} to {file_path}")
        return record_id

    def read_periods(self, tenant_id: str) -> List[dict]:
        file_path = self._tenant_file(tenant_id)
        if not file_path.exists():
            return []
        with open(file_path, encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]


# Import
@dataclass(frozen=True)
class ImportResult:
    """Outcome of an import. success is True only when no period failed."""
    success: bool
    company: CompanyInfo
    periods_imported: int
    errors: List[str] = field(default_factory=list)


async def import_sie4(
    tenant_id: str,
    data: SieData,
    imported_by: str,
    store: FinancialStore,
    year_index: int = 0,
) -> ImportResult:
    """
    Import aggregated SIE periods into a financial store.

    Args:
        tenant_id: Tenant that owns the records
        data: Parsed SIE data
        imported_by: Actor recorded on every record
        store: Destination store
        year_index: Fiscal year to import (default: 0, the current year)

    Returns:
        ImportResult with the number of periods written and one message per failure
    """
    errors: List[str] = []
    periods_imported = 0

    try:
        aggregated = aggregate_financials(data, year_index)
    except Exception as e:
        logger.error(f"Aggregation failed: {e}")
        aggregated = {}
        errors.append(f"Parse error: {e}")

    for period_key, totals in aggregated.items():
        try:
            record = build_financial_period(tenant_id, period_key, totals, data.program, imported_by)
            await store.add_period(tenant_id, record)
            periods_imported += 1
            logger.debug(f"Imported period {period_key} for tenant {tenant_id}")
        except Exception as e:
            logger.warning(f"Failed to import period {period_key}: {e}")
            errors.append(f"Period {period_key}: {e}")

    logger.info(
        f"Imported {periods_imported}/{len(aggregated)} period(s) for tenant {tenant_id}"
        f" ({len(errors)} error(s))"
    )
    return ImportResult(
        success=not errors,
        company=data.company,
        periods_imported=periods_imported,
        errors=errors,
    )


def validate_sie_filename(file_path: Union[str, os.PathLike]) -> None:
    """Reject files without a SIE extension (.se, .si or .sie)."""
    if not str(file_path).lower().endswith(SIE_FILE_EXTENSIONS):
        raise SieImportError("Invalid file format. Expected .se, .si, or .sie file.")


async def import_sie4_file(
    file_path: Union[str, os.PathLike],
    tenant_id: str,
    imported_by: str,
    store: FinancialStore,
    year_index: int = 0,
    encoding: str = DEFAULT_ENCODING,
    strict: bool = False,
) -> Tuple[SieData, ImportResult]:
    """
    Validate, parse and import a SIE file.

    Raises:
        SieImportError: If the file name is not a SIE file or no company could be read
        SieParseError: If strict and a numeric field cannot be read
        FileNotFoundError: If the file doesn't exist
    """
    validate_sie_filename(file_path)
    data = parse_sie4_file(file_path, encoding=encoding, strict=strict)

    if not data.company.name and not data.company.organization_number:
        raise SieImportError("Could not parse company information from SIE file")

    result = await import_sie4(tenant_id, data, imported_by, store, year_index=year_index)
    return data, result


__all__ = [
    "FinancialPeriod",
    "IncomeStatement",
    "BalanceSheet",
    "CashFlow",
    "Kpis",
    "SourceMetadata",
    "build_financial_period",
    "FinancialStore",
    "InMemoryFinancialStore",
    "JsonlFinancialStore",
    "ImportResult",
    "import_sie4",
    "import_sie4_file",
    "validate_sie_filename",
    "SieImportError",
]
