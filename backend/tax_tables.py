"""
Taxis - Tax Year Tables
=======================
Per-year, per-filing-status federal tax parameters.

These tables are the ONLY source of bracket edges, deductions and surtax
thresholds. The engine never hard-codes a year's constants; it receives a
TaxYearTable and reads everything from it.

Built-in years:
- 2024 (Rev. Proc. 2023-34)
- 2025 (Rev. Proc. 2024-40)

Additional or corrected years can be supplied as a JSON file through the
TAXIS_TAX_TABLES_PATH setting without touching the engine.
"""

import json
import logging
import math
import re
from enum import Enum
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)


class InvalidTaxConfigurationError(ValueError):
    """Raised for unknown years/statuses or tables that break bracket invariants."""


# =============================================================================
# FILING STATUS ENUM
# =============================================================================

class FilingStatus(str, Enum):
    SINGLE = "single"
    MARRIED_FILING_JOINTLY = "married_filing_jointly"
    MARRIED_FILING_SEPARATELY = "married_filing_separately"
    HEAD_OF_HOUSEHOLD = "head_of_household"
    QUALIFYING_WIDOW = "qualifying_widow"

    @classmethod
    def _missing_(cls, value):
        # Older saved scenarios use camelCase ("marriedFilingJointly")
        if isinstance(value, str):
            normalized = re.sub(r"(?<!^)(?=[A-Z])", "_", value.strip()).lower()
            normalized = normalized.replace(" ", "_").replace("-", "_")
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @property
    def is_joint(self) -> bool:
        return self in (FilingStatus.MARRIED_FILING_JOINTLY, FilingStatus.QUALIFYING_WIDOW)


# =============================================================================
# TABLE MODELS
# =============================================================================

def coerce_infinity(value):
    """Read None or "inf" as an unbounded upper limit."""
    if value is None:
        return math.inf
    if isinstance(value, str) and value.strip().lower() in ("inf", "infinity", "unlimited"):
        return math.inf
    return value


class TaxBracket(BaseModel):
    """One ordinary-income bracket: income in (lower_bound, upper_bound] is taxed at rate."""
    model_config = ConfigDict(frozen=True)

    lower_bound: float = Field(ge=0)
    upper_bound: float
    rate: float = Field(ge=0, le=1)

    @field_validator("upper_bound", mode="before")
    @classmethod
    def allow_unbounded(cls, v):
        return coerce_infinity(v)

    @field_serializer("upper_bound", when_used="json")
    def serialize_unbounded(self, v: float):
        return None if math.isinf(v) else v

    @model_validator(mode="after")
    def check_bounds(self):
        if self.upper_bound <= self.lower_bound:
            raise ValueError(
                f"bracket upper bound {self.upper_bound} must exceed lower bound {self.lower_bound}"
            )
        return self


class LtcgThresholds(BaseModel):
    """Taxable-income ceilings of the 0% and 15% long-term capital gains tiers."""
    model_config = ConfigDict(frozen=True)

    zero_rate_ceiling: float = Field(ge=0)
    fifteen_rate_ceiling: float = Field(ge=0)

    @model_validator(mode="after")
    def check_order(self):
        if self.zero_rate_ceiling > self.fifteen_rate_ceiling:
            raise ValueError("zero_rate_ceiling must not exceed fifteen_rate_ceiling")
        return self


class FilingStatusTable(BaseModel):
    """All parameters the engine needs for one filing status in one year."""
    model_config = ConfigDict(frozen=True)

    brackets: List[TaxBracket]
    standard_deduction: float = Field(ge=0)
    senior_deduction: float = Field(ge=0, description="Additional deduction per filer aged 65+")
    ltcg_thresholds: LtcgThresholds
    niit_threshold: float = Field(ge=0)
    capital_loss_ordinary_limit: float = Field(
        default=3000, ge=0,
        description="Yearly cap on net capital loss deductible against ordinary income"
    )

    @model_validator(mode="after")
    def check_brackets_partition(self):
        if not self.brackets:
            raise ValueError("at least one bracket is required")
        if self.brackets[0].lower_bound != 0:
            raise ValueError("first bracket must start at 0")
        if not math.isinf(self.brackets[-1].upper_bound):
            raise ValueError("last bracket must be unbounded")

        for prev, current in zip(self.brackets, self.brackets[1:]):
            if current.lower_bound != prev.upper_bound:
                raise ValueError(
                    f"brackets must be contiguous: {prev.upper_bound} != {current.lower_bound}"
                )
            if current.rate < prev.rate:
                raise ValueError("bracket rates must be non-decreasing")
        return self


class TaxYearTable(BaseModel):
    """
    Immutable parameter set for one tax year.

    Flat rates (LTCG tiers and NIIT) live here too so that a future year
    changing them needs only new data.
    """
    model_config = ConfigDict(frozen=True)

    tax_year: int
    filing_statuses: Dict[FilingStatus, FilingStatusTable]
    ltcg_fifteen_rate: float = 0.15
    ltcg_twenty_rate: float = 0.20
    niit_rate: float = 0.038

    def for_status(self, filing_status: Union[FilingStatus, str]) -> FilingStatusTable:
        """Look up one filing status; unknown statuses are a configuration error."""
        try:
            status = FilingStatus(filing_status)
        except ValueError:
            raise InvalidTaxConfigurationError(f"Unknown filing status: {filing_status!r}")

        if status not in self.filing_statuses:
            raise InvalidTaxConfigurationError(
                f"Tax year {self.tax_year} has no table for filing status {status.value!r}"
            )
        return self.filing_statuses[status]


# =============================================================================
# BUILT-IN REFERENCE DATA
# Brackets use the (upper_limit, marginal_rate) tuple format; the last tuple
# uses float('inf') for unlimited income.
# =============================================================================

def _brackets(limits: List[Tuple[float, float]]) -> List[TaxBracket]:
    brackets = []
    lower = 0.0
    for upper, rate in limits:
        brackets.append(TaxBracket(lower_bound=lower, upper_bound=upper, rate=rate))
        lower = upper
    return brackets


def _status_table(limits, standard, senior, zero_ceiling, fifteen_ceiling, niit, loss_limit=3000):
    return FilingStatusTable(
        brackets=_brackets(limits),
        standard_deduction=standard,
        senior_deduction=senior,
        ltcg_thresholds=LtcgThresholds(
            zero_rate_ceiling=zero_ceiling,
            fifteen_rate_ceiling=fifteen_ceiling,
        ),
        niit_threshold=niit,
        capital_loss_ordinary_limit=loss_limit,
    )


_BRACKETS_2024 = {
    FilingStatus.SINGLE: [
        (11600, 0.10),
        (47150, 0.12),
        (100525, 0.22),
        (191950, 0.24),
        (243725, 0.32),
        (609350, 0.35),
        (float('inf'), 0.37),
    ],
    FilingStatus.MARRIED_FILING_JOINTLY: [
        (23200, 0.10),
        (94300, 0.12),
        (201050, 0.22),
        (383900, 0.24),
        (487450, 0.32),
        (731200, 0.35),
        (float('inf'), 0.37),
    ],
    FilingStatus.MARRIED_FILING_SEPARATELY: [
        (11600, 0.10),
        (47150, 0.12),
        (100525, 0.22),
        (191950, 0.24),
        (243725, 0.32),
        (365600, 0.35),
        (float('inf'), 0.37),
    ],
    FilingStatus.HEAD_OF_HOUSEHOLD: [
        (16550, 0.10),
        (63100, 0.12),
        (100500, 0.22),
        (191950, 0.24),
        (243700, 0.32),
        (609350, 0.35),
        (float('inf'), 0.37),
    ],
}

_BRACKETS_2025 = {
    FilingStatus.SINGLE: [
        (11925, 0.10),
        (48475, 0.12),
        (103350, 0.22),
        (197300, 0.24),
        (250525, 0.32),
        (626350, 0.35),
        (float('inf'), 0.37),
    ],
    FilingStatus.MARRIED_FILING_JOINTLY: [
        (23850, 0.10),
        (96950, 0.12),
        (206700, 0.22),
        (394600, 0.24),
        (501050, 0.32),
        (751600, 0.35),
        (float('inf'), 0.37),
    ],
    FilingStatus.MARRIED_FILING_SEPARATELY: [
        (11925, 0.10),
        (48475, 0.12),
        (103350, 0.22),
        (197300, 0.24),
        (250525, 0.32),
        (375800, 0.35),
        (float('inf'), 0.37),
    ],
    FilingStatus.HEAD_OF_HOUSEHOLD: [
        (17000, 0.10),
        (64850, 0.12),
        (103350, 0.22),
        (197300, 0.24),
        (250500, 0.32),
        (626350, 0.35),
        (float('inf'), 0.37),
    ],
}


def _build_2024() -> TaxYearTable:
    b = _BRACKETS_2024
    return TaxYearTable(
        tax_year=2024,
        filing_statuses={
            FilingStatus.SINGLE: _status_table(
                b[FilingStatus.SINGLE], 14600, 1950, 47025, 518900, 200000),
            FilingStatus.MARRIED_FILING_JOINTLY: _status_table(
                b[FilingStatus.MARRIED_FILING_JOINTLY], 29200, 1550, 94050, 583750, 250000),
            FilingStatus.MARRIED_FILING_SEPARATELY: _status_table(
                b[FilingStatus.MARRIED_FILING_SEPARATELY], 14600, 1550, 47025, 291850, 125000,
                loss_limit=1500),
            FilingStatus.HEAD_OF_HOUSEHOLD: _status_table(
                b[FilingStatus.HEAD_OF_HOUSEHOLD], 21900, 1950, 63000, 551350, 200000),
            FilingStatus.QUALIFYING_WIDOW: _status_table(
                b[FilingStatus.MARRIED_FILING_JOINTLY], 29200, 1550, 94050, 583750, 250000),
        },
    )


def _build_2025() -> TaxYearTable:
    b = _BRACKETS_2025
    return TaxYearTable(
        tax_year=2025,
        filing_statuses={
            FilingStatus.SINGLE: _status_table(
                b[FilingStatus.SINGLE], 15000, 2000, 48350, 533400, 200000),
            FilingStatus.MARRIED_FILING_JOINTLY: _status_table(
                b[FilingStatus.MARRIED_FILING_JOINTLY], 30000, 1600, 96700, 600050, 250000),
            FilingStatus.MARRIED_FILING_SEPARATELY: _status_table(
                b[FilingStatus.MARRIED_FILING_SEPARATELY], 15000, 1600, 48350, 300000, 125000,
                loss_limit=1500),
            FilingStatus.HEAD_OF_HOUSEHOLD: _status_table(
                b[FilingStatus.HEAD_OF_HOUSEHOLD], 22500, 2000, 64750, 566700, 200000),
            FilingStatus.QUALIFYING_WIDOW: _status_table(
                b[FilingStatus.MARRIED_FILING_JOINTLY], 30000, 1600, 96700, 600050, 250000),
        },
    )


# Read-only; callers build their own dict to extend it
TAX_YEAR_TABLES: Mapping[int, TaxYearTable] = MappingProxyType({
    2024: _build_2024(),
    2025: _build_2025(),
})


# =============================================================================
# LOADING AND LOOKUP
# =============================================================================

def load_tax_year_tables(path: Union[str, Path]) -> Dict[int, TaxYearTable]:
    """
    Load tax year tables from a JSON file.

    The file holds either a single table object or a list of them, each shaped
    like ``TaxYearTable.model_dump(mode="json")``. Upper bounds may be written
    as ``"inf"`` or ``null`` for the open-ended top bracket.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidTaxConfigurationError(f"Cannot read tax tables from {path}: {e}")

    records = raw if isinstance(raw, list) else [raw]
    tables: Dict[int, TaxYearTable] = {}
    for record in records:
        try:
            table = TaxYearTable.model_validate(record)
        except ValidationError as e:
            raise InvalidTaxConfigurationError(f"Invalid tax table in {path}: {e}")
        tables[table.tax_year] = table

    logger.info(f"Loaded tax tables for years {sorted(tables)} from {path}")
    return tables


@lru_cache(maxsize=1)
def default_tax_year_tables() -> Mapping[int, TaxYearTable]:
    """Built-in tables, extended by TAXIS_TAX_TABLES_PATH when set. Loaded once."""
    from settings import get_settings

    tables = dict(TAX_YEAR_TABLES)
    override_path = get_settings().tax_tables_path
    if override_path:
        tables.update(load_tax_year_tables(override_path))
    return MappingProxyType(tables)


def supported_tax_years(tables: Optional[Mapping[int, TaxYearTable]] = None) -> List[int]:
    tables = default_tax_year_tables() if tables is None else tables
    return sorted(tables)


def get_tax_year_table(
    tax_year: int,
    tables: Optional[Mapping[int, TaxYearTable]] = None
) -> TaxYearTable:
    """Return the table for a year. Unknown years fail loudly; there is no fallback year."""
    tables = default_tax_year_tables() if tables is None else tables
    try:
        return tables[int(tax_year)]
    except (KeyError, TypeError, ValueError):
        raise InvalidTaxConfigurationError(
            f"Unsupported tax year: {tax_year!r} (supported: {sorted(tables)})"
        )


def get_tax_bracket_info(table: TaxYearTable, filing_status: Union[FilingStatus, str]) -> str:
    """
    Return a formatted listing of the ordinary brackets for one filing status.
    Used by the reference endpoint and the UI help text.
    """
    status_table = table.for_status(filing_status)
    status = FilingStatus(filing_status)
    lines = [f"{table.tax_year} Federal Tax Brackets for {status.value.replace('_', ' ').title()}:"]

    for bracket in status_table.brackets:
        if math.isinf(bracket.upper_bound):
            lines.append(f"  Over ${bracket.lower_bound:,.0f}: {bracket.rate*100:.0f}%")
        else:
            lines.append(
                f"  ${bracket.lower_bound:,.0f} to ${bracket.upper_bound:,.0f}: {bracket.rate*100:.0f}%"
            )

    return "\n".join(lines)
