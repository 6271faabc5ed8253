"""
Taxis - Data Models
===================
Pydantic models shared by the tax engine and its collaborators.

These models serve as the contract between:
- Scenario store (owns inputs, persists scenarios)
- Tax engine (reads TaxInputs, produces TaxResult / DetailedBreakdown)
- API and Streamlit presentation
"""

import math
from datetime import datetime
from typing import List, Optional
import uuid

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator

from tax_tables import FilingStatus, coerce_infinity


def _legacy(name: str, legacy_name: str) -> AliasChoices:
    """Accept both the field name and the camelCase key older saved scenarios use."""
    return AliasChoices(name, legacy_name)


# =============================================================================
# ENGINE INPUT
# =============================================================================

class TaxInputs(BaseModel):
    """
    One scenario's income and deduction inputs.
    Read-only to the engine; the collaborator edits it by building a new copy.
    """

    # Amounts must be finite dollar figures
    model_config = ConfigDict(allow_inf_nan=False)

    tax_year: int = Field(default=2024, validation_alias=_legacy("tax_year", "taxYear"))
    filing_status: FilingStatus = Field(
        default=FilingStatus.SINGLE,
        validation_alias=_legacy("filing_status", "filingStatus")
    )

    # Ordinary income (wages, salary, business income)
    ordinary_income: float = Field(
        default=0.0, ge=0,
        validation_alias=_legacy("ordinary_income", "ordinaryIncome")
    )
    ira_401k_distributions: float = Field(
        default=0.0, ge=0,
        validation_alias=_legacy("ira_401k_distributions", "ira401kDistributions"),
        description="Taxable retirement account distributions (ordinary income)"
    )
    pension_income: float = Field(
        default=0.0, ge=0,
        validation_alias=_legacy("pension_income", "pensionIncome")
    )

    # Interest and short-term gains: ordinary rates, but investment income for NIIT
    ordinary_earnings: float = Field(
        default=0.0, ge=0,
        validation_alias=_legacy("ordinary_earnings", "ordinaryEarnings")
    )

    long_term_capital_gains: float = Field(
        default=0.0, ge=0,
        validation_alias=_legacy("long_term_capital_gains", "longTermCapitalGains")
    )
    capital_losses: float = Field(
        default=0.0, ge=0,
        validation_alias=_legacy("capital_losses", "capitalLosses")
    )

    seniors_65_plus: int = Field(
        default=0, ge=0,
        validation_alias=_legacy("seniors_65_plus", "seniors65Plus"),
        description="Filers aged 65+ (0-2 joint, 0-1 otherwise; checked by the scenario store)"
    )

    @field_validator("filing_status", mode="before")
    @classmethod
    def normalize_filing_status(cls, v):
        if isinstance(v, str) and not isinstance(v, FilingStatus):
            try:
                return FilingStatus(v)
            except ValueError:
                return v
        return v

    @property
    def ordinary_gross(self) -> float:
        """All income taxed at ordinary rates."""
        return (
            self.ordinary_income +
            self.ira_401k_distributions +
            self.pension_income +
            self.ordinary_earnings
        )


# =============================================================================
# ENGINE OUTPUT - SUMMARY
# =============================================================================

class TaxResult(BaseModel):
    """Summary totals for one TaxInputs. Never stored apart from its inputs."""

    standard_deduction: float
    senior_deduction: float
    total_deductions: float
    taxable_income: float
    ordinary_tax: float
    capital_gains_tax: float
    niit_tax: float
    total_tax: float
    effective_rate: float = Field(description="Percent of total income, unrounded")

    # Capital loss usage
    capital_loss_offset: float = 0.0
    remaining_capital_losses: float = 0.0


# =============================================================================
# ENGINE OUTPUT - DETAILED BREAKDOWN
# =============================================================================

class BracketLineItem(BaseModel):
    """Ordinary tax owed within one bracket. Labels are left to the presentation layer."""
    lower_bound: float
    upper_bound: float
    amount: float
    rate: float
    tax: float

    @field_validator("upper_bound", mode="before")
    @classmethod
    def allow_unbounded(cls, v):
        return coerce_infinity(v)

    @field_serializer("upper_bound", when_used="json")
    def serialize_unbounded(self, v: float):
        return None if math.isinf(v) else v


class CapitalGainsTier(BaseModel):
    rate: float
    amount: float
    tax: float


class IncomeBreakdown(BaseModel):
    total_standard_income: float
    long_term_capital_gains: float
    capital_losses: float
    capital_loss_offset: float
    remaining_capital_losses: float
    net_capital_gains: float
    total_income: float


class DeductionBreakdown(BaseModel):
    standard_deduction: float
    senior_deduction: float
    senior_deduction_per_person: float
    total_deductions: float


class OrdinaryTaxBreakdown(BaseModel):
    taxable_ordinary_income: float
    brackets: List[BracketLineItem] = Field(default_factory=list)
    total: float


class CapitalGainsBreakdown(BaseModel):
    taxable_capital_gains: float
    zero_bracket: CapitalGainsTier
    fifteen_bracket: CapitalGainsTier
    twenty_bracket: CapitalGainsTier
    total: float


class NiitBreakdown(BaseModel):
    magi: float
    threshold: float
    excess: float
    net_investment_income: float
    taxed_amount: float = Field(description="min(net investment income, excess), multiplied by the NIIT rate")
    rate: float
    niit_amount: float


class DetailedBreakdown(BaseModel):
    """Full itemized trace of a tax computation, paired 1:1 with its TaxInputs."""
    tax_year: int
    filing_status: FilingStatus
    income: IncomeBreakdown
    deductions: DeductionBreakdown
    ordinary_tax: OrdinaryTaxBreakdown
    capital_gains_tax: CapitalGainsBreakdown
    niit: NiitBreakdown
    summary: TaxResult


# =============================================================================
# SCENARIOS
# =============================================================================

class Scenario(BaseModel):
    """
    A named input set with its current computed result.
    Results are replaced whenever the inputs change; revision counts those changes.
    """

    scenario_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        validation_alias=_legacy("scenario_id", "id")
    )
    name: str = "New Scenario"
    inputs: TaxInputs = Field(default_factory=TaxInputs)
    results: Optional[TaxResult] = None
    detailed_breakdown: Optional[DetailedBreakdown] = None
    revision: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ScenarioComparison(BaseModel):
    """Difference between two scenarios (other minus base)."""
    base_scenario_id: str
    other_scenario_id: str
    base_total_tax: float
    other_total_tax: float
    tax_difference: float
    effective_rate_change: float
    ordinary_tax_difference: float
    capital_gains_tax_difference: float
    niit_difference: float
    summary: str
