"""
Taxis - Tax Engine
==================
Core federal tax computation.

Pure functions of (TaxYearTable, TaxInputs). No I/O, no shared state, no
notifications: the scenario store calls in here and keeps the result.

Computation order:
1. Deductions (standard + per-senior add-on)
2. Capital loss allocation
3. Deductions consumed by ordinary income first, leftover reduces LTCG
4. Ordinary tax through the progressive brackets
5. LTCG stacked on top of ordinary taxable income (0/15/20%)
6. Net Investment Income Tax (3.8%)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Mapping, Optional, Sequence, Tuple, Union

from tax_tables import (
    FilingStatusTable,
    TaxBracket,
    TaxYearTable,
    get_tax_year_table,
)
from models import (
    BracketLineItem,
    CapitalGainsBreakdown,
    CapitalGainsTier,
    DeductionBreakdown,
    DetailedBreakdown,
    IncomeBreakdown,
    NiitBreakdown,
    OrdinaryTaxBreakdown,
    TaxInputs,
    TaxResult,
)

logger = logging.getLogger(__name__)


class CapitalLossPolicy(str, Enum):
    """
    How capital losses are applied.

    NET_AGAINST_GAINS: losses offset long-term gains dollar-for-dollar with no
        cap and no carryforward. Losses beyond the gains still reduce total
        income (used for the effective rate) but not ordinary taxable income.
    LIMITED_WITH_CARRYFORWARD: losses absorb gains first, then up to the filing
        status' yearly limit of ordinary income; the rest carries forward.
    """
    NET_AGAINST_GAINS = "net_against_gains"
    LIMITED_WITH_CARRYFORWARD = "limited_with_carryforward"


# =============================================================================
# BRACKET TAX PRIMITIVE
# =============================================================================

def bracket_tax(amount: float, brackets: Sequence[TaxBracket]) -> float:
    """
    Tax an amount through progressive brackets.

    An amount sitting exactly on a boundary is taxed entirely in the lower
    bracket: iteration stops as soon as amount <= bracket.lower_bound.
    """
    tax = 0.0
    for bracket in brackets:
        if amount <= bracket.lower_bound:
            break
        tax += bracket.rate * (min(amount, bracket.upper_bound) - bracket.lower_bound)
    return tax


def bracket_tax_detailed(
    amount: float,
    brackets: Sequence[TaxBracket]
) -> Tuple[float, List[BracketLineItem]]:
    """
    Same as bracket_tax, also returning one line item per bracket that taxed a
    nonzero amount, in ascending bracket order.
    """
    tax = 0.0
    rows: List[BracketLineItem] = []
    for bracket in brackets:
        if amount <= bracket.lower_bound:
            break
        taxed = min(amount, bracket.upper_bound) - bracket.lower_bound
        bracket_amount = bracket.rate * taxed
        tax += bracket_amount
        if taxed > 0:
            rows.append(BracketLineItem(
                lower_bound=bracket.lower_bound,
                upper_bound=bracket.upper_bound,
                amount=taxed,
                rate=bracket.rate,
                tax=bracket_amount,
            ))
    return tax, rows


# =============================================================================
# INTERMEDIATE STEPS
# =============================================================================

@dataclass(frozen=True)
class CapitalLossAllocation:
    ordinary_gross: float
    net_capital_gains: float
    total_income: float
    capital_loss_offset: float
    remaining_capital_losses: float


def _allocate_capital_losses(
    inputs: TaxInputs,
    status_table: FilingStatusTable,
    policy: CapitalLossPolicy
) -> CapitalLossAllocation:
    gains = inputs.long_term_capital_gains
    losses = inputs.capital_losses
    raw_ordinary_gross = inputs.ordinary_gross
    gain_offset = max(0, min(losses, gains))

    if policy is CapitalLossPolicy.NET_AGAINST_GAINS:
        return CapitalLossAllocation(
            ordinary_gross=raw_ordinary_gross,
            net_capital_gains=max(0, gains - losses),
            total_income=raw_ordinary_gross + gains - losses,
            capital_loss_offset=gain_offset,
            remaining_capital_losses=max(0, losses - gain_offset),
        )

    excess_losses = max(0, losses - gain_offset)
    ordinary_offset = min(
        excess_losses,
        status_table.capital_loss_ordinary_limit,
        max(0, raw_ordinary_gross),
    )
    ordinary_gross = raw_ordinary_gross - ordinary_offset
    net_capital_gains = max(0, gains - gain_offset)
    return CapitalLossAllocation(
        ordinary_gross=ordinary_gross,
        net_capital_gains=net_capital_gains,
        total_income=ordinary_gross + net_capital_gains,
        capital_loss_offset=gain_offset + ordinary_offset,
        remaining_capital_losses=excess_losses - ordinary_offset,
    )


def _stack_capital_gains(
    ordinary_taxable: float,
    ltcg_taxable: float,
    status_table: FilingStatusTable
) -> Tuple[float, float, float]:
    """
    Split taxable LTCG into 0/15/20% portions, stacked on top of ordinary taxable income.
    Ordinary income is subtracted before each ceiling comparison.
    """
    thresholds = status_table.ltcg_thresholds
    remaining = ltcg_taxable

    zero_portion = min(remaining, max(0, thresholds.zero_rate_ceiling - ordinary_taxable))
    remaining -= zero_portion

    fifteen_portion = min(
        remaining,
        max(0, thresholds.fifteen_rate_ceiling - ordinary_taxable - zero_portion)
    )
    remaining -= fifteen_portion

    twenty_portion = max(0, remaining)
    return zero_portion, fifteen_portion, twenty_portion


# =============================================================================
# ENTRY POINTS
# =============================================================================

def compute_detailed(
    table: TaxYearTable,
    inputs: TaxInputs,
    loss_policy: Union[CapitalLossPolicy, str] = CapitalLossPolicy.NET_AGAINST_GAINS
) -> DetailedBreakdown:
    """
    Compute the full itemized tax trace for one set of inputs.

    Raises InvalidTaxConfigurationError if the table has no entry for the
    filing status. Either a complete breakdown is returned or nothing is.
    """
    policy = CapitalLossPolicy(loss_policy)
    status_table = table.for_status(inputs.filing_status)

    # Step 1: Deductions
    standard_deduction = status_table.standard_deduction
    senior_per_person = status_table.senior_deduction
    senior_deduction = inputs.seniors_65_plus * senior_per_person
    total_deductions = standard_deduction + senior_deduction

    # Step 2: Gross components and capital losses
    losses = _allocate_capital_losses(inputs, status_table, policy)
    ordinary_gross = losses.ordinary_gross
    net_capital_gains = losses.net_capital_gains
    total_income = losses.total_income
    taxable_income = max(0, total_income - total_deductions)

    # Step 3: Deductions go to ordinary income first, leftover to LTCG
    ordinary_taxable = max(0, ordinary_gross - total_deductions)
    leftover_deduction = max(0, total_deductions - ordinary_gross)
    ltcg_taxable = max(0, net_capital_gains - leftover_deduction)

    # Step 4: Ordinary tax
    ordinary_tax, bracket_rows = bracket_tax_detailed(ordinary_taxable, status_table.brackets)

    # Step 5: LTCG stacking
    zero_portion, fifteen_portion, twenty_portion = _stack_capital_gains(
        ordinary_taxable, ltcg_taxable, status_table
    )
    fifteen_tax = fifteen_portion * table.ltcg_fifteen_rate
    twenty_tax = twenty_portion * table.ltcg_twenty_rate
    capital_gains_tax = fifteen_tax + twenty_tax

    # Step 6: NIIT (MAGI approximated as ordinary gross + net gains)
    magi = ordinary_gross + net_capital_gains
    net_investment_income = max(0, inputs.ordinary_earnings) + net_capital_gains
    niit_excess = max(0, magi - status_table.niit_threshold)
    niit_taxed_amount = min(net_investment_income, niit_excess)
    niit_tax = table.niit_rate * niit_taxed_amount

    total_tax = ordinary_tax + capital_gains_tax + niit_tax
    effective_rate = (total_tax / total_income) * 100 if total_income > 0 else 0.0

    summary = TaxResult(
        standard_deduction=standard_deduction,
        senior_deduction=senior_deduction,
        total_deductions=total_deductions,
        taxable_income=taxable_income,
        ordinary_tax=ordinary_tax,
        capital_gains_tax=capital_gains_tax,
        niit_tax=niit_tax,
        total_tax=total_tax,
        effective_rate=effective_rate,
        capital_loss_offset=losses.capital_loss_offset,
        remaining_capital_losses=losses.remaining_capital_losses,
    )

    logger.debug(
        f"{table.tax_year}/{inputs.filing_status.value}: taxable={taxable_income:.2f} "
        f"total_tax={total_tax:.2f}"
    )

    return DetailedBreakdown(
        tax_year=table.tax_year,
        filing_status=inputs.filing_status,
        income=IncomeBreakdown(
            total_standard_income=ordinary_gross,
            long_term_capital_gains=inputs.long_term_capital_gains,
            capital_losses=inputs.capital_losses,
            capital_loss_offset=losses.capital_loss_offset,
            remaining_capital_losses=losses.remaining_capital_losses,
            net_capital_gains=net_capital_gains,
            total_income=total_income,
        ),
        deductions=DeductionBreakdown(
            standard_deduction=standard_deduction,
            senior_deduction=senior_deduction,
            senior_deduction_per_person=senior_per_person,
            total_deductions=total_deductions,
        ),
        ordinary_tax=OrdinaryTaxBreakdown(
            taxable_ordinary_income=ordinary_taxable,
            brackets=bracket_rows,
            total=ordinary_tax,
        ),
        capital_gains_tax=CapitalGainsBreakdown(
            taxable_capital_gains=ltcg_taxable,
            zero_bracket=CapitalGainsTier(rate=0.0, amount=zero_portion, tax=0.0),
            fifteen_bracket=CapitalGainsTier(
                rate=table.ltcg_fifteen_rate, amount=fifteen_portion, tax=fifteen_tax),
            twenty_bracket=CapitalGainsTier(
                rate=table.ltcg_twenty_rate, amount=twenty_portion, tax=twenty_tax),
            total=capital_gains_tax,
        ),
        niit=NiitBreakdown(
            magi=magi,
            threshold=status_table.niit_threshold,
            excess=niit_excess,
            net_investment_income=net_investment_income,
            taxed_amount=niit_taxed_amount,
            rate=table.niit_rate,
            niit_amount=niit_tax,
        ),
        summary=summary,
    )


def compute_summary(
    table: TaxYearTable,
    inputs: TaxInputs,
    loss_policy: Union[CapitalLossPolicy, str] = CapitalLossPolicy.NET_AGAINST_GAINS
) -> TaxResult:
    """Summary totals; identical to compute_detailed(...).summary by construction."""
    return compute_detailed(table, inputs, loss_policy).summary


# =============================================================================
# CALCULATOR
# =============================================================================

class TaxCalculator:
    """
    Resolves the tax year table from the inputs and runs the engine.

    Example:
        calculator = TaxCalculator()
        result = calculator.calculate(TaxInputs(ordinary_income=60000))
    """

    def __init__(
        self,
        tables: Optional[Mapping[int, TaxYearTable]] = None,
        loss_policy: Union[CapitalLossPolicy, str] = CapitalLossPolicy.NET_AGAINST_GAINS
    ):
        self.tables = tables
        self.loss_policy = CapitalLossPolicy(loss_policy)

    def table_for(self, inputs: TaxInputs) -> TaxYearTable:
        return get_tax_year_table(inputs.tax_year, self.tables)

    def calculate(self, inputs: TaxInputs) -> TaxResult:
        return compute_summary(self.table_for(inputs), inputs, self.loss_policy)

    def calculate_detailed(self, inputs: TaxInputs) -> DetailedBreakdown:
        return compute_detailed(self.table_for(inputs), inputs, self.loss_policy)

    def calculate_both(self, inputs: TaxInputs) -> Tuple[TaxResult, DetailedBreakdown]:
        """Result and breakdown from a single computation, for storing as a pair."""
        detailed = self.calculate_detailed(inputs)
        return detailed.summary, detailed

    def marginal_rate(self, inputs: TaxInputs) -> float:
        """Ordinary marginal rate at the scenario's taxable ordinary income."""
        detailed = self.calculate_detailed(inputs)
        brackets = self.table_for(inputs).for_status(inputs.filing_status).brackets
        income = detailed.ordinary_tax.taxable_ordinary_income

        for bracket in brackets:
            if income <= bracket.upper_bound:
                return bracket.rate

        return brackets[-1].rate
