"""
Taxis - Report Tables
=====================
pandas views of engine output for the Streamlit page and CSV export.
Formatting (labels, currency) happens here, never in the engine.
"""

import math
from typing import List

import pandas as pd

from models import DetailedBreakdown, Scenario


def format_bracket_range(lower_bound: float, upper_bound: float) -> str:
    """'$11,600 - $47,150', or '$609,350 - ∞' for the open-ended top bracket."""
    upper = "∞" if math.isinf(upper_bound) else f"${upper_bound:,.0f}"
    return f"${lower_bound:,.0f} - {upper}"


def bracket_breakdown_frame(breakdown: DetailedBreakdown) -> pd.DataFrame:
    """One row per ordinary bracket that taxed income."""
    rows = [
        {
            "Range": format_bracket_range(item.lower_bound, item.upper_bound),
            "Amount": item.amount,
            "Rate": item.rate,
            "Tax": item.tax,
        }
        for item in breakdown.ordinary_tax.brackets
    ]
    return pd.DataFrame(rows, columns=["Range", "Amount", "Rate", "Tax"])


def capital_gains_frame(breakdown: DetailedBreakdown) -> pd.DataFrame:
    """The 0/15/20% tiers, always all three rows."""
    gains = breakdown.capital_gains_tax
    tiers = [gains.zero_bracket, gains.fifteen_bracket, gains.twenty_bracket]
    return pd.DataFrame(
        [{"Rate": tier.rate, "Amount": tier.amount, "Tax": tier.tax} for tier in tiers],
        columns=["Rate", "Amount", "Tax"],
    )


SUMMARY_ROWS = [
    ("Total Deductions", "total_deductions"),
    ("Taxable Income", "taxable_income"),
    ("Ordinary Tax", "ordinary_tax"),
    ("Capital Gains Tax", "capital_gains_tax"),
    ("NIIT", "niit_tax"),
    ("Total Tax", "total_tax"),
    ("Effective Rate (%)", "effective_rate"),
]


def scenario_summary_frame(scenarios: List[Scenario]) -> pd.DataFrame:
    """Side-by-side summary: one column per scenario, one row per total."""
    data = {}
    for scenario in scenarios:
        if scenario.results is None:
            continue
        label = scenario.name
        if label in data:
            label = f"{scenario.name} ({scenario.scenario_id[:8]})"
        data[label] = [getattr(scenario.results, field) for _, field in SUMMARY_ROWS]

    return pd.DataFrame(data, index=[title for title, _ in SUMMARY_ROWS])
