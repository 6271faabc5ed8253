"""
Taxis - Streamlit Scenario Planner
==================================
Side-by-side federal tax scenarios.

Flow:
1. Create / duplicate scenarios
2. Edit each scenario's inputs (every edit recomputes its result)
3. Compare totals side by side and drill into the detailed breakdown
"""

import sys
import os

# Path setup for Streamlit Cloud
_current_file = os.path.abspath(__file__)
_backend_dir = os.path.dirname(_current_file)
if _backend_dir not in sys.path:
    sys.path.insert(0, _backend_dir)

import logging

import streamlit as st

from models import Scenario
from report import bracket_breakdown_frame, capital_gains_frame, scenario_summary_frame
from scenario_store import ScenarioStore, ScenarioValidationError
from settings import get_settings
from tax_tables import FilingStatus, get_tax_bracket_info, get_tax_year_table, supported_tax_years

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


# =============================================================================
# PAGE CONFIGURATION
# =============================================================================

st.set_page_config(
    page_title="Taxis - Tax Scenario Planner",
    layout="wide",
)


# =============================================================================
# SESSION STATE
# =============================================================================

def get_store() -> ScenarioStore:
    if "store" not in st.session_state:
        store = ScenarioStore(get_settings().scenario_file)
        if not store.list_scenarios():
            store.create_scenario("Sample Scenario")
        st.session_state.store = store
    return st.session_state.store


def money(value: float) -> str:
    return f"${value:,.2f}"


# =============================================================================
# SCENARIO EDITOR
# =============================================================================

def render_scenario_editor(store: ScenarioStore, scenario: Scenario):
    inputs = scenario.inputs
    key = scenario.scenario_id
    statuses = list(FilingStatus)
    years = supported_tax_years()

    with st.form(f"form_{key}"):
        name = st.text_input("Name", value=scenario.name, key=f"name_{key}")
        col1, col2 = st.columns(2)
        with col1:
            tax_year = st.selectbox(
                "Tax Year", years,
                index=years.index(inputs.tax_year) if inputs.tax_year in years else 0,
                key=f"year_{key}"
            )
        with col2:
            filing_status = st.selectbox(
                "Filing Status", statuses,
                index=statuses.index(inputs.filing_status),
                format_func=lambda s: s.value.replace("_", " ").title(),
                key=f"status_{key}"
            )

        ordinary_income = st.number_input(
            "Ordinary Income", min_value=0.0, value=float(inputs.ordinary_income),
            step=1000.0, key=f"oi_{key}")
        ira_401k = st.number_input(
            "IRA / 401(k) Distributions", min_value=0.0,
            value=float(inputs.ira_401k_distributions), step=1000.0, key=f"ira_{key}")
        pension = st.number_input(
            "Pension Income", min_value=0.0, value=float(inputs.pension_income),
            step=1000.0, key=f"pension_{key}")
        earnings = st.number_input(
            "Interest / Short-Term Gains", min_value=0.0,
            value=float(inputs.ordinary_earnings), step=1000.0, key=f"oe_{key}")
        ltcg = st.number_input(
            "Long-Term Capital Gains", min_value=0.0,
            value=float(inputs.long_term_capital_gains), step=1000.0, key=f"ltcg_{key}")
        losses = st.number_input(
            "Capital Losses", min_value=0.0, value=float(inputs.capital_losses),
            step=1000.0, key=f"loss_{key}")
        seniors = st.number_input(
            "Filers Aged 65+", min_value=0, max_value=2,
            value=inputs.seniors_65_plus,
            help="Up to 2 when filing jointly, otherwise 1",
            step=1, key=f"seniors_{key}")

        if st.form_submit_button("Update"):
            try:
                store.update_scenario(key, name=name, inputs={
                    "tax_year": tax_year,
                    "filing_status": filing_status,
                    "ordinary_income": ordinary_income,
                    "ira_401k_distributions": ira_401k,
                    "pension_income": pension,
                    "ordinary_earnings": earnings,
                    "long_term_capital_gains": ltcg,
                    "capital_losses": losses,
                    "seniors_65_plus": int(seniors),
                })
                st.rerun()
            except ScenarioValidationError as e:
                st.error(str(e))

    col1, col2 = st.columns(2)
    with col1:
        if st.button("Duplicate", key=f"dup_{key}"):
            store.duplicate_scenario(key)
            st.rerun()
    with col2:
        if st.button("Delete", key=f"del_{key}"):
            store.delete_scenario(key)
            st.rerun()


def render_breakdown(scenario: Scenario):
    breakdown = scenario.detailed_breakdown
    results = scenario.results
    if breakdown is None or results is None:
        return

    st.metric("Total Tax", money(results.total_tax), f"{results.effective_rate:.2f}% effective")

    with st.expander("Detailed breakdown"):
        deductions = breakdown.deductions
        st.markdown(
            f"**Deductions:** standard {money(deductions.standard_deduction)} + "
            f"senior {money(deductions.senior_deduction)} = {money(deductions.total_deductions)}"
        )

        st.markdown(
            f"**Ordinary tax** on {money(breakdown.ordinary_tax.taxable_ordinary_income)}"
        )
        st.dataframe(bracket_breakdown_frame(breakdown), hide_index=True)

        st.markdown(
            f"**Capital gains tax** on {money(breakdown.capital_gains_tax.taxable_capital_gains)}"
        )
        st.dataframe(capital_gains_frame(breakdown), hide_index=True)

        niit = breakdown.niit
        st.markdown(
            f"**NIIT:** MAGI {money(niit.magi)} - threshold {money(niit.threshold)} = "
            f"excess {money(niit.excess)}; NII {money(niit.net_investment_income)}; "
            f"{niit.rate * 100:.1f}% x {money(niit.taxed_amount)} = {money(niit.niit_amount)}"
        )

        if breakdown.income.remaining_capital_losses > 0:
            st.caption(
                f"Unused capital losses: {money(breakdown.income.remaining_capital_losses)}"
            )

        table = get_tax_year_table(breakdown.tax_year)
        st.text(get_tax_bracket_info(table, breakdown.filing_status))


# =============================================================================
# MAIN PAGE
# =============================================================================

def main():
    st.title("Taxis")
    st.caption("Simplified federal income tax across side-by-side scenarios")

    store = get_store()

    if st.button("New Scenario"):
        store.create_scenario()
        st.rerun()

    scenarios = store.list_scenarios()
    if not scenarios:
        st.info("No scenarios yet.")
        return

    summary = scenario_summary_frame(scenarios)
    st.subheader("Comparison")
    st.dataframe(summary.round(2))

    csv = summary.to_csv().encode("utf-8")
    st.download_button("Download CSV", csv, "taxis_scenarios.csv", "text/csv")

    columns = st.columns(min(len(scenarios), 3))
    for index, scenario in enumerate(scenarios):
        with columns[index % len(columns)]:
            st.subheader(scenario.name)
            render_breakdown(scenario)
            render_scenario_editor(store, scenario)


main()
