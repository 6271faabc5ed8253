"""
Taxis - Streamlit App Tests
===========================
Runs the scenario planner script headlessly with Streamlit's AppTest.
"""

import os
import sys

import pytest
from streamlit.testing.v1 import AppTest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "backend"))

from settings import get_settings
from tax_tables import FilingStatus

APP_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "backend", "app.py")


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("TAXIS_SCENARIO_FILE", str(tmp_path / "scenarios.json"))
    get_settings.cache_clear()
    at = AppTest.from_file(APP_PATH, default_timeout=30)
    at.run()
    yield at
    get_settings.cache_clear()


class TestScenarioEditor:

    def test_sample_scenario_rendered(self, app):
        assert not app.exception
        store = app.session_state["store"]
        assert [s.name for s in store.list_scenarios()] == ["Sample Scenario"]

    def test_seniors_input_allows_two_before_status_change(self, app):
        scenario = app.session_state["store"].list_scenarios()[0]
        seniors = app.number_input(key=f"seniors_{scenario.scenario_id}")
        assert scenario.inputs.filing_status == FilingStatus.SINGLE
        assert seniors.max_value == 2

    def test_switch_to_joint_with_two_seniors_in_one_submit(self, app):
        scenario_id = app.session_state["store"].list_scenarios()[0].scenario_id
        statuses = list(FilingStatus)

        app.selectbox(key=f"status_{scenario_id}").select_index(
            statuses.index(FilingStatus.MARRIED_FILING_JOINTLY)
        )
        app.number_input(key=f"seniors_{scenario_id}").set_value(2)
        next(b for b in app.button if b.label == "Update").click().run()

        assert not app.exception
        updated = app.session_state["store"].get_scenario(scenario_id)
        assert updated.inputs.filing_status == FilingStatus.MARRIED_FILING_JOINTLY
        assert updated.inputs.seniors_65_plus == 2
        assert updated.results.senior_deduction == 3100

    def test_too_many_seniors_reports_error(self, app):
        scenario_id = app.session_state["store"].list_scenarios()[0].scenario_id

        app.number_input(key=f"seniors_{scenario_id}").set_value(2)
        next(b for b in app.button if b.label == "Update").click().run()

        assert len(app.error) == 1
        assert "seniors_65_plus" in app.error[0].value
        assert app.session_state["store"].get_scenario(scenario_id).inputs.seniors_65_plus == 0
