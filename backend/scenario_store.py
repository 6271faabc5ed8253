"""
Taxis - Scenario Store
======================
Owns the list of named tax scenarios, keeps each one's result in step with
its inputs, and persists the list to a JSON file.

Every change produces a new Scenario record that replaces the old one. The
recompute-and-replace happens under the store lock, so the latest input edit
always wins and a stale result is never written back.

Listeners registered with subscribe() are told about every change; the tax
engine itself knows nothing about them.
"""

import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from models import Scenario, ScenarioComparison, TaxInputs
from settings import get_settings
from tax_engine import TaxCalculator

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2


class ScenarioNotFoundError(KeyError):
    """No scenario with the requested id."""


class ScenarioValidationError(ValueError):
    """Inputs the store refuses to hand to the engine."""


class ScenarioEventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    LOADED = "loaded"


@dataclass(frozen=True)
class ScenarioEvent:
    kind: ScenarioEventKind
    scenario_id: Optional[str] = None


ScenarioListener = Callable[[ScenarioEvent], None]


# =============================================================================
# INPUT HELPERS
# =============================================================================

def _input_key_map() -> Dict[str, str]:
    """Map every accepted input key (field name or legacy camelCase) to its field name."""
    key_map = {}
    for name, field in TaxInputs.model_fields.items():
        key_map[name] = name
        alias = field.validation_alias
        for choice in getattr(alias, "choices", []):
            if isinstance(choice, str):
                key_map[choice] = name
    return key_map


_INPUT_KEYS = _input_key_map()


def normalize_input_updates(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Rename legacy keys to field names; unknown keys are rejected."""
    normalized = {}
    for key, value in updates.items():
        if key not in _INPUT_KEYS:
            raise ScenarioValidationError(f"Unknown input field: {key!r}")
        normalized[_INPUT_KEYS[key]] = value
    return normalized


def validate_senior_count(inputs: TaxInputs) -> None:
    """Joint returns may claim two filers aged 65+, every other status one."""
    limit = 2 if inputs.filing_status.is_joint else 1
    if inputs.seniors_65_plus > limit:
        raise ScenarioValidationError(
            f"seniors_65_plus must be between 0 and {limit} "
            f"for filing status {inputs.filing_status.value!r}"
        )


def _build_inputs(base: Optional[TaxInputs], updates: Union[TaxInputs, Dict[str, Any], None]) -> TaxInputs:
    data = base.model_dump() if base is not None else {}
    if isinstance(updates, TaxInputs):
        data.update(updates.model_dump())
    elif updates:
        data.update(normalize_input_updates(updates))

    try:
        inputs = TaxInputs.model_validate(data)
    except ValidationError as e:
        raise ScenarioValidationError(str(e))

    validate_senior_count(inputs)
    return inputs


def migrate_scenario_record(record: Dict[str, Any]) -> Scenario:
    """
    Bring a persisted scenario up to the current schema.

    Missing tax year defaults to 2024 and missing income fields to zero.
    Stored results are dropped; the caller recomputes them. Records that are
    not objects, or that break the seniors bound, raise ScenarioValidationError.
    """
    if not isinstance(record, dict):
        raise ScenarioValidationError(f"Scenario record must be an object, got {type(record).__name__}")

    raw_inputs = record.get("inputs") or {}
    if not isinstance(raw_inputs, dict):
        raise ScenarioValidationError("Scenario inputs must be an object")

    inputs = {
        _INPUT_KEYS[key]: value
        for key, value in raw_inputs.items()
        if key in _INPUT_KEYS and value is not None
    }
    inputs.setdefault("tax_year", 2024)

    data = {
        key: value for key, value in record.items()
        if key not in ("inputs", "results", "detailed_breakdown", "detailedBreakdown")
    }
    data["inputs"] = TaxInputs.model_validate(inputs)
    validate_senior_count(data["inputs"])
    return Scenario.model_validate(data)


# =============================================================================
# STORE
# =============================================================================

class ScenarioStore:
    """
    Scenario list with JSON persistence.

    Example:
        store = ScenarioStore("scenarios.json")
        scenario = store.create_scenario("Baseline")
        store.update_scenario(scenario.scenario_id, inputs={"ordinary_income": 60000})
    """

    def __init__(
        self,
        path: Union[str, Path, None] = None,
        calculator: Optional[TaxCalculator] = None
    ):
        self.path = Path(path) if path else None
        self.calculator = calculator or TaxCalculator(
            loss_policy=get_settings().capital_loss_policy
        )
        self._scenarios: List[Scenario] = []
        self._unreadable_records: List[Any] = []
        self._listeners: List[ScenarioListener] = []
        self._lock = threading.RLock()

        if self.path is not None:
            self._load()

    # --- change notification ---

    def subscribe(self, listener: ScenarioListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: ScenarioEvent):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Scenario listener failed on {event.kind.value}: {e}")

    # --- persistence ---

    def _load(self):
        if not self.path.exists():
            logger.info(f"No scenario file at {self.path}, starting empty")
            return

        try:
            with self.path.open("r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load scenarios from {self.path}: {e}")
            return

        # Schema v1 was a bare list of scenario records
        records = raw.get("scenarios", []) if isinstance(raw, dict) else raw
        if not isinstance(records, list):
            logger.error(f"Failed to load scenarios from {self.path}: expected a list of scenario records")
            return

        scenarios = []
        unreadable = []
        for record in records:
            try:
                scenario = migrate_scenario_record(record)
                scenarios.append(self._recompute(scenario))
            except (ValidationError, ValueError) as e:
                # Kept verbatim so a later save does not drop it from the file
                logger.warning(f"Keeping scenario record that cannot be loaded: {e}")
                unreadable.append(record)

        with self._lock:
            self._scenarios = scenarios
            self._unreadable_records = unreadable
            self._save()

        logger.info(
            f"Loaded {len(scenarios)} scenarios from {self.path}"
            f" ({len(unreadable)} kept unread)"
        )
        self._notify(ScenarioEvent(ScenarioEventKind.LOADED))

    def _save(self):
        if self.path is None:
            return

        payload = {
            "schema_version": SCHEMA_VERSION,
            "scenarios": [s.model_dump(mode="json") for s in self._scenarios] + self._unreadable_records,
        }
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
        os.replace(tmp_path, self.path)

    # --- helpers ---

    def _recompute(self, scenario: Scenario, **updates) -> Scenario:
        inputs = updates.get("inputs", scenario.inputs)
        results, detailed = self.calculator.calculate_both(inputs)
        updates.update(results=results, detailed_breakdown=detailed)
        return scenario.model_copy(update=updates)

    def _find(self, scenario_id: str) -> Tuple[int, Scenario]:
        for index, scenario in enumerate(self._scenarios):
            if scenario.scenario_id == scenario_id:
                return index, scenario
        raise ScenarioNotFoundError(scenario_id)

    # --- operations ---

    def create_scenario(
        self,
        name: str = "New Scenario",
        inputs: Union[TaxInputs, Dict[str, Any], None] = None
    ) -> Scenario:
        scenario_inputs = _build_inputs(None, inputs)
        scenario = self._recompute(Scenario(name=name, inputs=scenario_inputs))

        with self._lock:
            self._scenarios.append(scenario)
            self._save()

        logger.info(f"Created scenario {scenario.scenario_id} ({name})")
        self._notify(ScenarioEvent(ScenarioEventKind.CREATED, scenario.scenario_id))
        return scenario

    def duplicate_scenario(self, scenario_id: str) -> Scenario:
        with self._lock:
            _, original = self._find(scenario_id)
            now = datetime.utcnow()
            duplicate = original.model_copy(update={
                "scenario_id": str(uuid.uuid4()),
                "name": f"{original.name} (Copy)",
                "revision": 0,
                "created_at": now,
                "updated_at": now,
            })
            self._scenarios.append(duplicate)
            self._save()

        logger.info(f"Duplicated scenario {scenario_id} as {duplicate.scenario_id}")
        self._notify(ScenarioEvent(ScenarioEventKind.CREATED, duplicate.scenario_id))
        return duplicate

    def update_scenario(
        self,
        scenario_id: str,
        name: Optional[str] = None,
        inputs: Union[TaxInputs, Dict[str, Any], None] = None,
        notify: bool = True
    ) -> Scenario:
        """
        Apply a rename and/or partial input update.

        Input changes trigger a full recompute and bump the revision. Pass
        notify=False for edits the caller is already displaying (e.g. while
        the user is typing) to skip listener callbacks.
        """
        with self._lock:
            index, current = self._find(scenario_id)
            updates: Dict[str, Any] = {"updated_at": datetime.utcnow()}
            if name is not None:
                updates["name"] = name

            if inputs is not None:
                updates["inputs"] = _build_inputs(current.inputs, inputs)
                updates["revision"] = current.revision + 1
                scenario = self._recompute(current, **updates)
            else:
                scenario = current.model_copy(update=updates)

            self._scenarios[index] = scenario
            self._save()

        logger.info(f"Updated scenario {scenario_id} (revision {scenario.revision})")
        if notify:
            self._notify(ScenarioEvent(ScenarioEventKind.UPDATED, scenario_id))
        return scenario

    def rename_scenario(self, scenario_id: str, name: str) -> Scenario:
        return self.update_scenario(scenario_id, name=name)

    def delete_scenario(self, scenario_id: str) -> None:
        with self._lock:
            index, _ = self._find(scenario_id)
            del self._scenarios[index]
            self._save()

        logger.info(f"Deleted scenario {scenario_id}")
        self._notify(ScenarioEvent(ScenarioEventKind.DELETED, scenario_id))

    def get_scenario(self, scenario_id: str) -> Scenario:
        with self._lock:
            return self._find(scenario_id)[1]

    def list_scenarios(self) -> List[Scenario]:
        with self._lock:
            return list(self._scenarios)

    def compare_scenarios(self, base_id: str, other_id: str) -> ScenarioComparison:
        """Compare two scenarios' totals (other minus base)."""
        base = self.get_scenario(base_id).results
        other = self.get_scenario(other_id).results

        tax_diff = other.total_tax - base.total_tax
        if tax_diff < 0:
            summary = f"This scenario would save you ${abs(tax_diff):,.2f} in taxes."
        elif tax_diff > 0:
            summary = f"This scenario would increase your taxes by ${tax_diff:,.2f}."
        else:
            summary = "Both scenarios owe the same tax."

        return ScenarioComparison(
            base_scenario_id=base_id,
            other_scenario_id=other_id,
            base_total_tax=base.total_tax,
            other_total_tax=other.total_tax,
            tax_difference=tax_diff,
            effective_rate_change=other.effective_rate - base.effective_rate,
            ordinary_tax_difference=other.ordinary_tax - base.ordinary_tax,
            capital_gains_tax_difference=other.capital_gains_tax - base.capital_gains_tax,
            niit_difference=other.niit_tax - base.niit_tax,
            summary=summary,
        )
