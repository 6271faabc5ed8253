"""
Taxis - FastAPI Backend
=======================
HTTP API around the tax engine and the scenario store.

- /api/calculate*        stateless engine calls
- /api/scenarios*        scenario CRUD; every input change recomputes the result
- /api/reference/*       the tax year tables the engine uses
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from models import DetailedBreakdown, Scenario, ScenarioComparison, TaxInputs, TaxResult
from scenario_store import ScenarioNotFoundError, ScenarioStore, ScenarioValidationError
from settings import get_settings
from tax_engine import TaxCalculator
from tax_tables import (
    FilingStatus,
    InvalidTaxConfigurationError,
    get_tax_bracket_info,
    get_tax_year_table,
    supported_tax_years,
)

# Configure logging
logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION SETUP
# =============================================================================

_store: Optional[ScenarioStore] = None


def get_store() -> ScenarioStore:
    """Process-wide scenario store, created on first use."""
    global _store
    if _store is None:
        _store = ScenarioStore(get_settings().scenario_file)
    return _store


def get_calculator() -> TaxCalculator:
    return TaxCalculator(loss_policy=get_settings().capital_loss_policy)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Taxis starting up...")
    yield
    logger.info("Taxis shutting down...")


app = FastAPI(
    title="Taxis",
    description="Federal tax scenario calculator API",
    version="1.0.0",
    lifespan=lifespan
)


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CreateScenarioRequest(BaseModel):
    name: str = "New Scenario"
    inputs: Optional[Dict[str, Any]] = None


class UpdateScenarioRequest(BaseModel):
    name: Optional[str] = None
    inputs: Optional[Dict[str, Any]] = None


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _find_scenario(store: ScenarioStore, scenario_id: str) -> Scenario:
    """Get scenario or raise 404."""
    try:
        return store.get_scenario(scenario_id)
    except ScenarioNotFoundError:
        raise HTTPException(status_code=404, detail=f"Scenario {scenario_id} not found")


# =============================================================================
# API ENDPOINTS
# =============================================================================

@app.get("/")
async def root():
    """API health check."""
    return {"service": "Taxis", "version": "1.0.0", "status": "healthy"}


@app.get("/api/health")
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "supported_tax_years": supported_tax_years(),
    }


# --- ENGINE ENDPOINTS ---

@app.post("/api/calculate", response_model=TaxResult)
async def calculate(inputs: TaxInputs, calculator: TaxCalculator = Depends(get_calculator)):
    """Summary totals for one set of inputs."""
    try:
        return calculator.calculate(inputs)
    except InvalidTaxConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/calculate/detailed", response_model=DetailedBreakdown)
async def calculate_detailed(inputs: TaxInputs, calculator: TaxCalculator = Depends(get_calculator)):
    """Full itemized breakdown for one set of inputs."""
    try:
        return calculator.calculate_detailed(inputs)
    except InvalidTaxConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


# --- SCENARIO ENDPOINTS ---

@app.get("/api/scenarios", response_model=List[Scenario])
def list_scenarios(store: ScenarioStore = Depends(get_store)):
    return store.list_scenarios()


@app.post("/api/scenarios", response_model=Scenario, status_code=201)
def create_scenario(request: CreateScenarioRequest, store: ScenarioStore = Depends(get_store)):
    """Create a scenario; its result is computed immediately."""
    try:
        return store.create_scenario(request.name, request.inputs)
    except ScenarioValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except InvalidTaxConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/scenarios/{scenario_id}", response_model=Scenario)
def get_scenario(scenario_id: str, store: ScenarioStore = Depends(get_store)):
    return _find_scenario(store, scenario_id)


@app.patch("/api/scenarios/{scenario_id}", response_model=Scenario)
def update_scenario(
    scenario_id: str,
    request: UpdateScenarioRequest,
    store: ScenarioStore = Depends(get_store)
):
    """Rename and/or partially update inputs; inputs changes trigger a recompute."""
    _find_scenario(store, scenario_id)
    try:
        return store.update_scenario(scenario_id, name=request.name, inputs=request.inputs)
    except ScenarioValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except InvalidTaxConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/scenarios/{scenario_id}/duplicate", response_model=Scenario, status_code=201)
def duplicate_scenario(scenario_id: str, store: ScenarioStore = Depends(get_store)):
    _find_scenario(store, scenario_id)
    return store.duplicate_scenario(scenario_id)


@app.delete("/api/scenarios/{scenario_id}")
def delete_scenario(scenario_id: str, store: ScenarioStore = Depends(get_store)):
    _find_scenario(store, scenario_id)
    store.delete_scenario(scenario_id)
    return {"status": "deleted", "scenario_id": scenario_id}


@app.get("/api/scenarios/{scenario_id}/compare/{other_id}", response_model=ScenarioComparison)
def compare_scenarios(scenario_id: str, other_id: str, store: ScenarioStore = Depends(get_store)):
    _find_scenario(store, scenario_id)
    _find_scenario(store, other_id)
    return store.compare_scenarios(scenario_id, other_id)


# --- REFERENCE ENDPOINTS ---

@app.get("/api/reference/tax-years")
async def get_tax_years():
    return {"tax_years": supported_tax_years()}


@app.get("/api/reference/brackets/{tax_year}")
async def get_tax_brackets(tax_year: int, filing_status: Optional[str] = None):
    """Get the tax table for a year, optionally for one filing status."""
    try:
        table = get_tax_year_table(tax_year)
        if filing_status:
            status = FilingStatus(filing_status)
            return {
                "tax_year": tax_year,
                "filing_status": status.value,
                "table": table.for_status(status).model_dump(mode="json"),
                "description": get_tax_bracket_info(table, status),
            }
    except (InvalidTaxConfigurationError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return table.model_dump(mode="json")


# --- ERROR HANDLERS ---

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if get_settings().debug else "An error occurred"
        }
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
