"""
Taxis - Settings
================
Runtime configuration read from environment variables.

TAXIS_SCENARIO_FILE        JSON file the scenario store persists to
TAXIS_TAX_TABLES_PATH      optional JSON file with extra/replacement tax years
TAXIS_CAPITAL_LOSS_POLICY  "net_against_gains" (default) or "limited_with_carryforward"
TAXIS_LOG_LEVEL            logging level for the entry points (default INFO)
DEBUG                      expose exception details in API error responses
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


@dataclass(frozen=True)
class Settings:
    scenario_file: str = "scenarios.json"
    tax_tables_path: Optional[str] = None
    capital_loss_policy: str = "net_against_gains"
    log_level: str = "INFO"
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            scenario_file=os.getenv("TAXIS_SCENARIO_FILE", cls.scenario_file),
            tax_tables_path=os.getenv("TAXIS_TAX_TABLES_PATH") or None,
            capital_loss_policy=os.getenv("TAXIS_CAPITAL_LOSS_POLICY", cls.capital_loss_policy),
            log_level=os.getenv("TAXIS_LOG_LEVEL", cls.log_level).upper(),
            debug=bool(os.getenv("DEBUG")),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
