"""Leak scenarios and the navigation driver behind them."""

from .driver import ScenarioDriver, resolve_target_id
from .registry import Scenario, get_scenario, list_scenarios, register_scenario
from . import openmct  # noqa: F401  registers the built-in scenarios

__all__ = ["ScenarioDriver", "resolve_target_id", "Scenario", "get_scenario",
           "list_scenarios", "register_scenario"]
