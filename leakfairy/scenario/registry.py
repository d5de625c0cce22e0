"""Named leak scenarios, selected explicitly by the runner."""

from pathlib import Path
from typing import Dict, List, Optional, Union


class Scenario:
    """A view to open, keep open for the leak window, and snapshot twice.

    ``fixture_root`` names the object a JSON fixture creates in the
    application; a scenario that sets it cannot run without that fixture.
    """

    def __init__(self, name: str, object_name: str, description: str = "",
                 fixture_path: Optional[Union[str, Path]] = None,
                 fixture_root: Optional[str] = None):
        self.name = name
        self.object_name = object_name
        self.description = description
        self.fixture_path = Path(fixture_path).expanduser() if fixture_path else None
        self.fixture_root = fixture_root

    @property
    def requires_fixture(self) -> bool:
        return self.fixture_root is not None

    def with_fixture(self, fixture_path: Union[str, Path]) -> "Scenario":
        """Copy of this scenario importing ``fixture_path`` before navigating."""
        return Scenario(self.name, self.object_name, self.description, fixture_path,
                        self.fixture_root)

    def __repr__(self) -> str:
        return f"Scenario({self.name!r}, object_name={self.object_name!r})"


_SCENARIOS: Dict[str, Scenario] = {}


def register_scenario(scenario: Scenario) -> Scenario:
    if scenario.name in _SCENARIOS:
        raise ValueError(f"Scenario '{scenario.name}' is already registered")
    _SCENARIOS[scenario.name] = scenario
    return scenario


def unregister_scenario(name: str) -> None:
    _SCENARIOS.pop(name, None)


def get_scenario(name: str) -> Scenario:
    try:
        return _SCENARIOS[name]
    except KeyError:
        known = ", ".join(sorted(_SCENARIOS)) or "none"
        raise KeyError(f"Unknown scenario '{name}' (known: {known})") from None


def list_scenarios() -> List[Scenario]:
    return [_SCENARIOS[name] for name in sorted(_SCENARIOS)]
