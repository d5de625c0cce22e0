"""Error taxonomy for the leak detection harness."""

from typing import Any, Optional


class LeakFairyError(Exception):
    """Base class for all harness errors."""
    pass


class ChromeConnectionError(LeakFairyError):
    """Chrome connection related errors."""
    pass


class SessionError(LeakFairyError):
    """A debug session could not be attached or detached."""
    pass


class CommandError(LeakFairyError):
    """A protocol command returned an error or the transport failed."""

    def __init__(self, method: str, message: str, code: Optional[int] = None,
                 data: Any = None):
        self.method = method
        self.message = message
        self.code = code
        self.data = data
        detail = f" (code {code})" if code is not None else ""
        super().__init__(f"{method} failed{detail}: {message}")


class CommandTimeoutError(CommandError):
    """No response to a protocol command within its timeout."""

    def __init__(self, method: str, timeout: float):
        self.timeout = timeout
        super().__init__(method, f"no response within {timeout:g}s")


class FilesystemError(LeakFairyError):
    """Snapshot directory or file could not be written."""
    pass


class InteractionTimeoutError(LeakFairyError):
    """An expected UI element never became available."""
    pass


class AnalysisError(LeakFairyError):
    """The leak analyzer could not read or diff the snapshots."""
    pass


class LeaksDetectedError(LeakFairyError):
    """Strict mode found a non-empty leak report."""

    def __init__(self, scenario: str, report):
        self.scenario = scenario
        self.report = report
        super().__init__(f"{len(report)} leak(s) detected in scenario '{scenario}'")


class ScenarioError(LeakFairyError):
    """A scenario cannot run with the given inputs."""
    pass
