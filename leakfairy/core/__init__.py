"""Core functionality for Chrome DevTools Protocol connection."""

from .connector import ChromeConnector
from .chrome_instance import ChromeInstanceManager, ChromeInstanceError, ChromeStartupError
from .errors import (
    AnalysisError,
    ChromeConnectionError,
    CommandError,
    CommandTimeoutError,
    FilesystemError,
    InteractionTimeoutError,
    LeakFairyError,
    LeaksDetectedError,
    ScenarioError,
    SessionError,
)
from .session import DebugSession, debug_session

__all__ = [
    'ChromeConnector',
    'ChromeConnectionError',
    'ChromeInstanceManager',
    'ChromeInstanceError',
    'ChromeStartupError',
    'AnalysisError',
    'CommandError',
    'CommandTimeoutError',
    'FilesystemError',
    'InteractionTimeoutError',
    'LeakFairyError',
    'LeaksDetectedError',
    'ScenarioError',
    'SessionError',
    'DebugSession',
    'debug_session',
]
