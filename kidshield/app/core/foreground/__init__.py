"""Foreground enforcement module for KIDSHIELD.

Provides the single-threaded dispatcher, the screen content helpers and
the enforcement state machine.
"""

from app.core.foreground.dispatcher import EventDispatcher, ScheduledTask
from app.core.foreground.enforcement_engine import (
    ActionSink,
    ForegroundEnforcementEngine,
    QueuedActionSink,
)
from app.core.foreground.screen_content import (
    BROWSER_PACKAGES,
    DictScreenNode,
    ScreenNode,
)

__all__ = [
    "EventDispatcher",
    "ScheduledTask",
    "ActionSink",
    "ForegroundEnforcementEngine",
    "QueuedActionSink",
    "BROWSER_PACKAGES",
    "DictScreenNode",
    "ScreenNode",
]
