# src/mirumi/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The timer depends on these Protocols instead of a concrete tray/terminal so
the display surface stays swappable and easy to fake in tests.
"""

from collections.abc import Callable
from typing import Protocol

TimerEndedListener = Callable[[], None]
# Called with no arguments, once per countdown that reaches zero.


class TitleSink(Protocol):
    """Passive display surface for the countdown (tray title, terminal title, ...)."""

    def set_title(self, title: str) -> None: ...
