# src/mirumi/connectors/console_connector.py

from __future__ import annotations

import logging
import sys
import threading
from datetime import datetime
from typing import TextIO

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except OSError:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}")


class TerminalTitleSink:
    """
    Display surface for the countdown: the terminal window title.

    Writes the xterm "set title" sequence when the stream is a TTY and always
    remembers the last title so `/timer` and tests can read it back.
    """

    def __init__(self, stream: TextIO | None = None, *, enabled: bool = True) -> None:
        self._stream = stream
        self._enabled = enabled
        self._lock = threading.Lock()
        self.last_title: str | None = None

    def set_title(self, title: str) -> None:
        with self._lock:
            self.last_title = title
            stream = self._stream if self._stream is not None else sys.stdout
            if not self._enabled or not stream.isatty():
                return
            stream.write(f"\033]0;{title}\007")
            stream.flush()


def announce_timer_end(state: AppState) -> None:
    """Timer-ended listener for the console: tell the user time is up."""
    label = state.timer.snapshot().label
    _print_ts(f"[TIMER] Time is up{': ' + label if label else ''}. /extend or /done?")


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (db=%s).", state.db.path)
    _print_ts("[CONSOLE] Use /help for commands. Use /exit to quit.\n")

    state.timer.add_listener(lambda: announce_timer_end(state))

    def emit(text: str) -> None:
        print(f"[{_ts_local()}] {text}", flush=True)

    while True:
        try:
            user_input = input(">>> ").strip()
            _rewrite_prev_line(f"[{_ts_local()}] >>> {user_input}")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            with state.lock:
                response = command_registry.handle(state, user_input, emit=emit)
        except Exception:
            logger.exception("Command handler crashed.")
            response = "Internal error while handling a command."

        if response is None:
            response = "Commands start with '/'. Use /help to list them."
        _print_ts(response)

    logger.info("Console connector finished.")
