# src/mirumi/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, starts the 1-second tick driver in a
background thread, then runs the console REPL in the main thread.
"""

from __future__ import annotations

import logging
import signal

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import TerminalTitleSink, run_console_loop
from ..logging_setup import setup_logging
from ..tasks.task_api import pause_focus
from ..timer.tick_driver import start_tick_driver_in_background

logger = logging.getLogger(__name__)


def _shutdown(state) -> None:
    """Park the running task (if any) so its remaining time survives a restart."""
    try:
        task = pause_focus(state)
        if task is not None:
            logger.info("Paused task_id=%s on exit.", task.id)
    except Exception:
        logger.exception("Failed to pause the running task on exit.")


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    # IMPORTANT: reuse same settings object
    sink = TerminalTitleSink(enabled=settings.console_title)
    state = create_initial_state(settings=settings, sink=sink)

    runner = start_tick_driver_in_background(state.timer, interval_seconds=settings.tick_interval_seconds)
    if runner is None:
        logger.error("Tick driver failed to start; the countdown will not advance.")

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        raise KeyboardInterrupt

    try:
        signal.signal(signal.SIGTERM, _handle_signal)
    except (ValueError, OSError):
        logger.debug("SIGTERM handler not installed.", exc_info=True)

    try:
        run_console_loop(state)
    finally:
        _shutdown(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
