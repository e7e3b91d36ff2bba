# src/mirumi/timer/tick_driver.py

from __future__ import annotations

"""
Tick driver.

A fixed-rate loop that calls `TimerCoordinator.tick()` once per interval for
the lifetime of the process. It never decides anything itself: the
coordinator's `running` flag gates all activity, so "stopping" a timer
leaves the driver alone.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass

from .coordinator import TimerCoordinator

logger = logging.getLogger(__name__)


async def run_tick_driver(timer: TimerCoordinator, *, interval_seconds: float = 1.0) -> None:
    """
    Call timer.tick() every interval_seconds.

    Deadlines are computed from the loop clock so ticks do not drift. If the
    process was suspended and several ticks were missed, they are skipped
    rather than replayed in a burst (the foreground re-syncs on focus).

    To stop the driver, cancel the coroutine/task.
    """
    interval = max(0.01, float(interval_seconds))
    loop = asyncio.get_running_loop()
    next_at = loop.time() + interval

    while True:
        await asyncio.sleep(max(0.0, next_at - loop.time()))

        try:
            timer.tick()
        except Exception:
            logger.exception("Timer tick failed")

        next_at += interval
        now = loop.time()
        if next_at < now:
            missed = int((now - next_at) // interval) + 1
            logger.debug("Tick driver behind by %d tick(s); skipping", missed)
            next_at += missed * interval


@dataclass
class TickDriverThread:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop


def start_tick_driver_in_background(
    timer: TimerCoordinator,
    *,
    interval_seconds: float = 1.0,
) -> TickDriverThread | None:
    """
    Run the tick driver on its own daemon thread and event loop.

    Why a thread:
    - the console REPL blocks on input(),
    - the driver must keep ticking regardless of what the foreground does.
    """
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        holder["loop"] = loop
        ready.set()

        try:
            loop.run_until_complete(run_tick_driver(timer, interval_seconds=interval_seconds))
        except Exception:
            logger.exception("Tick driver loop exited unexpectedly.")
        finally:
            loop.close()

    t = threading.Thread(target=runner, name="mirumi-tick-driver", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    if not isinstance(loop, asyncio.AbstractEventLoop):
        logger.error("Tick driver thread did not initialize properly.")
        return None

    logger.info("Tick driver started (interval=%ss).", interval_seconds)
    return TickDriverThread(thread=t, loop=loop)
