# src/mirumi/timer/coordinator.py

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from ..core.ports import TimerEndedListener, TitleSink
from ..errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TITLE = "Mirumi"
DEFAULT_LABEL_MAX_CHARS = 12
ELLIPSIS = "…"
NO_LABEL_GLYPH = "⏱"


def format_title(label: str, seconds: int, *, max_chars: int = DEFAULT_LABEL_MAX_CHARS) -> str:
    """
    Render `label MM:SS`.

    Labels longer than `max_chars` are cut and get an ellipsis; an empty
    label is replaced by a stopwatch glyph.
    """
    mins, secs = divmod(max(0, int(seconds)), 60)
    clock = f"{mins:02d}:{secs:02d}"
    if label:
        if len(label) > max_chars:
            label = label[:max_chars] + ELLIPSIS
        return f"{label} {clock}"
    return f"{NO_LABEL_GLYPH} {clock}"


@dataclass(frozen=True, slots=True)
class TimerSnapshot:
    remaining_seconds: int
    label: str
    running: bool
    generation: int = 0


@dataclass(slots=True)
class _TimerState:
    remaining_seconds: int = 0
    label: str = ""
    running: bool = False
    generation: int = 0  # bumped by start/update; identifies one countdown


def _check_seconds(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"remaining seconds must be an integer >= 0, got {value!r}")
    return value


class TimerCoordinator:
    """
    The single in-process countdown.

    Thread-safety:
    - all state reads/writes happen under one lock, held only for the
      assignments themselves;
    - each mutation takes a sequence number under that lock, and display
      pushes are serialised through a second lock that drops any push older
      than the last one shown, so the sink never goes back to a stale value.

    `tick()` is driven once per second by the tick driver. Reaching zero
    stops the countdown and fires the "timer ended" listeners once.
    """

    def __init__(
        self,
        sink: TitleSink | None = None,
        *,
        idle_title: str = DEFAULT_IDLE_TITLE,
        label_max_chars: int = DEFAULT_LABEL_MAX_CHARS,
    ) -> None:
        self._sink = sink
        self._idle_title = idle_title
        self._label_max_chars = max(1, int(label_max_chars))

        self._lock = threading.Lock()
        self._state = _TimerState()
        self._seq = 0
        self._expired_generation = 0
        self._listeners: list[TimerEndedListener] = []

        self._display_lock = threading.Lock()
        self._shown_seq = 0

    # ---- listeners ----

    def add_listener(self, callback: TimerEndedListener) -> None:
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: TimerEndedListener) -> None:
        with self._lock:
            try:
                self._listeners.remove(callback)
            except ValueError:
                pass

    # ---- low-level helpers ----

    def _title_locked(self) -> str:
        return format_title(self._state.label, self._state.remaining_seconds, max_chars=self._label_max_chars)

    def _next_seq_locked(self) -> int:
        self._seq += 1
        return self._seq

    def _push(self, seq: int, title: str) -> None:
        with self._display_lock:
            if seq <= self._shown_seq:
                logger.debug("Dropped stale title seq=%s shown=%s", seq, self._shown_seq)
                return
            self._shown_seq = seq
            if self._sink is None:
                return
            try:
                self._sink.set_title(title)
            except Exception:
                logger.exception("Title sink failed (title=%r)", title)

    def _notify_ended(self, listeners: list[TimerEndedListener]) -> None:
        for cb in listeners:
            try:
                cb()
            except Exception:
                logger.exception("timer-ended listener failed")

    def _set(self, remaining_seconds: int, label: str) -> int:
        remaining = _check_seconds(remaining_seconds)
        with self._lock:
            self._state.generation += 1
            generation = self._state.generation
            self._state.remaining_seconds = remaining
            self._state.label = label or ""
            self._state.running = True
            seq = self._next_seq_locked()
            title = self._title_locked()
        self._push(seq, title)
        return generation

    # ---- commands ----

    def start(self, remaining_seconds: int, label: str) -> int:
        """Start a countdown and return its generation number."""
        generation = self._set(remaining_seconds, label)
        logger.debug("Timer started remaining=%s label=%r", remaining_seconds, label)
        return generation

    def update(self, remaining_seconds: int, label: str) -> int:
        """Retarget a running countdown to another task without a stop in between."""
        generation = self._set(remaining_seconds, label)
        logger.debug("Timer retargeted remaining=%s label=%r", remaining_seconds, label)
        return generation

    def stop(self, reset_label: bool = False) -> int:
        """
        Stop counting and return what was left.

        reset_label=False keeps the label and frozen time on display (paused
        task); reset_label=True switches the display back to idle.
        """
        with self._lock:
            self._state.running = False
            remaining = self._state.remaining_seconds
            seq = self._next_seq_locked()
            title = self._idle_title if reset_label else self._title_locked()
        self._push(seq, title)
        logger.debug("Timer stopped remaining=%s reset_label=%s", remaining, reset_label)
        return remaining

    def sync(self, remaining_seconds: int) -> None:
        """Overwrite the remaining time (foreground drift correction)."""
        remaining = _check_seconds(remaining_seconds)
        with self._lock:
            self._state.remaining_seconds = remaining
            if not self._state.running:
                return
            seq = self._next_seq_locked()
            title = self._title_locked()
        self._push(seq, title)

    def query(self) -> tuple[int, bool]:
        with self._lock:
            return self._state.remaining_seconds, self._state.running

    def snapshot(self) -> TimerSnapshot:
        with self._lock:
            return TimerSnapshot(
                remaining_seconds=self._state.remaining_seconds,
                label=self._state.label,
                running=self._state.running,
                generation=self._state.generation,
            )

    @property
    def expired_generation(self) -> int:
        """Generation of the last countdown that reached zero (0 if none has)."""
        with self._lock:
            return self._expired_generation

    # ---- driver ----

    def tick(self) -> None:
        """Advance one second. No-op unless running with time left."""
        ended_listeners: list[TimerEndedListener] = []
        idle_seq = 0

        with self._lock:
            if not self._state.running or self._state.remaining_seconds <= 0:
                return
            self._state.remaining_seconds -= 1
            seq = self._next_seq_locked()
            title = self._title_locked()
            if self._state.remaining_seconds == 0:
                self._state.running = False
                idle_seq = self._next_seq_locked()
                self._expired_generation = self._state.generation
                ended_listeners = list(self._listeners)

        self._push(seq, title)
        if idle_seq:
            self._push(idle_seq, self._idle_title)
            logger.info("Timer ended")
            self._notify_ended(ended_listeners)
