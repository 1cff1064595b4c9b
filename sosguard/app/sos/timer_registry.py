"""
timer_registry.py — Per-alert countdowns with atomic arm / disarm.

The registry holds at most one live countdown per alert id. Each
countdown is an asyncio `call_later` handle, so the grace period never
occupies a thread or a task while it runs.

═══════════════════════════════════════════════════════════════════════════
RACE RESOLUTION
═══════════════════════════════════════════════════════════════════════════

Every countdown carries a single state flag, guarded by its own lock:

        ARMED ──(timer callback wins)──▶ FIRED      → on_fire runs
          │
          └────(disarm wins)──────────▶ DISARMED   → disarm() returns True

Whichever side flips the flag out of ARMED first wins; the other side
sees a non-ARMED state and backs off. For one arm, exactly one of
{disarm() returned True, on_fire ran} happens.

Locks:
    • _table_lock     — dict insert / lookup / remove only, never held
                        while a countdown is being resolved
    • countdown.lock  — per alert, so unrelated alerts never contend

disarm() is safe to call from any thread; off-loop callers hand the
handle cancel to the owning loop via call_soon_threadsafe. arm() must be
called from inside the event loop that will run the countdown.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

from sosguard.app.core.errors import AlreadyArmedError

logger = logging.getLogger(__name__)

FireCallback = Callable[[str], Any]


class CountdownState(str, Enum):
    ARMED    = "armed"
    FIRED    = "fired"
    DISARMED = "disarmed"


class _Countdown:
    __slots__ = ("alert_id", "state", "lock", "handle", "loop")

    def __init__(self, alert_id: str, loop: asyncio.AbstractEventLoop):
        self.alert_id = alert_id
        self.loop = loop
        self.state = CountdownState.ARMED
        self.lock = threading.Lock()
        self.handle: Optional[asyncio.TimerHandle] = None


def _cancel_handle(countdown: _Countdown) -> None:
    """Cancel the timer handle on the loop that owns it."""
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if running is countdown.loop:
        countdown.handle.cancel()
    elif not countdown.loop.is_closed():
        countdown.loop.call_soon_threadsafe(countdown.handle.cancel)


class TimerRegistry:
    """
    Process-wide table of alert id → in-flight countdown.

    Usage:
        registry = TimerRegistry()
        registry.arm(alert.alert_id, 30.0, manager.escalate)
        ...
        if registry.disarm(alert.alert_id):
            ...  # the countdown will never fire
    """

    def __init__(self) -> None:
        self._countdowns: Dict[str, _Countdown] = {}
        self._table_lock = threading.Lock()
        self._tasks: Set[asyncio.Task] = set()

    # ── Queries ──

    @property
    def armed_count(self) -> int:
        with self._table_lock:
            return len(self._countdowns)

    def is_armed(self, alert_id: str) -> bool:
        with self._table_lock:
            countdown = self._countdowns.get(alert_id)
        return countdown is not None and countdown.state is CountdownState.ARMED

    # ── Arm / disarm ──

    def arm(self, alert_id: str, duration: float, on_fire: FireCallback) -> None:
        """
        Schedule `on_fire(alert_id)` after `duration` seconds.

        Raises
        ------
        AlreadyArmedError
            A countdown for `alert_id` is already live.
        ValueError
            `duration` is negative.
        """
        if duration < 0:
            raise ValueError(f"Countdown duration must be >= 0, got {duration}")

        loop = asyncio.get_running_loop()
        countdown = _Countdown(alert_id, loop)

        with self._table_lock:
            if alert_id in self._countdowns:
                raise AlreadyArmedError(alert_id)
            self._countdowns[alert_id] = countdown
            countdown.handle = loop.call_later(duration, self._fire, countdown, on_fire)

        logger.debug(
            "Countdown armed for %s (%.2fs)", alert_id, duration,
            extra={"alert_id": alert_id, "grace_seconds": duration},
        )

    def disarm(self, alert_id: str) -> bool:
        """
        Stop a pending countdown.

        Returns
        -------
        bool
            True if the countdown was stopped before firing. False if no
            countdown existed or it had already fired.
        """
        with self._table_lock:
            countdown = self._countdowns.get(alert_id)
        if countdown is None:
            return False

        with countdown.lock:
            won = countdown.state is CountdownState.ARMED
            if won:
                countdown.state = CountdownState.DISARMED
                _cancel_handle(countdown)

        self._forget(countdown)
        logger.debug(
            "Disarm %s → %s", alert_id, "stopped" if won else "too late",
            extra={"alert_id": alert_id},
        )
        return won

    def cancel_all(self) -> int:
        """Stop every live countdown without firing it. Returns the count stopped."""
        with self._table_lock:
            countdowns = list(self._countdowns.values())

        stopped = 0
        for countdown in countdowns:
            with countdown.lock:
                if countdown.state is CountdownState.ARMED:
                    countdown.state = CountdownState.DISARMED
                    _cancel_handle(countdown)
                    stopped += 1
            self._forget(countdown)
        return stopped

    async def drain(self) -> None:
        """Wait until every fired callback has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Internals ──

    def _forget(self, countdown: _Countdown) -> None:
        with self._table_lock:
            if self._countdowns.get(countdown.alert_id) is countdown:
                del self._countdowns[countdown.alert_id]

    def _fire(self, countdown: _Countdown, on_fire: FireCallback) -> None:
        with countdown.lock:
            if countdown.state is not CountdownState.ARMED:
                return
            countdown.state = CountdownState.FIRED

        self._forget(countdown)
        alert_id = countdown.alert_id
        logger.debug("Countdown fired for %s", alert_id, extra={"alert_id": alert_id})

        try:
            result = on_fire(alert_id)
        except Exception:
            logger.exception(
                "Fire callback failed for %s", alert_id,
                extra={"alert_id": alert_id},
            )
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Fire callback task failed: %s", exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
