"""Recognition state machine.

Guarantees at most one recognition attempt is in flight::

    idle -> processing -> waiting_for_response -> showing_result -> idle

``processing`` and ``waiting_for_response`` may also fall back to ``idle``
on local failures, and ``hard_reset`` returns to ``idle`` from anywhere.
Every return to ``idle`` starts a cooldown during which no new attempt may
begin. This class is the only writer of the recognition state.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional

from ..core.entities import CropStatus, RecognitionOutcome, RecognitionState
from ..core.exceptions import StateTransitionError

logger = logging.getLogger(__name__)

StateListener = Callable[[RecognitionState, RecognitionState], None]


def _loop_call_later(delay: float, callback: Callable[[], None]):
    return asyncio.get_running_loop().call_later(delay, callback)


class RecognitionStateMachine:
    """Owns the recognition state, the dwell timer and the cooldown.

    Args:
        cooldown: Seconds after a return to idle before a new attempt may start
        dwell_recognized: Seconds a recognized result stays on screen
        dwell_not_recognized: Seconds a not-recognized result stays on screen
        clock: Monotonic time source
        call_later: ``call_later(delay, callback)`` returning a cancellable handle;
            defaults to the running event loop
    """

    def __init__(self, cooldown: float = 2.0, dwell_recognized: float = 1.5,
                 dwell_not_recognized: float = 0.5,
                 clock: Callable[[], float] = time.monotonic,
                 call_later: Optional[Callable] = None):
        self.cooldown = cooldown
        self.dwell_recognized = dwell_recognized
        self.dwell_not_recognized = dwell_not_recognized
        self._clock = clock
        self._call_later = call_later or _loop_call_later

        self._state = RecognitionState.IDLE
        self._auto_trigger = True
        self._cooldown_until: Optional[float] = None
        self._request_id: Optional[str] = None
        self._dwell_handle = None
        self._last_outcome: Optional[RecognitionOutcome] = None
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> RecognitionState:
        return self._state

    @property
    def current_request_id(self) -> Optional[str]:
        return self._request_id

    @property
    def auto_trigger_enabled(self) -> bool:
        return self._auto_trigger

    @property
    def last_outcome(self) -> Optional[RecognitionOutcome]:
        return self._last_outcome

    def add_listener(self, listener: StateListener) -> None:
        """Register ``listener(old_state, new_state)``, called on every transition."""
        self._listeners.append(listener)

    def cooldown_remaining(self, now: Optional[float] = None) -> float:
        if self._cooldown_until is None:
            return 0.0
        now = self._clock() if now is None else now
        return max(0.0, self._cooldown_until - now)

    def can_start(self, now: Optional[float] = None) -> bool:
        """True when idle, automatic triggering is on and the cooldown has elapsed."""
        return (
            self._state is RecognitionState.IDLE
            and self._auto_trigger
            and self.cooldown_remaining(now) == 0.0
        )

    def try_begin_processing(self) -> bool:
        """Enter ``processing`` if allowed. Disables automatic triggering."""
        if not self.can_start():
            return False
        self._auto_trigger = False
        self._transition(RecognitionState.PROCESSING)
        return True

    def mark_waiting(self, request_id: str) -> None:
        """``processing -> waiting_for_response`` for the request ``request_id``."""
        if self._state is not RecognitionState.PROCESSING:
            raise StateTransitionError(
                f"Cannot wait for a response from state {self._state.value}"
            )
        self._request_id = request_id
        self._transition(RecognitionState.WAITING_FOR_RESPONSE)

    def fail_local(self, reason: str) -> None:
        """Abandon the current attempt after a local failure (no socket, send or pipeline error)."""
        if self._state is RecognitionState.IDLE:
            logger.debug(f"Local failure while already idle: {reason}")
            return
        if self._state is RecognitionState.SHOWING_RESULT:
            raise StateTransitionError("Cannot fail an attempt whose result is already showing")
        logger.info(f"Recognition attempt abandoned: {reason}")
        self._return_to_idle()

    def resolve(self, outcome: RecognitionOutcome) -> bool:
        """Show ``outcome`` if it belongs to the request being waited on.

        Returns:
            False when the outcome was discarded as late or unexpected
        """
        if self._state is not RecognitionState.WAITING_FOR_RESPONSE:
            logger.info(f"Discarding result for {outcome.request_id}: state is {self._state.value}")
            return False
        if outcome.request_id != self._request_id:
            logger.info(
                f"Discarding late result for {outcome.request_id}, waiting for {self._request_id}"
            )
            return False

        self._last_outcome = outcome
        self._transition(RecognitionState.SHOWING_RESULT)

        dwell = (self.dwell_recognized if outcome.status is CropStatus.RECOGNIZED
                 else self.dwell_not_recognized)
        self._dwell_handle = self._call_later(dwell, self.finish_showing_result)
        return True

    def finish_showing_result(self) -> None:
        """Dwell timer target: ``showing_result -> idle``."""
        self._dwell_handle = None
        if self._state is not RecognitionState.SHOWING_RESULT:
            raise StateTransitionError(
                f"No result is showing (state {self._state.value})"
            )
        self._return_to_idle()

    def hard_reset(self, reason: str = "") -> None:
        """Return to ``idle`` from any state. Safe to call repeatedly."""
        self._cancel_dwell()
        if self._state is RecognitionState.IDLE:
            self._request_id = None
            self._auto_trigger = True
            return
        logger.info(f"Hard reset from {self._state.value}" + (f": {reason}" if reason else ""))
        self._return_to_idle()

    def enable_auto_trigger(self) -> None:
        self._auto_trigger = True

    def _return_to_idle(self) -> None:
        self._cancel_dwell()
        self._request_id = None
        self._auto_trigger = True
        self._cooldown_until = self._clock() + self.cooldown
        self._transition(RecognitionState.IDLE)

    def _cancel_dwell(self) -> None:
        if self._dwell_handle is not None:
            self._dwell_handle.cancel()
            self._dwell_handle = None

    def _transition(self, new_state: RecognitionState) -> None:
        old_state = self._state
        self._state = new_state
        logger.debug(f"Recognition state {old_state.value} -> {new_state.value}")
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception:
                logger.exception("Recognition state listener failed")
