"""
Discrete morph state and the clock that drives transitions between states.

The clock is the single writer of the transition context. Every frame the
host asks it for a TransitionSnapshot and hands that immutable value to each
MorphDriver, so drivers never read shared mutable state.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class MorphState(str, Enum):
    SCATTERED = "SCATTERED"
    TEXT_SHAPE = "TEXT_SHAPE"
    TREE_SHAPE = "TREE_SHAPE"

    @classmethod
    def from_value(cls, value: object) -> "MorphState":
        """Accept an enum member, its value or its name (case-insensitive)."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().upper()
        for member in cls:
            if text in (member.value, member.name):
                return member
        raise ValueError(f"Unknown morph state: {value!r}")


@dataclass(frozen=True)
class TransitionSnapshot:
    """
    Read-only view of the transition context for one frame.

    `progress` is the LINEAR fraction of the transition in [0, 1]; drivers
    apply their own easing on top of it.
    """

    active_state: MorphState
    progress: float
    is_transitioning: bool = False


class TransitionClock:
    """
    Flip the active state and expose a progress value that rises linearly
    from 0 to 1 over `duration` seconds of real time.

    Changing the state again mid-flight restarts the timer from 0 against the
    new state; convergence in the drivers resumes from wherever particles
    currently are, so no explicit cancellation is needed.
    """

    DEFAULT_DURATION_S = 2.0

    def __init__(
        self,
        duration: float = DEFAULT_DURATION_S,
        clock: Optional[Callable[[], float]] = None,
        initial_state: MorphState = MorphState.SCATTERED,
    ) -> None:
        duration = float(duration)
        if not duration > 0.0:
            raise ValueError(f"Transition duration must be > 0, got {duration}")
        self._duration = duration
        self._clock: Callable[[], float] = clock or time.monotonic
        self._state = MorphState.from_value(initial_state)
        self._start_t = self._clock()

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def state(self) -> MorphState:
        return self._state

    def set_state(self, state: MorphState) -> bool:
        """
        Switch to `state`. Returns True when a new transition was started,
        False when `state` was already active.
        """
        state = MorphState.from_value(state)
        if state == self._state:
            return False
        self._state = state
        self._start_t = self._clock()
        return True

    def progress(self) -> float:
        elapsed = self._clock() - self._start_t
        if elapsed <= 0.0:
            return 0.0
        return min(1.0, elapsed / self._duration)

    def snapshot(self) -> TransitionSnapshot:
        p = self.progress()
        return TransitionSnapshot(active_state=self._state, progress=p, is_transitioning=p < 1.0)
