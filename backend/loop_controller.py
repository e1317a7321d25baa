"""
A/B Loop Controller for AB Loop.

Captures loop boundaries from the playback position with a single "set loop"
action that cycles through three stages:

    IDLE            -> capture the loop start
    START_CAPTURED  -> capture the loop end and arm the loop
    ARMED           -> clear the loop

While no track is loaded the controller is DISABLED and the action is a no-op.

This module has no audio dependencies; PlaybackEngine feeds it positions and
asks it whether a loop-back seek is due.
"""

import os
import sys
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Tuple

# Add parent directory to path for config import
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from config import LOOP_END_GUARD_MS
from utils.formatting import format_millis

logger = logging.getLogger("ABLoop.LoopController")

UNSET_LABEL = "N/A"


class LoopMode(IntEnum):
    """Stage of the loop capture protocol. The value is the stage number."""
    DISABLED = -1
    IDLE = 0
    START_CAPTURED = 1
    ARMED = 2


@dataclass
class LoopRegion:
    """
    A captured [start, end] range of the track, in milliseconds.

    Attributes:
        start: Loop start (ms)
        end: Loop end (ms)
        armed: Whether the loop is being enforced
    """
    start: int = 0
    end: int = 0
    armed: bool = False

    def fractions(self, duration_ms: int) -> Tuple[float, float, float]:
        """
        Split the track into the parts before, inside and after the loop.

        Hosts use this to size the loop markers drawn over a seek bar.

        Returns:
            Tuple of (before, between, after) proportions summing to 1.0
        """
        if duration_ms <= 0:
            return 0.0, 0.0, 1.0
        before = min(max(self.start, 0), duration_ms) / duration_ms
        between = max(min(self.end, duration_ms) - min(self.start, duration_ms), 0) / duration_ms
        after = max(1.0 - before - between, 0.0)
        return before, between, after


class LoopController:
    """
    Three-stage loop capture state machine.

    The current mode decides what the next advance() does; the mode then
    moves on to the following stage.
    """

    def __init__(self, guard_ms: int = LOOP_END_GUARD_MS):
        self.guard_ms = guard_ms
        self.region = LoopRegion()
        self.mode = LoopMode.DISABLED
        self.start_label = self._label("Loop Start", None)
        self.end_label = self._label("Loop End", None)

    @staticmethod
    def _label(prefix, position_ms):
        if position_ms is None:
            return f"{prefix}: {UNSET_LABEL}"
        return f"{prefix}: {format_millis(position_ms)}"

    @property
    def armed(self) -> bool:
        return self.region.armed

    def reset(self) -> None:
        """Forget the loop and wait for a start capture (a new track was loaded)."""
        self.region = LoopRegion()
        self.mode = LoopMode.IDLE
        self.start_label = self._label("Loop Start", None)
        self.end_label = self._label("Loop End", None)
        logger.debug("Loop reset")

    def disable(self) -> None:
        """Forget the loop and ignore capture requests (no track loaded)."""
        self.reset()
        self.mode = LoopMode.DISABLED

    def advance(self, position_ms: int, duration_ms: int) -> LoopMode:
        """
        Run the action for the current stage and move to the next stage.

        Args:
            position_ms: Current playback position
            duration_ms: Duration of the loaded track

        Returns:
            The stage whose action was performed (DISABLED if nothing happened)
        """
        performed = self.mode

        if performed == LoopMode.DISABLED:
            logger.debug("Loop capture ignored: no track loaded")
            return performed

        if performed == LoopMode.IDLE:
            self.region.start = position_ms
            self.start_label = self._label("Loop Start", self.region.start)
            logger.info(f"Loop start captured at {position_ms}ms")

        elif performed == LoopMode.START_CAPTURED:
            start, end = self.region.start, position_ms
            if end < start:
                # Captured out of order: the loop is the lesser/greater pair
                start, end = end, start

            limit = max(duration_ms - self.guard_ms, 0)
            if end > limit:
                end = limit
            start = min(start, end)

            self.region = LoopRegion(start=start, end=end, armed=True)
            self.start_label = self._label("Loop Start", start)
            self.end_label = self._label("Loop End", end)
            logger.info(f"Loop armed: {start}ms -> {end}ms")

        else:
            self.region.armed = False
            self.start_label = self._label("Loop Start", None)
            self.end_label = self._label("Loop End", None)
            logger.info("Loop cleared")

        self.mode = LoopMode((performed + 1) % 3)
        return performed

    def should_loop_back(self, position_ms: int, duration_ms: int) -> bool:
        """Whether playback at position_ms has run past the armed loop."""
        if not self.region.armed:
            return False
        return position_ms >= self.region.end or position_ms >= duration_ms
