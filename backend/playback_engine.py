"""
Playback Engine for AB Loop.

Acts as the controller layer between the UI and the audio primitive.
Owns the primitive, the A/B loop and the position poller, and emits events.

This follows an event-driven architecture:
- UI registers callbacks for events it cares about (or passes a listener)
- PlaybackEngine emits events when state changes
- UI updates in response to events

Threading:
- Transport calls come from the UI thread, poller ticks from the poller thread.
- A single RLock guards all engine state. Both sides go through it, and
  events are emitted while it is held, so listeners see changes in order.
- Events from ticks arrive on the poller thread; a UI host must marshal them
  to its own thread (e.g. through a queue polled by its event loop).

Failures of the audio primitive never propagate to the caller: they are
logged and the engine degrades to an inert state.
"""

import os
import sys
import logging
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Optional, Dict, List, Tuple, Any

# Add parent directory to path for config import
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from config import (
    POSITION_REFRESH_INTERVAL_MS, POLLER_JOIN_TIMEOUT_S,
    SKIP_INTERVAL_MS,
    DEFAULT_SPEED_PERCENT, SPEED_STEP_PERCENT,
    SPEED_MIN_PERCENT, SPEED_MAX_PERCENT,
)
from .loop_controller import LoopController, LoopMode, LoopRegion
from .position_poller import PositionPoller

logger = logging.getLogger("ABLoop.PlaybackEngine")


class PlaybackState(Enum):
    """Playback state enumeration."""
    UNINITIALIZED = auto()
    STOPPED = auto()
    PLAYING = auto()
    PAUSED = auto()


class MediaLoadError(Exception):
    """A source could not be bound to, or prepared by, the audio primitive."""

    def __init__(self, source, cause):
        super().__init__(f"Could not load {source}: {cause}")
        self.source = source
        self.cause = cause


@dataclass
class Track:
    """The loaded media resource."""
    source: str
    duration_ms: int


@dataclass
class LoadResult:
    """Outcome of PlaybackEngine.load(). Truthy when the track is ready."""
    track: Optional[Track] = None
    error: Optional[MediaLoadError] = None

    @property
    def ok(self) -> bool:
        return self.track is not None

    def __bool__(self):
        return self.ok


class PlaybackInfoListener:
    """
    Notifications sent to the UI. Subclassing is optional: any object with
    these methods can be passed to PlaybackEngine.
    """

    def on_duration_changed(self, duration_ms: int) -> None:
        pass

    def on_position_changed(self, position_ms: int) -> None:
        pass

    def on_state_changed(self, state: PlaybackState) -> None:
        pass


class PlaybackEngine:
    """
    Transport and A/B loop controller for a single track.

    Usage:
        engine = PlaybackEngine(lambda: AudioEngine(ffmpeg_path), listener=ui)
        engine.load("song.mp3")
        engine.play()
        engine.set_loop()        # capture loop start
        engine.set_loop()        # capture loop end, loop is armed
        engine.adjust_speed(-1)  # practice slower
        engine.release()

    Available Events:
    - 'duration_changed': (duration_ms: int)
    - 'position_changed': (position_ms: int)
    - 'state_changed': (state: PlaybackState)
    - 'loop_changed': (region: LoopRegion, start_label: str, end_label: str)
    - 'speed_changed': (speed: float)
    """

    def __init__(
        self,
        player_factory: Callable[[], Any],
        listener: Optional[Any] = None,
        poll_interval_ms: int = POSITION_REFRESH_INTERVAL_MS,
    ):
        """
        Initialize the playback engine.

        Args:
            player_factory: Returns a fresh audio primitive for each load
            listener: Optional PlaybackInfoListener-like object
            poll_interval_ms: Position poller period
        """
        self._player_factory = player_factory
        self._player = None

        self.track: Optional[Track] = None
        self.state = PlaybackState.UNINITIALIZED
        self.loop = LoopController()
        self._speed_percent = DEFAULT_SPEED_PERCENT
        self._last_position: Optional[int] = None

        # Thread safety - use a single RLock for all state
        self.lock = threading.RLock()

        self._poller = PositionPoller(self.sync_position, poll_interval_ms)

        # Callbacks for UI updates (event-driven architecture)
        self._callbacks: Dict[str, List[Callable]] = {
            'duration_changed': [],     # (duration_ms)
            'position_changed': [],     # (position_ms)
            'state_changed': [],        # (PlaybackState)
            'loop_changed': [],         # (region, start_label, end_label)
            'speed_changed': [],        # (speed)
        }

        if listener is not None:
            self.on('duration_changed', listener.on_duration_changed)
            self.on('position_changed', listener.on_position_changed)
            self.on('state_changed', listener.on_state_changed)

        logger.info("PlaybackEngine initialized")

    # =========================================================================
    # EVENT SYSTEM
    # =========================================================================

    def on(self, event: str, callback: Callable) -> None:
        """
        Register a callback for an event.

        Args:
            event: Event name (see class docstring for available events)
            callback: Function to call when event occurs
        """
        if event in self._callbacks:
            self._callbacks[event].append(callback)
        else:
            logger.warning(f"Unknown event: {event}. Available: {list(self._callbacks.keys())}")

    def off(self, event: str, callback: Callable) -> None:
        """Unregister a callback for an event."""
        if event in self._callbacks and callback in self._callbacks[event]:
            self._callbacks[event].remove(callback)

    def _emit(self, event: str, *args) -> None:
        """Emit an event to all registered callbacks."""
        for callback in list(self._callbacks.get(event, [])):
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Error in callback for {event}: {e}")

    def _set_state(self, state: PlaybackState) -> None:
        if state != self.state:
            self.state = state
            self._emit('state_changed', state)

    def _emit_position(self, position_ms: int) -> None:
        self._last_position = position_ms
        self._emit('position_changed', position_ms)

    def _emit_loop(self) -> None:
        self._emit('loop_changed', self.loop.region, self.loop.start_label, self.loop.end_label)

    # =========================================================================
    # PRIMITIVE ACCESS
    # =========================================================================

    def _call(self, action: str, fn: Callable, *args, default=None):
        """Call into the audio primitive, logging instead of raising on failure."""
        try:
            return fn(*args)
        except Exception as e:
            logger.warning(f"Audio player failed to {action}: {e}")
            return default

    def _release_player(self) -> None:
        if self._player is not None:
            self._call("release", self._player.release)
            self._player = None

    # =========================================================================
    # TRACK LOADING
    # =========================================================================

    def load(self, source) -> LoadResult:
        """
        Load a track from a local path or URI. Blocks while the track prepares.

        Failures are logged and returned, never raised. On failure the
        engine is left UNINITIALIZED.
        """
        logger.info(f"=== Loading track: {source} ===")

        with self.lock:
            self._release_player()
            self.track = None
            self._last_position = None

            player = None
            try:
                player = self._player_factory()
                player.set_data_source(source)
                player.prepare()
                duration_ms = max(int(player.get_duration()), 0)
            except Exception as e:
                error = MediaLoadError(source, e)
                logger.error(f"Error loading track: {error}")
                if player is not None:
                    self._call("release", player.release)
                self.loop.disable()
                self._set_state(PlaybackState.UNINITIALIZED)
                self._emit_loop()
                return LoadResult(error=error)

            self._player = player
            # Whole-track looping until an A/B loop takes over
            self._call("enable looping", player.set_looping, True)
            self.track = Track(source=str(source), duration_ms=duration_ms)
            self.loop.reset()
            logger.info(f"Track ready: {duration_ms}ms")

            self._set_state(PlaybackState.STOPPED)
            self._emit('duration_changed', duration_ms)
            self._emit_position(0)
            self._emit_loop()
            return LoadResult(track=self.track)

    def is_initialized(self) -> bool:
        return self._player is not None

    # =========================================================================
    # PLAYBACK CONTROLS
    # =========================================================================

    def play(self) -> PlaybackState:
        """
        Start or resume playback. Does nothing if already playing.

        Never pauses; toggle_play_pause() is the single play/pause control.
        """
        with self.lock:
            if self._player is None:
                logger.warning("Play ignored: no track loaded")
                return self.state
            if self.state == PlaybackState.PLAYING:
                return self.state

            logger.info(f"PLAY (was {self.state.name.lower()})")
            self._start_player()
            self._set_state(PlaybackState.PLAYING)
            self._poller.start()
            return self.state

    def _start_player(self) -> None:
        self._call("start", self._player.start)
        # Some players reset the rate when they start
        self._call("set playback rate", self._player.set_playback_rate, self.speed)

    def pause(self) -> PlaybackState:
        """Pause playback. The poller stays scheduled."""
        with self.lock:
            if self._player is None or self.state != PlaybackState.PLAYING:
                return self.state
            logger.info("PAUSE")
            self._call("pause", self._player.pause)
            self._set_state(PlaybackState.PAUSED)
            return self.state

    def toggle_play_pause(self) -> PlaybackState:
        """Single-control play/pause. Returns the resulting state."""
        with self.lock:
            if self.state == PlaybackState.PLAYING:
                return self.pause()
            return self.play()

    def stop(self) -> PlaybackState:
        """Stop playback and rewind to the start of the track."""
        with self.lock:
            if self._player is None:
                return self.state
            logger.info("STOP")
            self._call("pause", self._player.pause)
            self._call("seek", self._player.seek_to, 0)
            self._set_state(PlaybackState.STOPPED)
            self._emit_position(0)
            return self.state

    def seek_to(self, position_ms: int) -> None:
        """Forward a seek to the player. Bounds are left to the player."""
        with self.lock:
            if self._player is None:
                logger.debug("Seek ignored: no track loaded")
                return
            logger.debug(f"SEEK to {position_ms}ms")
            self._call("seek", self._player.seek_to, int(position_ms))

    def skip_forward(self) -> None:
        self._skip(SKIP_INTERVAL_MS)

    def skip_backward(self) -> None:
        self._skip(-SKIP_INTERVAL_MS)

    def _skip(self, offset_ms: int) -> None:
        with self.lock:
            if self._player is None:
                return
            position = self._call("read position", self._player.get_current_position)
            if position is None:
                return
            target = max(0, min(position + offset_ms, self.track.duration_ms))
            logger.info(f"SKIP {offset_ms:+d}ms -> {target}ms")
            try:
                self._player.seek_to(target)
            except Exception as e:
                logger.warning(f"Audio player failed to seek: {e}")
                return
            self._emit_position(target)

    # =========================================================================
    # SPEED
    # =========================================================================

    @property
    def speed(self) -> float:
        return self._speed_percent / 100.0

    @property
    def speed_percent(self) -> int:
        return self._speed_percent

    def adjust_speed(self, direction: int) -> float:
        """
        Step the speed up (+1) or down (-1) by 5%.

        A step that would reach either bound is ignored. Always returns the
        resulting speed so the UI can display it.
        """
        if direction not in (1, -1):
            raise ValueError(f"direction must be +1 or -1, got {direction}")

        with self.lock:
            candidate = self._speed_percent + direction * SPEED_STEP_PERCENT
            if not SPEED_MIN_PERCENT < candidate < SPEED_MAX_PERCENT:
                logger.debug(f"Speed {candidate}% out of range, keeping {self._speed_percent}%")
                return self.speed

            self._speed_percent = candidate
            logger.info(f"Speed -> {candidate}%")
            if self._player is not None and self.state == PlaybackState.PLAYING:
                self._call("set playback rate", self._player.set_playback_rate, self.speed)
            self._emit('speed_changed', self.speed)
            return self.speed

    # =========================================================================
    # LOOP CONTROLS
    # =========================================================================

    def set_loop(self) -> LoopMode:
        """
        Run the next step of the loop capture protocol at the current position.

        Returns:
            The mode the controller is in afterwards
        """
        with self.lock:
            if self._player is None or self.loop.mode == LoopMode.DISABLED:
                logger.debug("Set loop ignored: no track loaded")
                return self.loop.mode

            position = self._call("read position", self._player.get_current_position)
            if position is None:
                return self.loop.mode

            performed = self.loop.advance(int(position), self.track.duration_ms)
            if performed == LoopMode.START_CAPTURED:
                # The A/B loop owns replay now
                self._call("disable looping", self._player.set_looping, False)
            elif performed == LoopMode.ARMED:
                self._call("enable looping", self._player.set_looping, True)

            self._emit_loop()
            return self.loop.mode

    @property
    def loop_region(self) -> LoopRegion:
        return self.loop.region

    # =========================================================================
    # POSITION SYNC
    # =========================================================================

    def sync_position(self) -> Optional[int]:
        """
        Poller tick: publish the position and enforce the A/B loop.

        Keeps running while paused; a position is only published when it
        differs from the last one sent. The loop is only enforced while
        PLAYING, so a paused or stopped track stays where the user left it.

        Returns:
            The position read, or None if there is no track
        """
        with self.lock:
            if self._player is None:
                return None

            position = self._call("read position", self._player.get_current_position)
            if position is None:
                return None

            if position != self._last_position:
                self._emit_position(position)

            if (self.state == PlaybackState.PLAYING
                    and self.loop.should_loop_back(position, self.track.duration_ms)):
                start = self.loop.region.start
                logger.info(f"Looping back from {position}ms to {start}ms")
                self._call("seek", self._player.seek_to, start)
                self._ensure_playing()
                self._emit_position(start)
            return position

    def _ensure_playing(self) -> None:
        """Resume output after a loop-back without the toggle semantics of play()."""
        if not self._call("query", self._player.is_playing, default=False):
            self._start_player()
        self._set_state(PlaybackState.PLAYING)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def is_playing(self) -> bool:
        return self.state == PlaybackState.PLAYING

    def get_position(self) -> int:
        with self.lock:
            if self._player is None:
                return 0
            return self._call("read position", self._player.get_current_position, default=0)

    def get_time(self) -> Tuple[int, int]:
        """Return (position_ms, duration_ms)."""
        with self.lock:
            duration = self.track.duration_ms if self.track else 0
            return self.get_position(), duration

    # =========================================================================
    # CLEANUP
    # =========================================================================

    def release(self) -> None:
        """
        Stop the poller and free the player. Only load() works afterwards.
        """
        logger.info("Releasing PlaybackEngine")
        # Stop outside the lock: an in-flight tick may be waiting on it
        self._poller.stop(join=True, timeout=POLLER_JOIN_TIMEOUT_S)

        with self.lock:
            self._release_player()
            self.track = None
            self._last_position = None
            self.loop.disable()
            self._set_state(PlaybackState.UNINITIALIZED)
