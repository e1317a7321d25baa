"""
Backend module for AB Loop.

Contains the playback engine, the A/B loop controller and the position poller.
These modules are UI-agnostic and can be used independently for testing.

The pygame-backed AudioEngine is imported from backend.audio_engine directly
so the controller can be used without an audio device.
"""

from .loop_controller import LoopController, LoopMode, LoopRegion
from .position_poller import PositionPoller
from .playback_engine import (
    PlaybackEngine,
    PlaybackState,
    PlaybackInfoListener,
    MediaLoadError,
    LoadResult,
    Track,
)

__all__ = [
    'PlaybackEngine',
    'PlaybackState',
    'PlaybackInfoListener',
    'MediaLoadError',
    'LoadResult',
    'Track',
    'LoopController',
    'LoopMode',
    'LoopRegion',
    'PositionPoller',
]
