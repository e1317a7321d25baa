"""Shared fakes for the playback tests.

FakePlayer stands in for the pygame AudioEngine so the controller can be
tested without an audio device or ffmpeg.
"""

import pytest

from backend import PlaybackEngine


class FakePlayer:
    def __init__(self, duration_ms=180000, fail_on=()):
        self.duration_ms = duration_ms
        self.fail_on = set(fail_on)
        self.position = 0
        self.playing = False
        self.rate = 1.0
        self.looping = False
        self.released = False
        self.source = None
        self.calls = []

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")

    def call_names(self):
        return [call[0] for call in self.calls]

    def set_data_source(self, source):
        self._record("set_data_source", source)
        self.source = source

    def prepare(self):
        self._record("prepare")

    def start(self):
        self._record("start")
        self.playing = True

    def pause(self):
        self._record("pause")
        self.playing = False

    def seek_to(self, position_ms):
        self._record("seek_to", position_ms)
        self.position = position_ms

    def set_playback_rate(self, rate):
        self._record("set_playback_rate", rate)
        self.rate = rate

    def set_looping(self, looping):
        self._record("set_looping", looping)
        self.looping = looping

    def get_current_position(self):
        if "get_current_position" in self.fail_on:
            raise RuntimeError("get_current_position failed")
        return self.position

    def get_duration(self):
        return self.duration_ms

    def is_playing(self):
        return self.playing

    def release(self):
        self._record("release")
        self.released = True


class ManualPoller:
    """Replaces the background poller; tests call engine.sync_position() themselves."""

    def __init__(self):
        self.starts = 0
        self.stops = 0
        self.scheduled = False

    def start(self):
        if self.scheduled:
            return False
        self.starts += 1
        self.scheduled = True
        return True

    def stop(self, join=True, timeout=None):
        self.stops += 1
        self.scheduled = False

    def is_scheduled(self):
        return self.scheduled


class RecordingListener:
    def __init__(self):
        self.events = []

    def on_duration_changed(self, duration_ms):
        self.events.append(("duration", duration_ms))

    def on_position_changed(self, position_ms):
        self.events.append(("position", position_ms))

    def on_state_changed(self, state):
        self.events.append(("state", state))

    def of(self, kind):
        return [value for name, value in self.events if name == kind]


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def players():
    return []


@pytest.fixture
def make_engine(players, listener):
    def _make(duration_ms=180000, fail_on=()):
        def factory():
            player = FakePlayer(duration_ms=duration_ms, fail_on=fail_on)
            players.append(player)
            return player

        engine = PlaybackEngine(factory, listener=listener)
        engine._poller = ManualPoller()
        return engine

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()
