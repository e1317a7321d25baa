import pytest

from backend import LoopMode, LoopRegion, MediaLoadError, PlaybackEngine, PlaybackState


def test_load_notifies_duration_once_before_position(engine, listener, players):
    result = engine.load("song.mp3")

    assert result
    assert result.ok is True
    assert result.track.duration_ms == 180000
    assert engine.state == PlaybackState.STOPPED
    assert engine.loop.mode == LoopMode.IDLE
    assert listener.of("duration") == [180000]
    assert listener.events.index(("duration", 180000)) < listener.events.index(("position", 0))
    assert players[0].call_names()[:2] == ["set_data_source", "prepare"]
    assert ("set_looping", True) in players[0].calls


def test_load_failure_is_returned_not_raised(make_engine, listener, players):
    engine = make_engine(fail_on={"prepare"})

    result = engine.load("broken.mp3")

    assert not result
    assert isinstance(result.error, MediaLoadError)
    assert result.error.source == "broken.mp3"
    assert isinstance(result.error.cause, RuntimeError)
    assert engine.state == PlaybackState.UNINITIALIZED
    assert engine.is_initialized() is False
    assert players[0].released is True
    assert listener.of("duration") == []
    assert engine.play() == PlaybackState.UNINITIALIZED


def test_load_releases_previous_player(engine, players):
    engine.load("a.mp3")
    engine.load("b.mp3")

    assert len(players) == 2
    assert players[0].released is True
    assert players[1].released is False


def test_toggle_play_pause_alternates(engine, listener):
    engine.load("song.mp3")

    assert engine.toggle_play_pause() == PlaybackState.PLAYING
    assert engine.toggle_play_pause() == PlaybackState.PAUSED
    assert listener.of("state")[-2:] == [PlaybackState.PLAYING, PlaybackState.PAUSED]


def test_play_twice_keeps_playing(engine, listener):
    engine.load("song.mp3")

    assert engine.play() == PlaybackState.PLAYING
    assert engine.play() == PlaybackState.PLAYING
    assert listener.of("state").count(PlaybackState.PAUSED) == 0


def test_transport_calls_without_track_are_ignored(engine, listener):
    assert engine.play() == PlaybackState.UNINITIALIZED
    assert engine.pause() == PlaybackState.UNINITIALIZED
    assert engine.stop() == PlaybackState.UNINITIALIZED
    engine.seek_to(1000)
    engine.skip_forward()
    engine.skip_backward()

    assert engine.set_loop() == LoopMode.DISABLED
    assert engine.sync_position() is None
    assert engine.get_time() == (0, 0)
    assert listener.events == []


def test_play_reapplies_speed_and_schedules_poller_once(engine, players):
    engine.load("song.mp3")
    engine.adjust_speed(1)

    engine.play()
    engine.play()
    engine.pause()
    engine.play()

    player = players[0]
    assert player.call_names().count("start") == 2
    assert player.rate == pytest.approx(1.05)
    assert engine._poller.starts == 1
    assert engine._poller.is_scheduled() is True


def test_pause_keeps_poller_scheduled(engine):
    engine.load("song.mp3")
    engine.play()
    engine.pause()

    assert engine._poller.is_scheduled() is True
    assert engine.state == PlaybackState.PAUSED


def test_stop_rewinds_to_start(engine, players, listener):
    engine.load("song.mp3")
    engine.play()
    players[0].position = 42000

    assert engine.stop() == PlaybackState.STOPPED
    assert players[0].position == 0
    assert players[0].playing is False
    assert listener.of("position")[-1] == 0


def test_seek_is_forwarded_unchanged(engine, players):
    engine.load("song.mp3")

    engine.seek_to(250000)

    assert ("seek_to", 250000) in players[0].calls


def test_skip_moves_five_seconds_and_clamps(engine, players):
    engine.load("song.mp3")
    player = players[0]

    player.position = 60000
    engine.skip_forward()
    assert player.position == 65000
    engine.skip_backward()
    assert player.position == 60000

    player.position = 2000
    engine.skip_backward()
    assert player.position == 0

    player.position = 178000
    engine.skip_forward()
    assert player.position == 180000


def test_failed_skip_does_not_publish_position(make_engine, players, listener):
    engine = make_engine(fail_on={"seek_to"})
    engine.load("song.mp3")
    players[0].position = 60000
    published = list(listener.of("position"))

    engine.skip_forward()
    engine.skip_backward()

    assert listener.of("position") == published
    assert engine.get_position() == 60000


def test_speed_steps_stop_short_of_bounds(engine):
    for _ in range(40):
        engine.adjust_speed(1)
    assert engine.speed == 2.45
    assert engine.adjust_speed(1) == 2.45

    engine.adjust_speed(-1)
    assert engine.speed == 2.40
    assert engine.adjust_speed(1) == 2.45

    for _ in range(60):
        engine.adjust_speed(-1)
    assert engine.speed == 0.25
    assert engine.speed_percent == 25
    assert engine.adjust_speed(-1) == 0.25


def test_speed_returns_to_default_without_drift(engine):
    for _ in range(7):
        engine.adjust_speed(-1)
    for _ in range(7):
        engine.adjust_speed(1)

    assert engine.speed == 1.0


def test_speed_applied_to_player_only_while_playing(engine, players):
    engine.load("song.mp3")
    engine.adjust_speed(-1)
    assert "set_playback_rate" not in players[0].call_names()

    engine.play()
    engine.adjust_speed(-1)
    assert players[0].rate == pytest.approx(0.90)


def test_speed_change_event(engine):
    speeds = []
    engine.on('speed_changed', speeds.append)

    engine.adjust_speed(1)
    for _ in range(40):
        engine.adjust_speed(1)

    assert speeds[0] == pytest.approx(1.05)
    assert speeds[-1] == pytest.approx(2.45)
    assert len(speeds) == 29


def test_adjust_speed_rejects_bad_direction(engine):
    with pytest.raises(ValueError):
        engine.adjust_speed(2)


def test_set_loop_switches_player_looping(engine, players):
    engine.load("song.mp3")
    player = players[0]

    player.position = 5000
    assert engine.set_loop() == LoopMode.START_CAPTURED
    assert player.looping is True

    player.position = 3000
    assert engine.set_loop() == LoopMode.ARMED
    assert engine.loop_region == LoopRegion(start=3000, end=5000, armed=True)
    assert player.looping is False

    assert engine.set_loop() == LoopMode.IDLE
    assert engine.loop_region.armed is False
    assert player.looping is True


def test_set_loop_emits_labels(engine, players):
    changes = []
    engine.on('loop_changed', lambda region, start, end: changes.append((start, end)))
    engine.load("song.mp3")

    players[0].position = 65000
    engine.set_loop()

    assert changes[-1] == ("Loop Start: 1:05", "Loop End: N/A")


def test_set_loop_skipped_when_position_unreadable(make_engine):
    engine = make_engine(fail_on={"get_current_position"})
    engine.load("song.mp3")

    assert engine.set_loop() == LoopMode.IDLE
    assert engine.loop_region == LoopRegion()


def test_poller_tick_loops_back_to_start(make_engine, players, listener):
    engine = make_engine(duration_ms=100000)
    engine.load("song.mp3")
    player = players[0]
    engine.play()

    player.position = 10000
    engine.set_loop()
    player.position = 90000
    engine.set_loop()

    player.position = 90000
    assert engine.sync_position() == 90000

    assert player.position == 10000
    assert engine.get_position() == 10000
    assert listener.of("position")[-1] == 10000
    assert engine.state == PlaybackState.PLAYING


def test_loop_back_resumes_stopped_player(make_engine, players):
    engine = make_engine(duration_ms=100000)
    engine.load("song.mp3")
    player = players[0]
    engine.play()
    player.position = 10000
    engine.set_loop()
    player.position = 50000
    engine.set_loop()

    # Player ran off the end on its own
    player.playing = False
    player.position = 100000
    engine.sync_position()

    assert player.playing is True
    assert player.position == 10000
    assert engine.state == PlaybackState.PLAYING


def test_pause_past_loop_end_is_not_undone(engine, players):
    engine.load("song.mp3")
    player = players[0]
    engine.play()
    player.position = 10000
    engine.set_loop()
    player.position = 20000
    engine.set_loop()

    engine.pause()
    engine.seek_to(30000)
    engine.sync_position()

    assert engine.state == PlaybackState.PAUSED
    assert player.playing is False
    assert player.position == 30000
    assert engine.get_position() == 30000


def test_zero_length_loop_captured_while_paused_stays_paused(engine, players):
    engine.load("song.mp3")
    player = players[0]
    engine.play()
    engine.pause()
    player.position = 40000
    engine.set_loop()
    engine.set_loop()
    assert engine.loop_region.armed is True

    engine.sync_position()
    engine.sync_position()

    assert engine.state == PlaybackState.PAUSED
    assert player.playing is False
    assert "seek_to" not in player.call_names()


def test_stopped_track_with_armed_loop_stays_stopped(engine, players):
    engine.load("song.mp3")
    player = players[0]
    player.position = 10000
    engine.set_loop()
    player.position = 20000
    engine.set_loop()
    engine.stop()

    player.position = 25000
    engine.sync_position()

    assert engine.state == PlaybackState.STOPPED
    assert player.playing is False


def test_poller_tick_inside_loop_does_not_seek(engine, players):
    engine.load("song.mp3")
    engine.play()
    player = players[0]
    player.position = 10000
    engine.set_loop()
    player.position = 20000
    engine.set_loop()

    player.position = 15000
    engine.sync_position()

    assert player.position == 15000
    assert "seek_to" not in player.call_names()


def test_poller_tick_only_publishes_changed_positions(engine, players, listener):
    engine.load("song.mp3")
    engine.play()
    players[0].position = 3000

    engine.sync_position()
    engine.pause()
    engine.sync_position()
    engine.sync_position()

    assert listener.of("position") == [0, 3000]


def test_loading_new_track_resets_loop(engine, players):
    engine.load("a.mp3")
    players[0].position = 1000
    engine.set_loop()
    players[0].position = 2000
    engine.set_loop()
    assert engine.loop_region.armed is True

    engine.load("b.mp3")

    assert engine.loop_region == LoopRegion(start=0, end=0, armed=False)
    assert engine.loop.mode == LoopMode.IDLE
    assert players[1].looping is True


def test_release_makes_engine_inert(engine, players):
    engine.load("song.mp3")
    engine.play()

    engine.release()

    assert players[0].released is True
    assert engine._poller.is_scheduled() is False
    assert engine.state == PlaybackState.UNINITIALIZED
    assert engine.loop.mode == LoopMode.DISABLED
    assert engine.play() == PlaybackState.UNINITIALIZED
    assert engine.sync_position() is None

    assert engine.load("again.mp3")
    assert engine.state == PlaybackState.STOPPED


def test_player_failures_are_swallowed(make_engine, players):
    engine = make_engine(fail_on={"seek_to", "start"})
    engine.load("song.mp3")

    engine.seek_to(1000)
    assert engine.play() == PlaybackState.PLAYING


def test_failing_callback_does_not_break_engine(make_engine):
    engine = make_engine()

    def _boom(_duration):
        raise RuntimeError("ui gone")

    engine.on('duration_changed', _boom)

    assert engine.load("song.mp3")
    assert engine.state == PlaybackState.STOPPED


def test_unknown_event_and_off(engine, listener):
    engine.on('no_such_event', print)
    engine.off('state_changed', listener.on_state_changed)

    engine.load("song.mp3")

    assert listener.of("state") == []


def test_get_time_reports_position_and_duration(engine, players):
    engine.load("song.mp3")
    players[0].position = 12345

    assert engine.get_time() == (12345, 180000)


def test_engine_without_listener():
    engine = PlaybackEngine(lambda: None)
    result = engine.load("song.mp3")

    assert not result
    assert isinstance(result.error.cause, AttributeError)
