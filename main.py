#!/usr/bin/env python3
"""
AB Loop - Practice Player with A/B Looping

Plays a single track and lets you loop any part of it at an adjustable speed.
This console host drives the playback engine with one-letter commands.

Usage:
    python main.py SOURCE [--ffmpeg PATH] [--debug]
"""

import os
import sys

# Must be done BEFORE importing pygame (which happens in backend imports)
os.environ['PYGAME_HIDE_SUPPORT_PROMPT'] = "1"

import logging
import argparse
import shutil
from datetime import datetime

# Ensure we can import from our package
sys.path.insert(0, os.path.dirname(__file__))

from config import LOG_DIR, get_base_path
from backend import PlaybackEngine, PlaybackInfoListener
from utils.formatting import format_millis, format_speed, parse_time

HELP_TEXT = """Commands:
  p        play / pause
  s        stop
  l        set loop (start -> end -> clear)
  f / b    skip forward / backward 5s
  + / -    speed up / down 5%
  g TIME   go to TIME (1:23 or 83.5)
  i        status
  h        help
  q        quit"""


# =============================================================================
# UTILS
# =============================================================================

def setup_logging(debug: bool = False, log_dir: str = LOG_DIR) -> logging.Logger:
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"ab_loop_{timestamp}.log")

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s.%(msecs)03d [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout), logging.FileHandler(log_file)]
    )
    return logging.getLogger("ABLoop")


def find_ffmpeg() -> str:
    """
    Find FFmpeg.
    PRIORITY 1: Check the local folder (next to the .exe or script).
    PRIORITY 2: Check global system PATH.
    """
    binary_name = "ffmpeg.exe" if os.name == 'nt' else "ffmpeg"

    local_binary = os.path.join(get_base_path(), binary_name)
    if os.path.isfile(local_binary):
        return local_binary

    if shutil.which("ffmpeg"):
        return "ffmpeg"

    # Fallback (likely to fail if not found above)
    return "ffmpeg"


def check_dependencies():
    missing = []
    for dep in ['pygame', 'numpy']:
        try:
            __import__(dep)
        except ImportError:
            missing.append(dep)
    if missing:
        print(f"Missing: {', '.join(missing)}")
        sys.exit(1)


class ConsoleListener(PlaybackInfoListener):
    """Prints engine notifications to the console."""

    def __init__(self, out=None):
        self.out = out or sys.stdout
        self.duration_ms = 0

    def _print(self, text):
        print(text, file=self.out)

    def on_duration_changed(self, duration_ms):
        self.duration_ms = duration_ms
        self._print(f"Duration: {format_millis(duration_ms)}")

    def on_position_changed(self, position_ms):
        self._print(f"{format_millis(position_ms)}/{format_millis(self.duration_ms)}")

    def on_state_changed(self, state):
        self._print(f"[{state.name}]")

    def on_loop_changed(self, region, start_label, end_label):
        self._print(f"{start_label}  {end_label}")


# =============================================================================
# COMMANDS
# =============================================================================

def handle_command(engine: PlaybackEngine, line: str, out=None) -> bool:
    """
    Run one console command against the engine.

    Returns:
        False when the host should exit
    """
    out = out or sys.stdout
    parts = line.strip().split(maxsplit=1)
    if not parts:
        return True
    cmd = parts[0].lower()

    if cmd == "q":
        return False
    elif cmd == "p":
        engine.toggle_play_pause()
    elif cmd == "s":
        engine.stop()
    elif cmd == "l":
        engine.set_loop()
    elif cmd == "f":
        engine.skip_forward()
    elif cmd == "b":
        engine.skip_backward()
    elif cmd in ("+", "-"):
        speed = engine.adjust_speed(1 if cmd == "+" else -1)
        print(f"Current Speed: {format_speed(speed)}", file=out)
    elif cmd == "g":
        seconds = parse_time(parts[1]) if len(parts) > 1 else None
        if seconds is None:
            print("Usage: g TIME (e.g. g 1:23)", file=out)
        else:
            engine.seek_to(int(seconds * 1000))
    elif cmd == "i":
        position, duration = engine.get_time()
        print(
            f"{engine.state.name} {format_millis(position)}/{format_millis(duration)} "
            f"speed {format_speed(engine.speed)} | {engine.loop.start_label} {engine.loop.end_label}",
            file=out,
        )
    elif cmd == "h":
        print(HELP_TEXT, file=out)
    else:
        print(f"Unknown command: {cmd} (h for help)", file=out)
    return True


def build_engine(ffmpeg_path: str, listener=None) -> PlaybackEngine:
    # Late import so the engine can be built without touching the audio device
    from backend.audio_engine import AudioEngine

    engine = PlaybackEngine(lambda: AudioEngine(ffmpeg_path=ffmpeg_path), listener=listener)
    if listener is not None and hasattr(listener, "on_loop_changed"):
        engine.on('loop_changed', listener.on_loop_changed)
    return engine


# =============================================================================
# MAIN
# =============================================================================

def main(argv=None):
    parser = argparse.ArgumentParser(description="Practice player with A/B looping")
    parser.add_argument("source", help="Audio file path or URL")
    parser.add_argument("--ffmpeg", default=None)
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args(argv)

    check_dependencies()
    logger = setup_logging(debug=args.debug)
    logger.info("AB Loop Starting")

    ffmpeg_path = args.ffmpeg or find_ffmpeg()
    logger.info(f"Using ffmpeg: {ffmpeg_path}")

    engine = build_engine(ffmpeg_path, listener=ConsoleListener())
    result = engine.load(args.source)
    if not result:
        logger.error(f"Could not load track: {result.error}")
        engine.release()
        return 1

    print(HELP_TEXT)
    try:
        for line in sys.stdin:
            if not handle_command(engine, line):
                break
    except KeyboardInterrupt:
        pass
    finally:
        engine.release()
        logger.info("AB Loop Exiting")
    return 0


if __name__ == "__main__":
    sys.exit(main())
