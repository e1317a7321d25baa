"""
Configuration constants for AB Loop.

All tunable parameters in one place for easy adjustment and debugging.
Modify these values to fine-tune playback, looping and practice behavior.
"""

import os
import sys

# =============================================================================
# PATHS
# =============================================================================

# HELPER: Detect if we are running as a compiled exe or a script
def get_base_path():
    if getattr(sys, 'frozen', False):
        # We are running as an exe - use the folder the exe is sitting in
        return os.path.dirname(sys.executable)
    else:
        # We are running as a script - use the script's folder
        return os.path.dirname(os.path.abspath(__file__))

# ROOT DIR
BASE_DIR = get_base_path()

# Log files written by the console host
LOG_DIR = os.path.join(BASE_DIR, "logs")

# =============================================================================
# AUDIO OUTPUT SETTINGS
# =============================================================================

# Sample rate for decoded audio and the pygame mixer (Hz)
SAMPLE_RATE = 44100

# Number of audio channels (2 = stereo)
CHANNELS = 2

# Pygame mixer buffer size (lower = less latency, but more CPU)
MIXER_BUFFER_SIZE = 1024

# Seconds to wait for ffmpeg to decode a track before giving up
DECODE_TIMEOUT_S = 120

# Length of each PCM window handed to the mixer (seconds)
# Must be longer than the poller interval, which refills the queue
RENDER_WINDOW_S = 10

# =============================================================================
# POSITION POLLER SETTINGS
# =============================================================================

# How often the position poller samples playback (milliseconds)
# Each tick updates the UI and enforces the A/B loop
POSITION_REFRESH_INTERVAL_MS = 1000

# How long release() waits for an in-flight tick to finish (seconds)
POLLER_JOIN_TIMEOUT_S = 2.0

# =============================================================================
# TRANSPORT SETTINGS
# =============================================================================

# Skip forward / backward offset (milliseconds)
SKIP_INTERVAL_MS = 5000

# =============================================================================
# LOOP SETTINGS
# =============================================================================

# Distance kept between a loop end and the hard end of the track (milliseconds)
# The poller must see the loop end before the player's own end-of-track fires
LOOP_END_GUARD_MS = 250

# =============================================================================
# SPEED SETTINGS
# Speeds are kept as integer percentages so repeated steps never drift
# =============================================================================

DEFAULT_SPEED_PERCENT = 100
SPEED_STEP_PERCENT = 5

# Exclusive bounds: a step landing on either bound is ignored
SPEED_MIN_PERCENT = 20
SPEED_MAX_PERCENT = 250

# =============================================================================
# FILE SETTINGS
# =============================================================================

# Supported audio formats
SUPPORTED_FORMATS = ('.mp3', '.wav', '.ogg', '.flac', '.m4a', '.aac')
