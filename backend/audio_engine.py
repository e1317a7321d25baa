"""
Audio Engine for AB Loop.

The low-level audio output primitive that PlaybackEngine wraps.

Decoding is done once per track: ffmpeg streams the source (local file or
URI) as 16-bit PCM into a temp file that is memory-mapped with numpy, so a
long track never has to sit in RAM twice.

Speed is applied by resampling the whole track once per rate (varispeed).
Playback slices the rendered PCM into short windows: one plays on a mixer
channel while the next waits in the channel queue, so a seek or loop-back only
builds one window. The playback position is tracked against a monotonic clock:

    position = offset + elapsed * rate

This module has NO UI dependencies and can be tested independently.
"""

import io
import os
import sys
import time
import wave
import logging
import tempfile
import threading
import subprocess
from urllib.parse import urlparse

import numpy as np

# Suppress console window on Windows for subprocess calls
_SUBPROCESS_FLAGS = {}
if os.name == 'nt':
    _SUBPROCESS_FLAGS['creationflags'] = subprocess.CREATE_NO_WINDOW

# Must be set BEFORE pygame is imported
os.environ.setdefault('PYGAME_HIDE_SUPPORT_PROMPT', "1")

# Add parent directory to path for config import
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import pygame
from config import (
    SAMPLE_RATE, CHANNELS, MIXER_BUFFER_SIZE,
    DECODE_TIMEOUT_S, SUPPORTED_FORMATS, RENDER_WINDOW_S,
)

logger = logging.getLogger("ABLoop.AudioEngine")


def is_uri(source):
    """True for "scheme://..." sources. Windows drive letters are not schemes."""
    parsed = urlparse(str(source))
    return len(parsed.scheme) > 1 and bool(parsed.netloc or parsed.path)


def resample(samples, rate):
    """
    Resample interleaved PCM frames for playback at `rate` times normal speed.

    Uses linear interpolation per channel. Pitch follows the speed.

    Args:
        samples: int16 array of shape (frames, channels)
        rate: Playback rate, 1.0 = unchanged

    Returns:
        int16 array of shape (round(frames / rate), channels)
    """
    samples = np.asarray(samples)
    if rate == 1.0 or len(samples) == 0:
        return np.ascontiguousarray(samples, dtype=np.int16)

    out_frames = max(int(round(len(samples) / rate)), 1)
    source_index = np.arange(out_frames, dtype=np.float64) * rate
    base_index = np.arange(len(samples), dtype=np.float64)

    resampled = np.empty((out_frames, samples.shape[1]), dtype=np.float32)
    for channel in range(samples.shape[1]):
        resampled[:, channel] = np.interp(source_index, base_index, samples[:, channel])

    return np.clip(resampled, -32768, 32767).astype(np.int16)


class AudioEngine:
    """
    pygame/numpy backed audio player with seek, rate and looping support.

    Usage:
        player = AudioEngine()
        player.set_data_source("song.mp3")
        player.prepare()
        player.set_playback_rate(1.05)
        player.start()
        player.get_current_position()  # milliseconds
        player.release()
    """

    def __init__(self, ffmpeg_path="ffmpeg"):
        """
        Initialize the audio engine.

        Args:
            ffmpeg_path: Path to ffmpeg executable for audio conversion
        """
        self.ffmpeg_path = ffmpeg_path

        if not pygame.mixer.get_init():
            pygame.mixer.init(
                frequency=SAMPLE_RATE,
                size=-16,
                channels=CHANNELS,
                buffer=MIXER_BUFFER_SIZE
            )

        # Source and decoded audio
        self.current_source = None
        self.raw_audio_data = None  # Full track as numpy memmap (int16, stereo)
        self._temp_audio_path = None
        self.duration_ms = 0
        self.prepared = False

        self._rendered = None       # Track resampled for the current rate

        # Output
        self._sound = None
        self._channel = None
        self._next_frame = 0        # First rendered frame not yet handed to the mixer

        # Playback state
        self.rate = 1.0
        self.looping = False
        self._playing = False
        self._offset_ms = 0.0        # Track position where the current segment started
        self._anchor = 0.0           # time.monotonic() when the current segment started

        # Thread safety - use a single RLock for all state
        self.lock = threading.RLock()

        logger.debug("AudioEngine initialized")

    # =========================================================================
    # SOURCE LOADING
    # =========================================================================

    def set_data_source(self, source):
        """
        Bind a local file path or a URI.

        Raises:
            FileNotFoundError: Local file does not exist
            ValueError: Local file has an unsupported extension
        """
        source = str(source)
        if not is_uri(source):
            if not os.path.isfile(source):
                raise FileNotFoundError(source)
            if not source.lower().endswith(SUPPORTED_FORMATS):
                raise ValueError(f"Unsupported audio format: {os.path.basename(source)}")

        with self.lock:
            self.current_source = source
            self.prepared = False
        logger.debug(f"Data source set: {source}")

    def prepare(self):
        """
        Read the duration of the bound source and decode it. Blocks until decoding finishes.

        Raises:
            RuntimeError: No source bound, or ffmpeg could not decode it
        """
        if self.current_source is None:
            raise RuntimeError("No data source set")

        logger.info(f"=== PREPARING: {os.path.basename(self.current_source)} ===")
        duration_s = self._get_duration_ffprobe(self.current_source)
        self._load_raw_audio(self.current_source)

        frames = len(self.raw_audio_data)
        if duration_s <= 0:
            logger.warning("ffprobe failed, using decoded length for duration")
            duration_s = frames / SAMPLE_RATE

        with self.lock:
            self.duration_ms = int(duration_s * 1000)
            self._offset_ms = 0.0
            self._render()
            self.prepared = True
        logger.info(f"Track duration: {self.duration_ms}ms ({frames} frames)")

    def _get_duration_ffprobe(self, source):
        """
        Get audio duration using ffprobe. Fast, no memory spike.

        Returns:
            Duration in seconds, or 0.0 on failure
        """
        try:
            # Derive ffprobe path from ffmpeg path
            ffprobe_path = self.ffmpeg_path.replace("ffmpeg", "ffprobe")

            cmd = [
                ffprobe_path,
                '-v', 'quiet',
                '-show_entries', 'format=duration',
                '-of', 'default=noprint_wrappers=1:nokey=1',
                source
            ]
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=10,
                **_SUBPROCESS_FLAGS
            )

            if proc.returncode == 0 and proc.stdout.strip():
                duration = float(proc.stdout.strip())
                logger.debug(f"ffprobe duration: {duration:.3f}s")
                return duration
            logger.warning("ffprobe returned non-zero or empty output")
            return 0.0

        except FileNotFoundError:
            logger.warning("ffprobe not found, will use fallback")
            return 0.0
        except (subprocess.SubprocessError, ValueError) as e:
            logger.warning(f"ffprobe error: {e}")
            return 0.0

    def _load_raw_audio(self, source):
        """
        Decode the source into a memory-mapped PCM temp file.

        Raises:
            RuntimeError: ffmpeg failed or produced no audio
        """
        logger.debug("Decoding audio via ffmpeg into memory map...")
        self._close_raw_audio()

        # delete=False is required so we can close it and re-open it with memmap
        temp_file = tempfile.NamedTemporaryFile(suffix='.pcm', delete=False)
        self._temp_audio_path = temp_file.name

        cmd = [
            self.ffmpeg_path, '-i', source,
            '-f', 's16le', '-ar', str(SAMPLE_RATE), '-ac', str(CHANNELS),
            '-v', 'quiet', '-'
        ]
        try:
            proc = subprocess.run(
                cmd, stdout=temp_file, stderr=subprocess.PIPE,
                timeout=DECODE_TIMEOUT_S, **_SUBPROCESS_FLAGS
            )
        except (OSError, subprocess.SubprocessError) as e:
            temp_file.close()
            raise RuntimeError(f"ffmpeg could not run: {e}") from e
        finally:
            if not temp_file.closed:
                temp_file.flush()
                temp_file.close()

        if proc.returncode != 0:
            raise RuntimeError(f"ffmpeg failed to decode audio (exit code {proc.returncode})")

        # 16-bit audio = 2 bytes per sample per channel
        total_frames = os.path.getsize(self._temp_audio_path) // (2 * CHANNELS)
        if total_frames == 0:
            raise RuntimeError("Decoded audio is empty")

        self.raw_audio_data = np.memmap(
            self._temp_audio_path,
            dtype=np.int16,
            mode='r',
            shape=(total_frames, CHANNELS)
        )
        logger.info(f"Memory map created: {total_frames} frames at {self._temp_audio_path}")

    def _close_raw_audio(self):
        """Close the memory map and delete the temp file behind it."""
        if isinstance(self.raw_audio_data, np.memmap):
            try:
                # Force close so Python releases the file lock
                self.raw_audio_data._mmap.close()
            except (AttributeError, ValueError) as e:
                logger.warning(f"Error closing memmap: {e}")
        self.raw_audio_data = None

        if self._temp_audio_path and os.path.exists(self._temp_audio_path):
            try:
                os.unlink(self._temp_audio_path)
                logger.debug(f"Deleted temp file: {self._temp_audio_path}")
            except OSError as e:
                logger.warning(f"Could not delete temp file: {e}")
        self._temp_audio_path = None

    # =========================================================================
    # OUTPUT
    # =========================================================================

    def _make_sound(self, samples):
        """Wrap int16 PCM frames in a pygame Sound via an in-memory WAV."""
        wav_buffer = io.BytesIO()
        with wave.open(wav_buffer, 'wb') as wf:
            wf.setnchannels(CHANNELS)
            wf.setsampwidth(2)  # 16-bit = 2 bytes
            wf.setframerate(SAMPLE_RATE)
            wf.writeframes(np.ascontiguousarray(samples, dtype=np.int16).tobytes())
        wav_buffer.seek(0)
        return pygame.mixer.Sound(file=wav_buffer)

    def _render(self):
        """Resample the whole track for the current rate. Done once per rate."""
        if self.raw_audio_data is None:
            self._rendered = None
        elif self.rate == 1.0:
            self._rendered = self.raw_audio_data
        else:
            start_time = time.monotonic()
            self._rendered = resample(self.raw_audio_data, self.rate)
            elapsed = (time.monotonic() - start_time) * 1000
            logger.debug(f"Rendered track at {self.rate:.2f}x ({elapsed:.0f}ms)")

    def _window_sound(self, start_frame):
        """A Sound holding the next render window from start_frame."""
        window = int(RENDER_WINDOW_S * SAMPLE_RATE)
        self._next_frame = start_frame + window
        return self._make_sound(self._rendered[start_frame:self._next_frame])

    def _queue_next_window(self):
        """Keep one window queued behind the playing one so output never runs dry."""
        if self._channel is None or self._rendered is None:
            return
        if self._next_frame >= len(self._rendered) or self._channel.get_queue() is not None:
            return
        self._channel.queue(self._window_sound(self._next_frame))

    def _play_from(self, position_ms):
        """Play the rendered track from position_ms at the current rate."""
        self._stop_channel()
        self._offset_ms = float(position_ms)
        self._playing = False

        # Rendered frames are stretched by 1/rate relative to the source
        start_frame = int(position_ms / 1000.0 * SAMPLE_RATE / self.rate)
        if start_frame >= len(self._rendered):
            logger.debug("Nothing left to play at end of track")
            return

        self._sound = self._window_sound(start_frame)
        self._channel = self._sound.play()
        if self._channel is None:
            logger.warning("No free mixer channel, playback did not start")
            self._sound = None
            return

        self._queue_next_window()
        self._anchor = time.monotonic()
        self._playing = True
        logger.debug(f"[PLAY] from {position_ms:.0f}ms at {self.rate:.2f}x")

    def _stop_channel(self):
        if self._channel is not None:
            self._channel.stop()
            self._channel = None
        self._sound = None

    def _require_prepared(self):
        if not self.prepared or self._rendered is None:
            raise RuntimeError("AudioEngine is not prepared")

    # =========================================================================
    # TRANSPORT CONTROLS
    # =========================================================================

    def start(self):
        """Start or resume playback from the current position."""
        with self.lock:
            self._require_prepared()
            if self._playing:
                return
            position = self._offset_ms
            if position >= self.duration_ms:
                position = 0
            self._play_from(position)

    def pause(self):
        """Pause playback, keeping the current position."""
        with self.lock:
            if not self._playing:
                return
            self._offset_ms = self._compute_position()
            self._stop_channel()
            self._playing = False
            logger.debug(f"[PAUSE] at {self._offset_ms:.0f}ms")

    def seek_to(self, position_ms):
        """Move to position_ms, clamped to the track."""
        with self.lock:
            self._require_prepared()
            position_ms = max(0, min(position_ms, self.duration_ms))
            if self._playing:
                self._play_from(position_ms)
            else:
                self._offset_ms = float(position_ms)

    def set_playback_rate(self, rate):
        """Change the playback rate; applied immediately if playing."""
        if rate <= 0:
            raise ValueError(f"Playback rate must be positive, got {rate}")
        with self.lock:
            if rate == self.rate:
                return
            playing = self._playing
            if playing:
                self._offset_ms = self._compute_position()
                self._stop_channel()
                self._playing = False
            self.rate = rate
            self._render()
            if playing:
                self._play_from(self._offset_ms)
            logger.debug(f"Playback rate set to {rate:.2f}x")

    def set_looping(self, looping):
        """Restart from 0 at the end of the track instead of stopping."""
        with self.lock:
            self.looping = bool(looping)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def _compute_position(self):
        if not self._playing:
            return self._offset_ms
        elapsed_ms = (time.monotonic() - self._anchor) * 1000.0
        return self._offset_ms + elapsed_ms * self.rate

    def get_current_position(self):
        """Current position in milliseconds. Handles reaching the track end."""
        with self.lock:
            self._require_prepared()
            position = self._compute_position()
            if self._playing:
                self._queue_next_window()
            if position >= self.duration_ms and self._playing:
                if self.looping:
                    logger.debug("End of track reached, looping to start")
                    self._play_from(0)
                    return 0
                self._stop_channel()
                self._playing = False
                self._offset_ms = float(self.duration_ms)
                logger.info("[STOP] End of track reached")
                return self.duration_ms
            return int(min(position, self.duration_ms))

    def get_duration(self):
        """Track duration in milliseconds."""
        with self.lock:
            self._require_prepared()
            return self.duration_ms

    def is_playing(self):
        with self.lock:
            return self._playing

    # =========================================================================
    # CLEANUP
    # =========================================================================

    def release(self):
        """
        Stop output and free the decoded audio.
        The engine cannot be used again; create a new one for the next track.
        """
        logger.debug("Releasing AudioEngine resources...")
        with self.lock:
            self._stop_channel()
            self._playing = False
            self.prepared = False
            self._rendered = None
            self.current_source = None
            self._close_raw_audio()
