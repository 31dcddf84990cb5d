from __future__ import annotations

import logging
import os
import queue
import tempfile
import threading
from enum import Enum
from typing import Callable, List, Optional

import numpy as np
import soundfile as sf

from audio_utils import input_level, trim_silence

logger = logging.getLogger(__name__)

CAPTURE_FILE = "speaker_attempt.wav"

# (samples, samplerate) -> partial transcript
LiveRecognizer = Callable[[np.ndarray, int], str]


def default_capture_path() -> str:
    return os.path.join(tempfile.gettempdir(), CAPTURE_FILE)


class RecorderStatus(Enum):
    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting_permission"
    PERMISSION_DENIED = "permission_denied"
    STARTING = "starting"
    RECORDING = "recording"
    START_FAILED = "start_failed"
    STOPPING = "stopping"
    STOP_FAILED = "stop_failed"


class SoundDeviceBackend:
    """PortAudio input via sounddevice."""

    def __init__(self, device=None):
        self.device = device

    def has_input_device(self) -> bool:
        import sounddevice as sd

        try:
            info = sd.query_devices(self.device, kind="input")
        except Exception as e:  # PortAudioError / ValueError when no device
            logger.info("No input device: %s", e)
            return False
        return bool(info) and int(info.get("max_input_channels", 0)) > 0

    def open_input_stream(self, samplerate: int, callback):
        import sounddevice as sd

        # bigger blocks and high latency for robustness
        return sd.InputStream(
            device=self.device,
            samplerate=samplerate,
            channels=1,
            dtype="float32",
            blocksize=2048,
            latency="high",
            callback=callback,
        )


class Recorder:
    """
    Captures one attempt at a time into a fixed file.

    While recording, `level` holds a normalized input meter in [0, 1] and
    `partial_text` a best-effort live transcript ("" when unavailable).
    start()/stop() never raise: they return the audio path or None and leave
    the reason in `status` / `last_error`.
    """

    def __init__(
        self,
        capture_path: Optional[str] = None,
        samplerate: int = 16_000,
        backend=None,
        live_recognizer: Optional[LiveRecognizer] = None,
        partial_interval: float = 1.0,
    ):
        self.capture_path = capture_path or default_capture_path()
        self.sr = samplerate
        self.backend = backend or SoundDeviceBackend()
        self.live_recognizer = live_recognizer
        self.partial_interval = partial_interval

        self.status = RecorderStatus.IDLE
        self.last_error: Optional[str] = None
        self.is_recording = False
        self.level = 0.0
        self.partial_text = ""
        self.xrun_count = 0

        self._stream = None
        self._rec_queue: Optional[queue.Queue] = None
        self._rec_writer: Optional[threading.Thread] = None
        self._rec_blocks: List[np.ndarray] = []
        self._blocks_lock = threading.Lock()
        self._partial_stop: Optional[threading.Event] = None
        self._partial_thread: Optional[threading.Thread] = None

    # --------------------------- permission --------------------------------

    def request_permission(self) -> bool:
        """
        Check that an input device can be opened. This is a synchronous,
        blocking query here; start() calls it first, so callers on the
        owning thread get the answer before capture begins.
        """
        self.status = RecorderStatus.REQUESTING_PERMISSION
        self.last_error = None
        try:
            granted = bool(self.backend.has_input_device())
        except Exception as e:
            logger.warning("Microphone check failed: %s", e)
            granted = False
        if granted:
            self.status = RecorderStatus.STARTING
        else:
            self.status = RecorderStatus.PERMISSION_DENIED
            self.last_error = "mic permission denied"
        return granted

    # --------------------------- capture -----------------------------------

    def start(self) -> Optional[str]:
        if self.is_recording:
            # a previous attempt is still open; drop it
            self._teardown()
        self.status = RecorderStatus.STARTING
        self.last_error = None

        if not self.request_permission():
            return None

        self._discard_file()
        self._rec_blocks = []
        self.xrun_count = 0
        self.level = 0.0
        self.partial_text = ""

        # queue + writer thread keep the realtime callback minimal
        self._rec_queue = queue.Queue(maxsize=256)
        self._rec_writer = threading.Thread(target=self._writer, name="rec-writer", daemon=True)
        self._rec_writer.start()

        try:
            self._stream = self.backend.open_input_stream(self.sr, self._record_callback)
            self._stream.start()
        except Exception as e:
            logger.warning("Recorder start failed: %s", e)
            self._teardown()
            self.status = RecorderStatus.START_FAILED
            self.last_error = "recorder start failed"
            return None

        self.is_recording = True
        self.status = RecorderStatus.RECORDING
        if self.live_recognizer is not None:
            self._start_partials()
        return self.capture_path

    def stop(self) -> Optional[str]:
        self.status = RecorderStatus.STOPPING
        self.last_error = None

        was_recording = self.is_recording
        self._teardown()
        if not was_recording:
            self.status = RecorderStatus.STOP_FAILED
            self.last_error = "stop called while not recording"
            return None

        with self._blocks_lock:
            blocks = list(self._rec_blocks)
        if self.xrun_count:
            logger.info("Input overflows / queue drops: %d", self.xrun_count)

        raw = np.concatenate(blocks, axis=0).reshape(-1) if blocks else np.zeros(0, dtype=np.float32)
        if raw.size:
            trimmed = trim_silence(raw, self.sr)
            # if trimming nuked almost everything, keep the raw take
            if trimmed.size < self.sr // 10:
                trimmed = raw
            try:
                sf.write(self.capture_path, trimmed.astype(np.float32), self.sr, format="WAV", subtype="PCM_16")
            except (OSError, RuntimeError) as e:
                logger.warning("Could not write attempt audio: %s", e)

        path = self.current_audio_path()
        if path is None:
            self.status = RecorderStatus.STOP_FAILED
            self.last_error = "no audio file"
        else:
            self.status = RecorderStatus.IDLE
        return path

    def current_audio_path(self) -> Optional[str]:
        try:
            if os.path.getsize(self.capture_path) > 0:
                return self.capture_path
        except OSError:
            pass
        return None

    # --------------------------- internals ---------------------------------

    def _discard_file(self) -> None:
        try:
            os.remove(self.capture_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove previous attempt file: %s", e)

    def _record_callback(self, indata, frames, time_info, status):
        if status and getattr(status, "input_overflow", False):
            self.xrun_count += 1
        try:
            # copy is required; PortAudio reuses the buffer
            if self._rec_queue is not None:
                self._rec_queue.put_nowait(np.array(indata, dtype=np.float32, copy=True))
        except queue.Full:
            self.xrun_count += 1

    def _writer(self) -> None:
        q = self._rec_queue
        while q is not None:
            block = q.get()
            if block is None:
                break
            with self._blocks_lock:
                self._rec_blocks.append(block)
            self.level = input_level(block)

    def _teardown(self) -> None:
        if self._stream is not None:
            for op in ("stop", "close"):
                try:
                    getattr(self._stream, op)()
                except Exception as e:
                    logger.debug("Input stream %s failed: %s", op, e)
            self._stream = None

        if self._rec_queue is not None:
            self._rec_queue.put(None)  # sentinel
        if self._rec_writer is not None:
            self._rec_writer.join(timeout=1.0)
        self._rec_writer = None
        self._rec_queue = None

        self._stop_partials()
        self.is_recording = False
        self.level = 0.0
        self.partial_text = ""

    def _start_partials(self) -> None:
        self._partial_stop = threading.Event()
        self._partial_thread = threading.Thread(
            target=self._partial_loop, args=(self._partial_stop,), name="rec-partials", daemon=True
        )
        self._partial_thread.start()

    def _stop_partials(self) -> None:
        if self._partial_stop is not None:
            self._partial_stop.set()
        if self._partial_thread is not None:
            self._partial_thread.join(timeout=self.partial_interval + 1.0)
        self._partial_stop = None
        self._partial_thread = None

    def _partial_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self.partial_interval):
            with self._blocks_lock:
                blocks = list(self._rec_blocks)
            if not blocks:
                continue
            samples = np.concatenate(blocks, axis=0).reshape(-1)
            try:
                text = self.live_recognizer(samples, self.sr)
            except Exception as e:
                logger.debug("Live transcript unavailable: %s", e)
                return
            if not stop.is_set():
                self.partial_text = (text or "").strip()
