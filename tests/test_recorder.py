import time
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

from recorder import Recorder, RecorderStatus


class FakeStream:
    def __init__(self, callback, blocks, fail_start=False):
        self.callback = callback
        self.blocks = blocks
        self.fail_start = fail_start
        self.stopped = False
        self.closed = False

    def start(self):
        if self.fail_start:
            raise RuntimeError("device busy")
        for block in self.blocks:
            self.callback(block, len(block), None, None)

    def stop(self):
        self.stopped = True

    def close(self):
        self.closed = True


class FakeBackend:
    def __init__(self, blocks=(), has_device=True, fail_start=False):
        self.blocks = list(blocks)
        self.has_device = has_device
        self.fail_start = fail_start
        self.streams = []

    def has_input_device(self):
        return self.has_device

    def open_input_stream(self, samplerate, callback):
        stream = FakeStream(callback, self.blocks, self.fail_start)
        self.streams.append(stream)
        return stream


def _tone(n_blocks=4, frames=2048, amp=0.5, sr=16_000):
    t = np.arange(n_blocks * frames, dtype=np.float32) / sr
    y = (amp * np.sin(2 * np.pi * 220.0 * t)).astype(np.float32)
    return [y[i * frames:(i + 1) * frames].reshape(-1, 1) for i in range(n_blocks)]


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def capture(tmp_path: Path) -> Path:
    return tmp_path / "speaker_attempt.wav"


def test_permission_denied(capture: Path) -> None:
    rec = Recorder(str(capture), backend=FakeBackend(has_device=False))
    assert rec.start() is None
    assert rec.status is RecorderStatus.PERMISSION_DENIED
    assert rec.last_error == "mic permission denied"
    assert not rec.is_recording


def test_start_failure_is_reported(capture: Path) -> None:
    backend = FakeBackend(fail_start=True)
    rec = Recorder(str(capture), backend=backend)
    assert rec.start() is None
    assert rec.status is RecorderStatus.START_FAILED
    assert rec.last_error == "recorder start failed"
    assert not rec.is_recording
    assert backend.streams[0].closed


def test_stop_without_start_fails(capture: Path) -> None:
    rec = Recorder(str(capture), backend=FakeBackend())
    assert rec.stop() is None
    assert rec.status is RecorderStatus.STOP_FAILED


def test_start_removes_previous_attempt(capture: Path) -> None:
    capture.write_bytes(b"stale")
    rec = Recorder(str(capture), backend=FakeBackend())
    assert rec.start() == str(capture)
    assert not capture.exists()
    assert rec.current_audio_path() is None
    # nothing was captured, so there is no artifact
    assert rec.stop() is None
    assert rec.status is RecorderStatus.STOP_FAILED


def test_records_blocks_to_wav(capture: Path) -> None:
    backend = FakeBackend(blocks=_tone())
    rec = Recorder(str(capture), samplerate=16_000, backend=backend)

    assert rec.start() == str(capture)
    assert rec.is_recording
    assert rec.status is RecorderStatus.RECORDING
    assert _wait_for(lambda: rec.level > 0.0)
    assert 0.0 < rec.level <= 1.0

    path = rec.stop()
    assert path == str(capture)
    assert rec.status is RecorderStatus.IDLE
    assert not rec.is_recording
    assert rec.level == 0.0
    assert backend.streams[0].stopped and backend.streams[0].closed

    data, sr = sf.read(path)
    assert sr == 16_000
    assert data.shape[0] == 4 * 2048
    assert rec.current_audio_path() == path


def test_second_start_restarts_capture(capture: Path) -> None:
    backend = FakeBackend(blocks=_tone(n_blocks=2))
    rec = Recorder(str(capture), backend=backend)
    rec.start()
    rec.start()
    assert len(backend.streams) == 2
    assert backend.streams[0].closed
    assert rec.is_recording
    assert rec.stop() == str(capture)


def test_live_partials(capture: Path) -> None:
    seen = []

    def live(samples, sr):
        seen.append((samples.size, sr))
        return " สวัส "

    rec = Recorder(str(capture), backend=FakeBackend(blocks=_tone()), live_recognizer=live, partial_interval=0.01)
    rec.start()
    assert _wait_for(lambda: rec.partial_text == "สวัส")
    rec.stop()
    assert rec.partial_text == ""
    assert seen and seen[0][1] == 16_000


def test_live_partials_failure_is_quiet(capture: Path) -> None:
    def live(samples, sr):
        raise RuntimeError("model missing")

    rec = Recorder(str(capture), backend=FakeBackend(blocks=_tone()), live_recognizer=live, partial_interval=0.01)
    rec.start()
    time.sleep(0.05)
    assert rec.partial_text == ""
    assert rec.stop() == str(capture)


def test_request_permission_answers_immediately(capture: Path) -> None:
    rec = Recorder(str(capture), backend=FakeBackend())
    assert rec.request_permission() is True
    assert rec.status is RecorderStatus.STARTING
    denied = Recorder(str(capture), backend=FakeBackend(has_device=False))
    assert denied.request_permission() is False
    assert denied.status is RecorderStatus.PERMISSION_DENIED
