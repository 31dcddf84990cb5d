from pathlib import Path

import numpy as np
import pytest

from settings import default_settings
from transcription_service import SpeechRecognitionError, WhisperRecognizer


class FakeModel:
    def __init__(self, text=" สวัสดี ", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def transcribe(self, audio, **opts):
        self.calls.append((audio, opts))
        if self.error is not None:
            raise self.error
        return {"text": self.text}


@pytest.fixture
def settings():
    s = default_settings()
    s["device"] = "cpu"
    return s


@pytest.fixture
def audio(tmp_path: Path) -> Path:
    path = tmp_path / "attempt.wav"
    path.write_bytes(b"RIFF")
    return path


def test_transcribe_file(settings, audio: Path) -> None:
    model = FakeModel()
    rec = WhisperRecognizer(settings, model=model)
    assert rec.request_authorization()
    assert rec.transcribe(str(audio), "th-TH") == "สวัสดี"
    path, opts = model.calls[0]
    assert path == str(audio)
    assert opts["language"] == "th"
    assert opts["fp16"] is False


def test_locale_sets_language(settings, audio: Path) -> None:
    model = FakeModel("hello")
    rec = WhisperRecognizer(settings, model=model)
    rec.transcribe(str(audio), "en_US")
    assert model.calls[0][1]["language"] == "en"


def test_missing_audio(settings, tmp_path: Path) -> None:
    rec = WhisperRecognizer(settings, model=FakeModel())
    with pytest.raises(SpeechRecognitionError):
        rec.transcribe(str(tmp_path / "missing.wav"))
    with pytest.raises(SpeechRecognitionError):
        rec.transcribe("")


def test_decode_error_is_wrapped(settings, audio: Path) -> None:
    rec = WhisperRecognizer(settings, model=FakeModel(error=RuntimeError("bad audio")))
    with pytest.raises(SpeechRecognitionError, match="bad audio"):
        rec.transcribe(str(audio))


def test_unavailable_model(settings, audio: Path, monkeypatch) -> None:
    rec = WhisperRecognizer(settings)

    def broken():
        raise RuntimeError("no model")

    monkeypatch.setattr(rec, "ensure_model", broken)
    assert not rec.request_authorization()
    with pytest.raises(SpeechRecognitionError):
        rec.transcribe(str(audio))


def test_transcribe_samples(settings) -> None:
    model = FakeModel("สวัส")
    rec = WhisperRecognizer(settings, model=model)
    samples = np.zeros(1600, dtype=np.float64)
    assert rec.transcribe_samples(samples, 16_000) == "สวัส"
    sent = model.calls[0][0]
    assert sent.dtype == np.float32
    with pytest.raises(SpeechRecognitionError):
        rec.transcribe_samples(samples, 44_100)
