from __future__ import annotations

import logging
import os
import threading
from typing import Any, Dict, Optional

import numpy as np

from settings import whisper_options

logger = logging.getLogger(__name__)


class SpeechRecognitionError(Exception):
    """Recognition is unavailable: no model, no access, or a failed decode."""


class WhisperRecognizer:
    """
    Local speech-to-text for practice attempts.
    The model loads lazily on first use; transcribe() blocks and is meant
    to run on a worker thread.
    """

    def __init__(self, settings: Dict, model: Optional[Any] = None):
        self.settings = settings
        self.model = model
        self._lock = threading.Lock()

    def ensure_model(self) -> None:
        if self.model is None:
            import whisper

            model_name = self.settings.get("model_name") or os.getenv("WHISPER_MODEL", "small")
            logger.info("Loading Whisper model %s", model_name)
            self.model = whisper.load_model(model_name)

    def request_authorization(self) -> bool:
        try:
            with self._lock:
                self.ensure_model()
        except Exception as e:
            logger.warning("Speech recognition unavailable: %s", e)
            return False
        return True

    def _options(self, locale: Optional[str]) -> Dict:
        opts = whisper_options(self.settings)
        if locale:
            opts["language"] = locale.split("-")[0].split("_")[0].lower()
        return opts

    def _run(self, audio, locale: Optional[str]) -> str:
        if not self.request_authorization():
            raise SpeechRecognitionError("speech recognition is not available")
        try:
            # one decode at a time per model
            with self._lock:
                result = self.model.transcribe(audio, **self._options(locale))
        except Exception as e:
            raise SpeechRecognitionError(str(e)) from e
        return str(result.get("text", "") if isinstance(result, dict) else "").strip()

    def transcribe(self, audio_path: str, locale: Optional[str] = "th-TH") -> str:
        if not audio_path or not os.path.exists(audio_path):
            raise SpeechRecognitionError(f"no audio at {audio_path!r}")
        return self._run(audio_path, locale)

    def transcribe_samples(self, samples: np.ndarray, samplerate: int, locale: Optional[str] = "th-TH") -> str:
        # whisper expects 16 kHz mono float32
        if samplerate != 16_000:
            raise SpeechRecognitionError(f"unsupported sample rate {samplerate}")
        return self._run(np.ascontiguousarray(samples, dtype=np.float32), locale)
