from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from PyQt5 import QtCore

from models import PracticeItem


@dataclass(frozen=True)
class AttemptContext:
    """What an in-flight recognition was started for."""

    item: PracticeItem
    reference: str
    audio_path: str
    attempt_count: int
    token: int


class RecognizeWorker(QtCore.QThread):
    """
    Runs speech recognition for one recorded attempt off the owning thread.
    Emits:
      completed(context: AttemptContext, transcript: str)
      failed(context: AttemptContext, message: str)
    """

    completed = QtCore.pyqtSignal(object, str)
    failed = QtCore.pyqtSignal(object, str)

    def __init__(self, recognizer, context: AttemptContext, locale: Optional[str] = "th-TH", parent=None):
        super().__init__(parent)
        self._recognizer = recognizer
        self.context = context
        self._locale = locale

    def run(self) -> None:
        try:
            if not self._recognizer.request_authorization():
                self.failed.emit(self.context, "speech recognition not authorized")
                return
            text = self._recognizer.transcribe(self.context.audio_path, self._locale)
            self.completed.emit(self.context, str(text or "").strip())
        except Exception as e:
            self.failed.emit(self.context, str(e))
