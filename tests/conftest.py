from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from models import PracticeItem  # noqa: E402


def make_item(course: str, lesson: str, index: int, text: str = "สวัสดี", gloss: str = "hello") -> PracticeItem:
    return PracticeItem(
        course_id=course,
        lesson_id=lesson,
        index=index,
        text=text,
        translit="sawatdee",
        gloss=gloss,
    )


class FakeContent:
    """Content lookup backed by a dict of (course, lesson, index) -> item."""

    def __init__(self, items: List[PracticeItem] = ()):
        self.items: Dict[Tuple[str, str, int], PracticeItem] = {it.key: it for it in items}
        self.calls: List[Tuple[str, str, int]] = []

    def add(self, course: str, lesson: str, *indices: int, text: str = "สวัสดี") -> None:
        for i in indices:
            item = make_item(course, lesson, i, text=text)
            self.items[item.key] = item

    def resolve(self, course: str, lesson: str, index: int) -> Optional[PracticeItem]:
        self.calls.append((course, lesson, index))
        return self.items.get((course, lesson, index))


class FakeRecorder:
    """Stands in for Recorder; writes a small file on stop unless told otherwise."""

    def __init__(self, path: Path):
        self.path = path
        self.start_ok = True
        self.produce_audio = True
        self.is_recording = False
        self.level = 0.0
        self.partial_text = ""
        self.last_error = None
        self.starts = 0
        self.stops = 0

    def start(self):
        self.starts += 1
        if not self.start_ok:
            self.last_error = "mic permission denied"
            return None
        if self.path.exists():
            self.path.unlink()
        self.is_recording = True
        return str(self.path)

    def stop(self):
        self.stops += 1
        was = self.is_recording
        self.is_recording = False
        if not was or not self.produce_audio:
            return None
        self.path.write_bytes(b"RIFF....WAVEfmt ")
        return str(self.path)


class FakeRecognizer:
    def __init__(self, transcript: str = "", authorized: bool = True, error: Optional[Exception] = None):
        self.transcript = transcript
        self.authorized = authorized
        self.error = error
        self.calls: List[Tuple[str, Optional[str]]] = []

    def request_authorization(self) -> bool:
        return self.authorized

    def transcribe(self, audio_path: str, locale: Optional[str] = None) -> str:
        self.calls.append((audio_path, locale))
        if self.error is not None:
            raise self.error
        return self.transcript


@pytest.fixture
def content() -> FakeContent:
    return FakeContent()


@pytest.fixture
def fake_recorder(tmp_path: Path) -> FakeRecorder:
    return FakeRecorder(tmp_path / "speaker_attempt.wav")


@pytest.fixture
def fake_recognizer() -> FakeRecognizer:
    return FakeRecognizer()
