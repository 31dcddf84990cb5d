from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from stable_id import canonical_key, resolve_id

PRONOUNCEABLE_KINDS = ("word", "phrase", "casual")


@dataclass(frozen=True)
class PracticeItem:
    course_id: str
    lesson_id: str
    index: int
    text: str
    translit: str = ""
    gloss: str = ""
    kind: str = "phrase"
    audio_key: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str, int]:
        return (self.course_id, self.lesson_id, self.index)

    @property
    def storage_key(self) -> str:
        return canonical_key(self.course_id, self.lesson_id, self.index)

    @property
    def item_id(self) -> uuid.UUID:
        return resolve_id(self.course_id, self.lesson_id, self.index)


@dataclass(frozen=True)
class AttemptResult:
    course_id: str
    lesson_id: str
    step_index: int
    heard_text: Optional[str]
    heard_translit: Optional[str]
    confidence_score: int
    attempt_count: int
    last_attempt_audio_path: Optional[str]
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def key(self) -> str:
        return canonical_key(self.course_id, self.lesson_id, self.step_index)


class PhaseKind(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    ANALYZING = "analyzing"
    HINT = "hint"
    FEEDBACK = "feedback"


@dataclass(frozen=True)
class Phase:
    kind: PhaseKind
    score: Optional[int] = None
    hint: Optional[str] = None

    @classmethod
    def feedback(cls, score: int, hint: str) -> "Phase":
        return cls(PhaseKind.FEEDBACK, score, hint)

    @property
    def label(self) -> str:
        if self.kind is PhaseKind.FEEDBACK:
            return f"score: {self.score}"
        return {
            PhaseKind.IDLE: "ready to record",
            PhaseKind.RECORDING: "recording...",
            PhaseKind.ANALYZING: "analyzing...",
            PhaseKind.HINT: "hint",
        }[self.kind]


IDLE = Phase(PhaseKind.IDLE)
RECORDING = Phase(PhaseKind.RECORDING)
ANALYZING = Phase(PhaseKind.ANALYZING)
HINT = Phase(PhaseKind.HINT)


class LastPlayed(Enum):
    NONE = "none"
    REFERENCE = "reference"
    ATTEMPT = "attempt"
