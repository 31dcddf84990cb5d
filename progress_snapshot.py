from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

# older progress files stored learned steps under these names
LEARNED_ALIASES = ("learnedSteps", "learned_steps", "learnedStepsByLesson", "learned", "completedSteps")


@dataclass(frozen=True)
class ProgressSnapshot:
    """Read-only view of learner progress, already normalized."""

    last_course_id: Optional[str] = None
    last_lesson_by_course: Dict[str, str] = field(default_factory=dict)
    started_lessons: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    learned_steps: Dict[str, FrozenSet[int]] = field(default_factory=dict)
    last_step_by_lesson: Dict[str, int] = field(default_factory=dict)


def lesson_key(course_id: str, lesson_id: str) -> str:
    return f"{course_id}|{lesson_id}"


def split_lesson_key(key: str) -> Optional[Tuple[str, str]]:
    parts = [p for p in str(key).split("|") if p]
    if len(parts) != 2:
        return None
    return parts[0], parts[1]


def _pick(raw: Mapping, *names):
    for name in names:
        if name in raw and raw[name] is not None:
            return raw[name]
    return None


def _int_set(value) -> FrozenSet[int]:
    out = set()
    if isinstance(value, (list, tuple, set, frozenset)):
        for v in value:
            try:
                out.add(int(v))
            except (TypeError, ValueError):
                continue
    return frozenset(i for i in out if i >= 0)


def _learned_map(value) -> Dict[str, FrozenSet[int]]:
    out: Dict[str, FrozenSet[int]] = {}
    if not isinstance(value, Mapping):
        return out
    for k, v in value.items():
        if split_lesson_key(k) is None:
            continue
        steps = _int_set(v)
        if steps:
            out[str(k)] = out.get(str(k), frozenset()) | steps
    return out


def migrate_progress(raw: Mapping) -> ProgressSnapshot:
    """
    Validate a raw progress document once and turn it into a snapshot.
    Accepts camelCase or snake_case field names; malformed entries are dropped.
    """
    if not isinstance(raw, Mapping):
        return ProgressSnapshot()

    last_course = _pick(raw, "lastCourseId", "last_course_id")
    last_course = str(last_course) if last_course else None

    last_lessons: Dict[str, str] = {}
    value = _pick(raw, "lastLessonByCourse", "last_lesson_by_course")
    if isinstance(value, Mapping):
        last_lessons = {str(k): str(v) for k, v in value.items() if k and v}

    started: Dict[str, FrozenSet[str]] = {}
    value = _pick(raw, "startedLessons", "started_lessons")
    if isinstance(value, Mapping):
        for k, v in value.items():
            if isinstance(v, (list, tuple, set, frozenset)):
                lessons = frozenset(str(x) for x in v if x)
                if lessons:
                    started[str(k)] = lessons

    learned: Dict[str, FrozenSet[int]] = {}
    for alias in LEARNED_ALIASES:
        for k, v in _learned_map(raw.get(alias)).items():
            learned[k] = learned.get(k, frozenset()) | v
        if learned:
            break

    last_steps: Dict[str, int] = {}
    value = _pick(raw, "lastStepByLesson", "last_step_by_lesson")
    if isinstance(value, Mapping):
        for k, v in value.items():
            try:
                last_steps[str(k)] = max(0, int(v))
            except (TypeError, ValueError):
                continue

    return ProgressSnapshot(
        last_course_id=last_course,
        last_lesson_by_course=last_lessons,
        started_lessons=started,
        learned_steps=learned,
        last_step_by_lesson=last_steps,
    )


def _read_json(path: str):
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except (OSError, ValueError) as e:
        logger.warning("Could not read %s: %s", path, e)
        return None


def load_progress(path: str) -> ProgressSnapshot:
    data = _read_json(path)
    return migrate_progress(data) if isinstance(data, Mapping) else ProgressSnapshot()


def load_favorites(path: str) -> List[str]:
    data = _read_json(path)
    if isinstance(data, Mapping):
        data = data.get("speaker") or data.get("steps") or []
    if not isinstance(data, list):
        return []
    return [str(x) for x in data if isinstance(x, str)]
