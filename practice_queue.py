from __future__ import annotations

import logging
import random
import re
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from models import PracticeItem
from progress_snapshot import ProgressSnapshot, lesson_key, split_lesson_key

logger = logging.getLogger(__name__)

ContentLookup = Callable[[str, str, int], Optional[PracticeItem]]
DailyPicks = Callable[[int], Sequence[Tuple[str, str, int]]]

DAILY_PICKS_COUNT = 18
MISS_TOLERANCE = 8
PROBE_FLOOR = 32
PROBE_CEILING = 200

_IDX_RE = re.compile(r"^(?:idx)?(\d+)$")


class QueueMode(Enum):
    CURRENT = "current"
    FAVORITES = "favorites"
    LEARNED = "learned"
    RANDOM = "random"


def sort_key(item: PracticeItem) -> Tuple[str, str, int]:
    return item.key


def dedup(items: Iterable[PracticeItem]) -> List[PracticeItem]:
    seen = set()
    out: List[PracticeItem] = []
    for it in items:
        if it.key in seen:
            continue
        seen.add(it.key)
        out.append(it)
    return out


def _finish(items: Iterable[PracticeItem]) -> List[PracticeItem]:
    return sorted(dedup(items), key=sort_key)


# ------------------------------ learned ------------------------------------

def build_learned_queue(
    progress: ProgressSnapshot,
    lookup: ContentLookup,
    daily_picks: Optional[DailyPicks] = None,
    picks_count: int = DAILY_PICKS_COUNT,
) -> List[PracticeItem]:
    resolved: List[PracticeItem] = []
    for key, steps in progress.learned_steps.items():
        ids = split_lesson_key(key)
        if ids is None:
            continue
        for idx in sorted(steps):
            item = lookup(ids[0], ids[1], idx)
            if item is not None:
                resolved.append(item)

    if not resolved and daily_picks is not None:
        for course_id, lesson_id, idx in daily_picks(picks_count):
            item = lookup(course_id, lesson_id, idx)
            if item is not None:
                resolved.append(item)
        logger.debug("Learned pool empty; using %d daily picks", len(resolved))

    return _finish(resolved)


# ------------------------------ current lesson -----------------------------

def resolve_current_lesson(progress: ProgressSnapshot) -> Optional[Tuple[str, str]]:
    """
    Active lesson: last course + its last lesson, then any started lesson,
    then any lesson with recorded progress. Ties break by sorted ids.
    """
    course_id = progress.last_course_id
    if course_id:
        lesson_id = progress.last_lesson_by_course.get(course_id)
        if lesson_id:
            return course_id, lesson_id
        lessons = progress.started_lessons.get(course_id)
        if lessons:
            return course_id, sorted(lessons)[0]

    for cid in sorted(progress.started_lessons):
        lessons = progress.started_lessons[cid]
        if lessons:
            return cid, sorted(lessons)[0]

    for cid in sorted(progress.last_lesson_by_course):
        lesson_id = progress.last_lesson_by_course[cid]
        if lesson_id:
            return cid, lesson_id

    recorded = sorted(set(progress.learned_steps) | set(progress.last_step_by_lesson))
    for key in recorded:
        ids = split_lesson_key(key)
        if ids is not None:
            return ids
    return None


def probe_lesson(
    lookup: ContentLookup,
    course_id: str,
    lesson_id: str,
    hint_index: int = 0,
) -> List[PracticeItem]:
    """
    Scan indices upward from 0. After the first hit, stop on a run of
    MISS_TOLERANCE misses. Before any hit, stop once past
    max(PROBE_FLOOR, hint_index + PROBE_FLOOR). Never scan past PROBE_CEILING.
    """
    initial_bound = min(PROBE_CEILING, max(PROBE_FLOOR, hint_index + PROBE_FLOOR))
    out: List[PracticeItem] = []
    misses = 0
    found_any = False
    idx = 0
    while idx < PROBE_CEILING:
        item = lookup(course_id, lesson_id, idx)
        if item is not None:
            out.append(item)
            misses = 0
            found_any = True
        else:
            misses += 1
            if found_any and misses >= MISS_TOLERANCE:
                break
            if not found_any and idx >= initial_bound:
                break
        idx += 1
    return out


def build_current_lesson_queue(progress: ProgressSnapshot, lookup: ContentLookup) -> List[PracticeItem]:
    ids = resolve_current_lesson(progress)
    if ids is None:
        return []
    hint_index = progress.last_step_by_lesson.get(lesson_key(*ids), 0)
    return _finish(probe_lesson(lookup, ids[0], ids[1], hint_index))


# ------------------------------ favorites ----------------------------------

def parse_step_ref(ref: str) -> Optional[Tuple[str, str, int]]:
    # step:<courseId>:<lessonId>:idx<index>[:...]
    parts = str(ref).split(":")
    if len(parts) < 4 or parts[0] != "step":
        return None
    course_id, lesson_id = parts[1], parts[2]
    if not course_id or not lesson_id:
        return None
    m = _IDX_RE.match(parts[3])
    if m is None:
        return None
    return course_id, lesson_id, int(m.group(1))


def build_favorites_queue(refs: Iterable[str], lookup: ContentLookup) -> List[PracticeItem]:
    resolved: List[PracticeItem] = []
    for ref in refs or []:
        key = parse_step_ref(ref)
        if key is None:
            continue
        item = lookup(*key)
        if item is not None:
            resolved.append(item)
    return _finish(resolved)


# ------------------------------ entry point --------------------------------

def build_queue(
    mode: QueueMode,
    progress: ProgressSnapshot,
    favorites: Iterable[str],
    lookup: ContentLookup,
    daily_picks: Optional[DailyPicks] = None,
    rng: Optional[random.Random] = None,
) -> List[PracticeItem]:
    if mode is QueueMode.CURRENT:
        queue = build_current_lesson_queue(progress, lookup)
    elif mode is QueueMode.FAVORITES:
        queue = build_favorites_queue(favorites, lookup)
    elif mode is QueueMode.RANDOM:
        queue = build_learned_queue(progress, lookup, daily_picks)
        (rng or random).shuffle(queue)
    else:
        queue = build_learned_queue(progress, lookup, daily_picks)
    logger.info("Built %s queue with %d item(s)", mode.value, len(queue))
    return queue
