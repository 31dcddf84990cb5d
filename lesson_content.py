import hashlib
import json
import logging
import os
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from models import PRONOUNCEABLE_KINDS, PracticeItem

logger = logging.getLogger(__name__)

CONTENT_FILE = "steps.json"
DAY_ZONE = "Asia/Bangkok"

StepKey = Tuple[str, str, int]


def today(zone: str = DAY_ZONE) -> date:
    try:
        return datetime.now(ZoneInfo(zone)).date()
    except ZoneInfoNotFoundError:
        return datetime.now().date()


class LessonContent:
    """
    Lesson steps loaded from steps.json, keyed by (course, lesson, order).
    Only word/phrase/casual steps with both a reference text and a gloss
    resolve into practice items.
    """

    def __init__(self, stepsets: Iterable[dict] = ()):
        self._items: Dict[StepKey, PracticeItem] = {}
        self.salt = 0
        digest = hashlib.sha256()
        for stepset in stepsets:
            course_id = str(stepset.get("course_id", "")).strip()
            lesson_id = str(stepset.get("lesson_id", "")).strip()
            if not course_id or not lesson_id:
                continue
            for raw in stepset.get("items") or []:
                item = self._build_item(course_id, lesson_id, raw)
                if item is None:
                    continue
                self._items.setdefault(item.key, item)
                digest.update(f"{item.storage_key}|{item.text}".encode("utf-8"))
        self.content_hash = digest.hexdigest()

    @classmethod
    def from_file(cls, path: str = CONTENT_FILE) -> "LessonContent":
        if not os.path.exists(path):
            logger.warning("Lesson content %s not found; practice queue will be empty", path)
            return cls()
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            logger.warning("Could not read lesson content %s: %s", path, e)
            return cls()
        stepsets = data.get("stepsets") if isinstance(data, dict) else data
        return cls(stepsets if isinstance(stepsets, list) else [])

    @staticmethod
    def _build_item(course_id: str, lesson_id: str, raw) -> Optional[PracticeItem]:
        if not isinstance(raw, dict):
            return None
        kind = str(raw.get("kind", "")).strip().lower()
        if kind not in PRONOUNCEABLE_KINDS:
            return None
        try:
            order = int(raw.get("order"))
        except (TypeError, ValueError):
            return None
        text = str(raw.get("thai") or "").strip()
        gloss = str(raw.get("ru") or raw.get("gloss") or "").strip()
        if order < 0 or not text or not gloss:
            return None
        return PracticeItem(
            course_id=course_id,
            lesson_id=lesson_id,
            index=order,
            text=text,
            translit=str(raw.get("translit") or "").strip(),
            gloss=gloss,
            kind=kind,
            audio_key=raw.get("audio") or None,
        )

    def __len__(self) -> int:
        return len(self._items)

    def resolve(self, course_id: str, lesson_id: str, index: int) -> Optional[PracticeItem]:
        return self._items.get((course_id, lesson_id, int(index)))

    def all_items(self) -> List[PracticeItem]:
        return [self._items[k] for k in sorted(self._items)]

    # ------------------------------ daily picks ------------------------------

    def reset_daily_picks(self) -> None:
        self.salt += 1

    def _stable_score(self, seed: str, item: PracticeItem) -> str:
        return hashlib.sha256(f"{seed}|{item.lesson_id}|{item.index}".encode("utf-8")).hexdigest()

    def daily_picks(
        self,
        count: int,
        learned: Optional[Dict[str, Set[int]]] = None,
        day: Optional[date] = None,
    ) -> List[StepKey]:
        """
        Deterministic selection for one calendar day: learned steps are
        skipped, the rest is ordered by a seeded hash and taken round-robin
        across lessons so one lesson cannot fill the whole list.
        """
        if count <= 0:
            return []
        learned = learned or {}
        day = day or today()
        seed = f"{self.content_hash}#{day.isoformat()}#salt={self.salt}"

        candidates = [
            it for it in self._items.values()
            if it.index not in learned.get(f"{it.course_id}|{it.lesson_id}", ())
        ]
        candidates.sort(key=lambda it: self._stable_score(seed, it))

        buckets: Dict[Tuple[str, str], List[PracticeItem]] = {}
        lesson_order: List[Tuple[str, str]] = []
        for it in candidates:
            lk = (it.course_id, it.lesson_id)
            if lk not in buckets:
                buckets[lk] = []
                lesson_order.append(lk)
            buckets[lk].append(it)

        out: List[StepKey] = []
        while len(out) < count and lesson_order:
            for lk in list(lesson_order):
                bucket = buckets[lk]
                out.append(bucket.pop(0).key)
                if not bucket:
                    lesson_order.remove(lk)
                if len(out) >= count:
                    break
        return out
