import json
from pathlib import Path

from progress_snapshot import (
    ProgressSnapshot,
    load_favorites,
    load_progress,
    migrate_progress,
    split_lesson_key,
)


def test_migrate_camel_case_document() -> None:
    snap = migrate_progress(
        {
            "lastCourseId": "c1",
            "lastLessonByCourse": {"c1": "l2"},
            "startedLessons": {"c1": ["l1", "l2"]},
            "learnedSteps": {"c1|l1": [0, 1, "2", "x", -1]},
            "lastStepByLesson": {"c1|l2": 4},
        }
    )
    assert snap.last_course_id == "c1"
    assert snap.last_lesson_by_course == {"c1": "l2"}
    assert snap.started_lessons == {"c1": frozenset({"l1", "l2"})}
    assert snap.learned_steps == {"c1|l1": frozenset({0, 1, 2})}
    assert snap.last_step_by_lesson == {"c1|l2": 4}


def test_migrate_snake_case_and_legacy_learned_alias() -> None:
    snap = migrate_progress(
        {
            "last_course_id": "c9",
            "completedSteps": {"c9|l1": [3, 3, 4], "not-a-lesson-key": [1]},
        }
    )
    assert snap.last_course_id == "c9"
    assert snap.learned_steps == {"c9|l1": frozenset({3, 4})}


def test_migrate_rejects_non_mapping() -> None:
    assert migrate_progress(["nope"]) == ProgressSnapshot()


def test_split_lesson_key() -> None:
    assert split_lesson_key("c|l") == ("c", "l")
    assert split_lesson_key("c|l|3") is None
    assert split_lesson_key("nothing") is None


def test_load_progress_missing_or_corrupt(tmp_path: Path) -> None:
    assert load_progress(str(tmp_path / "missing.json")) == ProgressSnapshot()
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    assert load_progress(str(bad)) == ProgressSnapshot()


def test_load_favorites_list_and_object(tmp_path: Path) -> None:
    plain = tmp_path / "fav.json"
    plain.write_text(json.dumps(["step:c:l:idx1", 5, "word:x"]), encoding="utf-8")
    assert load_favorites(str(plain)) == ["step:c:l:idx1", "word:x"]

    wrapped = tmp_path / "fav2.json"
    wrapped.write_text(json.dumps({"speaker": ["step:c:l:idx2"]}), encoding="utf-8")
    assert load_favorites(str(wrapped)) == ["step:c:l:idx2"]
    assert load_favorites(str(tmp_path / "none.json")) == []
