from datetime import datetime
from pathlib import Path

from db import AttemptStore
from models import AttemptResult


def _result(score: int = 80, count: int = 1, heard: str = "สวัสดี") -> AttemptResult:
    return AttemptResult(
        course_id="c1",
        lesson_id="l1",
        step_index=2,
        heard_text=heard,
        heard_translit=None,
        confidence_score=score,
        attempt_count=count,
        last_attempt_audio_path="/tmp/speaker_attempt.wav",
        timestamp=datetime(2026, 1, 2, 3, 4, 5),
    )


def test_key_format() -> None:
    assert AttemptStore.key("c1", "l1", 2) == "c1|l1|2"
    assert _result().key == "c1|l1|2"


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    store = AttemptStore(str(tmp_path / "attempts.db"))
    store.save("c1|l1|2", _result())
    loaded = store.load("c1|l1|2")
    assert loaded == _result()
    assert store.load("c1|l1|3") is None


def test_save_overwrites_single_record_per_key(tmp_path: Path) -> None:
    store = AttemptStore(str(tmp_path / "attempts.db"))
    store.save("c1|l1|2", _result(score=40, count=1))
    store.save("c1|l1|2", _result(score=95, count=2, heard="สวัสดีครับ"))
    everything = store.load_all()
    assert list(everything) == ["c1|l1|2"]
    assert everything["c1|l1|2"].confidence_score == 95
    assert everything["c1|l1|2"].attempt_count == 2
    assert everything["c1|l1|2"].heard_text == "สวัสดีครับ"


def test_records_survive_reopen(tmp_path: Path) -> None:
    path = str(tmp_path / "attempts.db")
    first = AttemptStore(path)
    first.save("c1|l1|2", _result())
    first.close()

    second = AttemptStore(path)
    assert second.load("c1|l1|2") == _result()


def test_corrupt_database_reads_as_empty_and_swallows_writes(tmp_path: Path) -> None:
    path = tmp_path / "attempts.db"
    path.write_bytes(b"this is not a sqlite database" * 100)
    store = AttemptStore(str(path))
    assert store.load_all() == {}
    assert store.load("c1|l1|2") is None
    store.save("c1|l1|2", _result())


def test_unwritable_location_is_not_fatal(tmp_path: Path) -> None:
    store = AttemptStore(str(tmp_path / "missing-dir" / "attempts.db"))
    store.save("c1|l1|2", _result())
    assert store.load_all() == {}
