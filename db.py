import logging
import os
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import Column, Integer, String, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from models import AttemptResult
from stable_id import canonical_key

logger = logging.getLogger(__name__)

Base = declarative_base()


class SpeakerAttempt(Base):
    __tablename__ = "speaker_attempts"
    key              = Column(String,  primary_key=True)
    course_id        = Column(String,  nullable=False)
    lesson_id        = Column(String,  nullable=False)
    step_index       = Column(Integer, nullable=False)
    heard_text       = Column(String,  nullable=True)
    heard_translit   = Column(String,  nullable=True)
    confidence_score = Column(Integer, nullable=False, default=0)
    attempt_count    = Column(Integer, nullable=False, default=0)
    audio_path       = Column(String,  nullable=True)
    timestamp        = Column(String,  nullable=False)


def get_engine(db_path: str = "speaker_attempts.db"):
    full = os.path.abspath(db_path)
    return create_engine(f"sqlite:///{full}", echo=False)


def init_db(engine=None):
    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(engine)


def get_session(db_path: str = "speaker_attempts.db"):
    engine = get_engine(db_path)
    init_db(engine)
    return sessionmaker(bind=engine)()


def _to_result(row: SpeakerAttempt) -> AttemptResult:
    try:
        ts = datetime.fromisoformat(row.timestamp)
    except (TypeError, ValueError):
        ts = datetime.fromtimestamp(0)
    return AttemptResult(
        course_id=row.course_id,
        lesson_id=row.lesson_id,
        step_index=int(row.step_index),
        heard_text=row.heard_text,
        heard_translit=row.heard_translit,
        confidence_score=int(row.confidence_score or 0),
        attempt_count=int(row.attempt_count or 0),
        last_attempt_audio_path=row.audio_path,
        timestamp=ts,
    )


class AttemptStore:
    """
    Last scored attempt per (course, lesson, step), kept in SQLite.
    Storage errors are logged and swallowed: writes become no-ops and
    reads come back empty.
    """

    def __init__(self, db_path: str = "speaker_attempts.db"):
        self.db_path = db_path
        self._db = None

    @staticmethod
    def key(course_id: str, lesson_id: str, step_index: int) -> str:
        return canonical_key(course_id, lesson_id, step_index)

    def _session(self):
        if self._db is None:
            try:
                self._db = get_session(self.db_path)
            except SQLAlchemyError as e:
                logger.warning("Attempt store unavailable at %s: %s", self.db_path, e)
                return None
        return self._db

    def _reset(self) -> None:
        if self._db is not None:
            try:
                self._db.rollback()
            except SQLAlchemyError:
                pass

    def save(self, key: str, result: AttemptResult) -> None:
        db = self._session()
        if db is None:
            return
        try:
            row = db.get(SpeakerAttempt, key)
            if row is None:
                row = SpeakerAttempt(key=key)
                db.add(row)
            row.course_id = result.course_id
            row.lesson_id = result.lesson_id
            row.step_index = int(result.step_index)
            row.heard_text = result.heard_text
            row.heard_translit = result.heard_translit
            row.confidence_score = int(result.confidence_score)
            row.attempt_count = int(result.attempt_count)
            row.audio_path = result.last_attempt_audio_path
            row.timestamp = result.timestamp.isoformat(timespec="seconds")
            db.commit()
        except SQLAlchemyError as e:
            logger.warning("Could not save attempt %s: %s", key, e)
            self._reset()

    def load(self, key: str) -> Optional[AttemptResult]:
        db = self._session()
        if db is None:
            return None
        try:
            row = db.get(SpeakerAttempt, key)
            return _to_result(row) if row is not None else None
        except SQLAlchemyError as e:
            logger.warning("Could not load attempt %s: %s", key, e)
            self._reset()
            return None

    def load_all(self) -> Dict[str, AttemptResult]:
        db = self._session()
        if db is None:
            return {}
        try:
            rows = db.query(SpeakerAttempt).order_by(SpeakerAttempt.key).all()
            return {row.key: _to_result(row) for row in rows}
        except SQLAlchemyError as e:
            logger.warning("Could not load attempts: %s", e)
            self._reset()
            return {}

    def close(self) -> None:
        if self._db is not None:
            try:
                self._db.close()
            except SQLAlchemyError:
                pass
            self._db = None
