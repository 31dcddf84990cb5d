# speaker_app.py
# Wiring for the pronunciation practice session
from __future__ import annotations

import logging
import os
import sys
from typing import Dict, Optional

from PyQt5 import QtCore

from db import AttemptStore
from lesson_content import LessonContent
from progress_snapshot import load_favorites, load_progress
from recorder import Recorder
from settings import default_settings, load_settings, settings_path
from speaker_session import PracticeSession
from transcription_service import WhisperRecognizer

logger = logging.getLogger(__name__)


def build_practice_session(settings: Optional[Dict] = None, player=None, reference_speaker=None) -> PracticeSession:
    """Create a session with the concrete recorder, recognizer, store and content."""
    if settings is None:
        settings = load_settings(default_settings(), settings_path())

    content = LessonContent.from_file(settings["content_path"])
    recognizer = WhisperRecognizer(settings)

    recorder = Recorder(
        capture_path=settings["capture_path"],
        samplerate=int(settings["sample_rate"]),
        live_recognizer=recognizer.transcribe_samples if settings.get("live_partials") else None,
    )

    progress_path = settings["progress_path"]
    favorites_path = settings["favorites_path"]
    picks_count = int(settings.get("daily_picks_count", 18))

    def daily_picks(count: int = picks_count):
        learned = {k: set(v) for k, v in load_progress(progress_path).learned_steps.items()}
        return content.daily_picks(count, learned)

    if player is None:
        try:
            from audio_player import AudioPlayer

            player = AudioPlayer(int(settings["sample_rate"]))
        except OSError as e:  # PortAudio library missing
            logger.warning("Attempt playback disabled: %s", e)

    return PracticeSession(
        recorder=recorder,
        recognizer=recognizer,
        store=AttemptStore(settings["db_path"]),
        lookup=content.resolve,
        progress_provider=lambda: load_progress(progress_path),
        favorites_provider=lambda: load_favorites(favorites_path),
        daily_picks=daily_picks,
        reference_speaker=reference_speaker,
        player=player,
        match_threshold=int(settings.get("match_threshold", 70)),
        meter_interval_ms=int(settings.get("meter_interval_ms", 50)),
        locale=settings.get("locale", "th-TH"),
        archive_dir=os.path.join(os.path.dirname(os.path.abspath(settings["db_path"])), "recordings"),
    )


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    app = QtCore.QCoreApplication(sys.argv)
    session = build_practice_session()
    session.load()
    view = session.view()
    logger.info(
        "Practice queue: %d item(s), current=%s, phase=%s",
        view.queue_size,
        view.current.storage_key if view.current else None,
        view.phase.label,
    )
    for hint in view.hints:
        logger.info("hint: %s", hint)
    session.shutdown()
    app.quit()


if __name__ == "__main__":
    main()
