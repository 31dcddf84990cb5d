from __future__ import annotations

import logging
import os
import random
import shutil
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from PyQt5 import QtCore

from models import (
    IDLE,
    RECORDING,
    ANALYZING,
    HINT,
    AttemptResult,
    LastPlayed,
    Phase,
    PhaseKind,
    PracticeItem,
)
from practice_queue import ContentLookup, DailyPicks, QueueMode, build_queue
from progress_snapshot import ProgressSnapshot
from similarity import MATCH_THRESHOLD, character_error_rate, feedback_hint, is_match, score
from transcribe_worker import AttemptContext, RecognizeWorker

logger = logging.getLogger(__name__)

CAROUSEL_SIZE = 5

MSG_START_FAILED = "couldn't start recording, check microphone access"
MSG_RECORD_FAILED = "couldn't record, check microphone access"
MSG_LISTENING = "listening..."
MSG_NOT_RECOGNIZED = "couldn't recognize speech"
MSG_NO_RECOGNITION = "scoring unavailable (no access to speech recognition)"
MSG_LOOP = "reference -> you -> repeat"
MSG_NO_ACTIVE_LESSON = "no active lesson. open a lesson and come back to practice"
MSG_NO_FAVORITES = "favorites are empty"
MSG_EMPTY_QUEUE = "nothing to practice yet. learn a few steps first"
MSG_PLAYBACK_FAILED = "couldn't play the recording"
MSG_COMPARE = "compare yourself with the reference"
MSG_PICK_PHRASE = "pick a phrase above or switch to random"


@dataclass(frozen=True)
class SessionView:
    """Everything the presentation layer needs to draw one frame."""

    phase: Phase
    current: Optional[PracticeItem]
    selected_id: Optional[uuid.UUID]
    carousel: List[PracticeItem]
    queue_size: int
    active_mode: QueueMode
    heard_text: Optional[str]
    heard_translit: Optional[str]
    confidence: int
    is_match: bool
    char_error_rate: Optional[float]
    attempt_count: int
    has_attempt_audio: bool
    last_played: LastPlayed
    recording_meter: float
    partial_text: Optional[str]
    hints: List[str] = field(default_factory=list)


class PracticeSession(QtCore.QObject):
    """
    Pronunciation practice: owns the queue, the current item and the
    phase machine (idle -> recording -> analyzing -> feedback | hint).

    All public methods are expected on the thread that owns this object.
    Recognition runs on a RecognizeWorker and its results come back here
    through queued signals.
    """

    changed = QtCore.pyqtSignal()
    phase_changed = QtCore.pyqtSignal(object)
    # storage key of the item whose recognition just finished
    analysis_finished = QtCore.pyqtSignal(str)

    def __init__(
        self,
        recorder,
        recognizer,
        store,
        lookup: ContentLookup,
        progress_provider: Callable[[], ProgressSnapshot],
        favorites_provider: Callable[[], Sequence[str]] = lambda: [],
        daily_picks: Optional[DailyPicks] = None,
        reference_speaker: Optional[Callable[[str], None]] = None,
        player=None,
        match_threshold: int = MATCH_THRESHOLD,
        meter_interval_ms: int = 50,
        locale: str = "th-TH",
        archive_dir: Optional[str] = None,
        rng: Optional[random.Random] = None,
        parent=None,
    ):
        super().__init__(parent)
        self.recorder = recorder
        self.recognizer = recognizer
        self.store = store
        self.lookup = lookup
        self.progress_provider = progress_provider
        self.favorites_provider = favorites_provider
        self.daily_picks = daily_picks
        self.reference_speaker = reference_speaker
        self.player = player
        self.match_threshold = match_threshold
        self.locale = locale
        self.archive_dir = archive_dir
        self.rng = rng

        self.phase: Phase = IDLE
        self.queue: List[PracticeItem] = []
        self.current: Optional[PracticeItem] = None
        self.active_mode = QueueMode.LEARNED

        self.last_attempt: Optional[str] = None
        self.attempt_count = 0
        self.last_played = LastPlayed.NONE

        self.recording_meter = 0.0
        self.partial_text: Optional[str] = None

        self.heard_text: Optional[str] = None
        self.heard_translit: Optional[str] = None
        self.heard_confidence = 0
        self.heard_cer: Optional[float] = None
        self.hints: List[str] = []

        self._base_queue: List[PracticeItem] = []
        self._did_load = False
        # bumped whenever presentation moves on; stale results are not shown
        self._token = 0
        self._workers: List[RecognizeWorker] = []
        # highest attempt number handed out per item, including ones still in flight
        self._issued: Dict[Tuple[str, str, int], int] = {}

        self._meter_timer = QtCore.QTimer(self)
        self._meter_timer.setInterval(int(meter_interval_ms))
        self._meter_timer.timeout.connect(self._poll_meter)

    # ───────────────────────────── lifecycle ─────────────────────────────

    def load(self, force: bool = False) -> None:
        if self._did_load and not force:
            return
        self._did_load = True
        self.rebuild_queue()
        self.active_mode = QueueMode.LEARNED
        self._show_first()

    def rebuild_queue(self) -> None:
        self._base_queue = build_queue(
            QueueMode.LEARNED,
            self.progress_provider(),
            (),
            self.lookup,
            self.daily_picks,
        )
        self.queue = list(self._base_queue)

    def shutdown(self) -> None:
        self._stop_meter()
        if getattr(self.recorder, "is_recording", False):
            self.recorder.stop()
        for worker in list(self._workers):
            worker.wait()
        self._workers.clear()
        if self.player is not None:
            try:
                self.player.stop()
            except Exception as e:
                logger.debug("Player stop failed: %s", e)

    # ───────────────────────────── view ──────────────────────────────────

    @property
    def selected_id(self) -> Optional[uuid.UUID]:
        return self.current.item_id if self.current is not None else None

    @property
    def carousel_items(self) -> List[PracticeItem]:
        """Current item with two neighbours on each side, wrapping."""
        if not self.queue:
            return []
        n = len(self.queue)
        i = self._index_of(self.current)
        if i is None:
            return self.queue[:CAROUSEL_SIZE]
        if n <= CAROUSEL_SIZE:
            return list(self.queue)
        half = CAROUSEL_SIZE // 2
        return [self.queue[(i + k) % n] for k in range(-half, half + 1)]

    def view(self) -> SessionView:
        return SessionView(
            phase=self.phase,
            current=self.current,
            selected_id=self.selected_id,
            carousel=self.carousel_items,
            queue_size=len(self.queue),
            active_mode=self.active_mode,
            heard_text=self.heard_text,
            heard_translit=self.heard_translit,
            confidence=self.heard_confidence,
            is_match=self.phase.kind is PhaseKind.FEEDBACK and is_match(self.heard_confidence, self.match_threshold),
            char_error_rate=self.heard_cer,
            attempt_count=self.attempt_count,
            has_attempt_audio=self.last_attempt is not None,
            last_played=self.last_played,
            recording_meter=self.recording_meter,
            partial_text=self.partial_text,
            hints=list(self.hints),
        )

    # ───────────────────────────── navigation ────────────────────────────

    def _index_of(self, item: Optional[PracticeItem]) -> Optional[int]:
        if item is None:
            return None
        for i, it in enumerate(self.queue):
            if it.key == item.key:
                return i
        return None

    def select(self, item_id: Union[uuid.UUID, str]) -> bool:
        if not self.queue:
            return False
        wanted = item_id if isinstance(item_id, uuid.UUID) else uuid.UUID(str(item_id))
        match = next((it for it in self.queue if it.item_id == wanted), None)
        if match is None:
            return False
        self._snap_out()
        self.current = match
        self._restore(match)
        return True

    def next(self) -> None:
        self._step(1)

    def prev(self) -> None:
        self._step(-1)

    def _step(self, delta: int) -> None:
        if not self.queue:
            self.current = None
            self.changed.emit()
            return
        self._snap_out()
        i = self._index_of(self.current)
        if i is None:
            self.current = self.queue[0]
        else:
            self.current = self.queue[(i + delta) % len(self.queue)]
        self._restore(self.current)

    def _snap_out(self) -> None:
        # leaving an item mid-recording still scores the take for that item
        if self.phase.kind is PhaseKind.RECORDING:
            self.stop_and_analyze()

    def _show_first(self) -> None:
        self.current = self.queue[0] if self.queue else None
        if self.current is not None:
            self._restore(self.current)
        else:
            self._clear_attempt()
            self._show_hint([MSG_EMPTY_QUEUE])

    # ───────────────────────────── filters ───────────────────────────────

    def apply_filter(self, mode: Union[QueueMode, str]) -> None:
        mode = QueueMode(mode)
        self.active_mode = mode
        if not self._base_queue:
            self.load(force=True)
            self.active_mode = mode
        self._snap_out()

        if mode is QueueMode.LEARNED:
            self.queue = list(self._base_queue)
            self._show_first()
            return

        built = build_queue(
            mode,
            self.progress_provider(),
            self.favorites_provider(),
            self.lookup,
            self.daily_picks,
            self.rng,
        )
        if mode is QueueMode.CURRENT and not built:
            # no lesson context; keep practicing the base pool
            self.queue = list(self._base_queue)
            self.current = self.queue[0] if self.queue else None
            self._clear_attempt()
            self._show_hint([MSG_NO_ACTIVE_LESSON])
            return
        if mode is QueueMode.FAVORITES and not built:
            self.queue = []
            self.current = None
            self._clear_attempt()
            self._show_hint([MSG_NO_FAVORITES])
            return

        self.queue = built
        self._show_first()

    # ───────────────────────────── attempt ───────────────────────────────

    def start_attempt(self) -> None:
        if self.current is None or self.phase.kind is PhaseKind.RECORDING:
            return
        self._token += 1
        self._stop_player()
        self.last_played = LastPlayed.NONE
        self.last_attempt = None
        self._clear_heard()
        self.hints = []

        handle = self.recorder.start()
        if handle is None:
            logger.info("Recorder did not start: %s", getattr(self.recorder, "last_error", None))
            self._show_hint([MSG_START_FAILED])
            return

        self.recording_meter = 0.0
        self.partial_text = None
        self._set_phase(RECORDING)
        self._meter_timer.start()

    def stop_and_analyze(self) -> None:
        cur = self.current
        if cur is None or self.phase.kind is not PhaseKind.RECORDING:
            return

        self._stop_meter()
        handle = self.recorder.stop()
        if handle is None:
            self.last_attempt = None
            self.last_played = LastPlayed.NONE
            self._show_hint([MSG_RECORD_FAILED])
            return

        audio_path = self._archive(cur, handle)
        self.attempt_count = max(self.attempt_count, self._issued.get(cur.key, 0)) + 1
        self._issued[cur.key] = self.attempt_count
        self.last_attempt = audio_path
        self.last_played = LastPlayed.NONE
        self.hints = [MSG_LISTENING]
        self._set_phase(ANALYZING)

        ctx = AttemptContext(
            item=cur,
            reference=cur.text.strip(),
            audio_path=audio_path,
            attempt_count=self.attempt_count,
            token=self._token,
        )
        worker = RecognizeWorker(self.recognizer, ctx, self.locale, parent=self)
        worker.completed.connect(self._on_recognized)
        worker.failed.connect(self._on_recognition_failed)
        self._workers.append(worker)
        worker.start()

    def _archive(self, item: PracticeItem, handle: str) -> str:
        if not self.archive_dir:
            return handle
        target = os.path.join(self.archive_dir, f"{item.item_id}{os.path.splitext(handle)[1] or '.wav'}")
        try:
            os.makedirs(self.archive_dir, exist_ok=True)
            shutil.copyfile(handle, target)
        except OSError as e:
            logger.warning("Could not archive attempt audio: %s", e)
            return handle
        return target

    def _is_presented(self, ctx: AttemptContext) -> bool:
        return (
            ctx.token == self._token
            and self.current is not None
            and self.current.key == ctx.item.key
            and self.phase.kind is PhaseKind.ANALYZING
        )

    def _release(self, ctx: AttemptContext) -> None:
        for worker in list(self._workers):
            if worker.context == ctx:
                worker.wait()
                self._workers.remove(worker)
                worker.deleteLater()

    def _phrase_line(self, item: PracticeItem, fallback: str) -> str:
        gloss = item.gloss.strip()
        return f"phrase: {gloss}" if gloss else fallback

    @QtCore.pyqtSlot(object, str)
    def _on_recognized(self, ctx: AttemptContext, heard: str) -> None:
        self._release(ctx)
        heard = (heard or "").strip()
        presented = self._is_presented(ctx)

        if not heard or not ctx.reference:
            logger.info("Attempt %s: nothing usable recognized", ctx.item.storage_key)
            if presented:
                self.heard_text = heard or None
                self.heard_translit = None
                self.heard_confidence = 0
                self.heard_cer = None
                self._show_hint([self._phrase_line(ctx.item, MSG_NOT_RECOGNIZED), MSG_NOT_RECOGNIZED, MSG_LOOP])
            self.analysis_finished.emit(ctx.item.storage_key)
            return

        prior = self.store.load(ctx.item.storage_key)
        # results can land out of order; the stored count never goes down
        newer_stored = prior is not None and prior.attempt_count > ctx.attempt_count
        count = max(ctx.attempt_count, prior.attempt_count if prior is not None else 0)
        value = score(heard, ctx.reference)
        advice = feedback_hint(value)
        cer = character_error_rate(heard, ctx.reference)
        logger.info(
            "Attempt %s #%d scored %d (match=%s)",
            ctx.item.storage_key, count, value, is_match(value, self.match_threshold),
        )

        if newer_stored:
            logger.debug("Keeping newer stored attempt for %s", ctx.item.storage_key)
        else:
            self.store.save(
                ctx.item.storage_key,
                AttemptResult(
                    course_id=ctx.item.course_id,
                    lesson_id=ctx.item.lesson_id,
                    step_index=ctx.item.index,
                    heard_text=heard,
                    heard_translit=None,
                    confidence_score=value,
                    attempt_count=count,
                    last_attempt_audio_path=ctx.audio_path,
                    timestamp=datetime.now(),
                ),
            )

        if presented:
            self.heard_text = heard
            self.attempt_count = count
            self.heard_translit = None
            self.heard_confidence = value
            self.heard_cer = cer
            self.hints = [self._phrase_line(ctx.item, f"score: {value}"), f"score: {value}", advice]
            self._set_phase(Phase.feedback(value, advice))
        self.analysis_finished.emit(ctx.item.storage_key)

    @QtCore.pyqtSlot(object, str)
    def _on_recognition_failed(self, ctx: AttemptContext, message: str) -> None:
        self._release(ctx)
        logger.warning("Recognition failed for %s: %s", ctx.item.storage_key, message)
        if self._is_presented(ctx):
            # the recording stays available for replay
            self.heard_text = None
            self.heard_translit = None
            self.heard_confidence = 0
            self.heard_cer = None
            self._show_hint([self._phrase_line(ctx.item, MSG_NO_RECOGNITION), MSG_NO_RECOGNITION, MSG_LOOP])
        self.analysis_finished.emit(ctx.item.storage_key)

    def repeat_current(self) -> None:
        self._token += 1
        if self.phase.kind is PhaseKind.RECORDING:
            self._stop_meter()
            self.recorder.stop()
        self._stop_player()
        self._clear_heard()
        self.hints = []
        self.last_attempt = None
        self.last_played = LastPlayed.NONE
        self._set_phase(IDLE)

    def reset_to_idle(self) -> None:
        self.hints = []
        self._set_phase(IDLE)

    def submit_text(self, text: str) -> None:
        t = (text or "").strip()
        if not t:
            return
        self._token += 1
        if self.phase.kind is PhaseKind.RECORDING:
            self._stop_meter()
            self.recorder.stop()
        self.last_attempt = None
        self.last_played = LastPlayed.NONE
        self.heard_text = t
        self.heard_translit = None
        self.heard_confidence = 0
        self.heard_cer = None
        if self.current is not None:
            self._show_hint([MSG_COMPARE, MSG_LOOP])
        else:
            self._show_hint([MSG_PICK_PHRASE])

    # ───────────────────────────── playback ──────────────────────────────

    def play_reference(self, item_id: Optional[Union[uuid.UUID, str]] = None) -> None:
        target = self.current
        if item_id is not None:
            wanted = item_id if isinstance(item_id, uuid.UUID) else uuid.UUID(str(item_id))
            target = next((it for it in self.queue if it.item_id == wanted), None)
            if target is None:
                return
            if self.current is None or target.key != self.current.key:
                self._snap_out()
                self.current = target
                self._restore(target)
        if target is None or self.reference_speaker is None or not target.text.strip():
            return
        try:
            self.reference_speaker(target.text.strip())
        except Exception as e:
            logger.warning("Reference playback failed: %s", e)
            return
        self.last_played = LastPlayed.REFERENCE
        self.changed.emit()

    def play_attempt(self) -> None:
        if self.last_attempt is None or self.player is None:
            return
        try:
            self.player.play_file(self.last_attempt)
        except Exception as e:
            logger.warning("Attempt playback failed: %s", e)
            self._show_hint([MSG_PLAYBACK_FAILED])
            return
        self.last_played = LastPlayed.ATTEMPT
        self.changed.emit()

    def _stop_player(self) -> None:
        if self.player is None:
            return
        try:
            self.player.stop()
        except Exception as e:
            logger.debug("Player stop failed: %s", e)

    # ───────────────────────────── state helpers ─────────────────────────

    def _set_phase(self, phase: Phase) -> None:
        if phase.kind is not PhaseKind.RECORDING:
            self._stop_meter()
        old = self.phase
        self.phase = phase
        if old != phase:
            self.phase_changed.emit(phase)
        self.changed.emit()

    def _show_hint(self, hints: List[str]) -> None:
        self.hints = list(hints)
        self._set_phase(HINT)

    def _clear_heard(self) -> None:
        self.heard_text = None
        self.heard_translit = None
        self.heard_confidence = 0
        self.heard_cer = None
        self.partial_text = None
        self.recording_meter = 0.0

    def _clear_attempt(self) -> None:
        self._token += 1
        self._stop_player()
        self._clear_heard()
        self.hints = []
        self.last_attempt = None
        self.last_played = LastPlayed.NONE
        self.attempt_count = 0

    def _restore(self, item: PracticeItem) -> None:
        """Show the persisted result for item, or a clean idle state."""
        self._clear_attempt()
        stored = self.store.load(item.storage_key)
        if stored is None:
            self.attempt_count = self._issued.get(item.key, 0)
            self._set_phase(IDLE)
            return

        self.heard_text = stored.heard_text
        self.heard_translit = stored.heard_translit
        self.heard_confidence = stored.confidence_score
        self.heard_cer = character_error_rate(stored.heard_text or "", item.text)
        self.attempt_count = max(stored.attempt_count, self._issued.get(item.key, 0))
        path = stored.last_attempt_audio_path
        self.last_attempt = path if path and os.path.exists(path) else None
        value = stored.confidence_score
        self._show_hint([self._phrase_line(item, f"score: {value}"), f"score: {value}", feedback_hint(value)])

    # ───────────────────────────── meter ─────────────────────────────────

    def _stop_meter(self) -> None:
        if self._meter_timer.isActive():
            self._meter_timer.stop()
        self.recording_meter = 0.0
        self.partial_text = None

    @QtCore.pyqtSlot()
    def _poll_meter(self) -> None:
        if self.phase.kind is not PhaseKind.RECORDING:
            self._stop_meter()
            return
        level = float(getattr(self.recorder, "level", 0.0) or 0.0)
        self.recording_meter = max(0.0, min(1.0, level))
        raw = str(getattr(self.recorder, "partial_text", "") or "").strip()
        self.partial_text = raw or None
        self.changed.emit()
