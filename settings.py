from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict

from recorder import default_capture_path

logger = logging.getLogger(__name__)

SETTINGS_FILE = "settings.json"


def default_settings() -> Dict[str, Any]:
    return {
        # recognition
        "model_name": os.getenv("WHISPER_MODEL", "small"),
        "device": "auto",  # auto | cpu | gpu
        "language": "th",
        "locale": "th-TH",
        "beam_size": 1,
        "temperature": 0.0,
        "no_speech_threshold": 0.45,
        # capture
        "sample_rate": 16_000,
        "meter_interval_ms": 50,
        "capture_path": default_capture_path(),
        "live_partials": False,
        # data
        "db_path": "speaker_attempts.db",
        "content_path": "steps.json",
        "progress_path": "progress.json",
        "favorites_path": "favorites.json",
        # scoring
        "match_threshold": 70,
        "daily_picks_count": 18,
    }


def settings_path() -> str:
    return os.path.abspath(os.getenv("SPEAKER_SETTINGS", SETTINGS_FILE))


def load_settings(defaults: Dict[str, Any], path: str) -> Dict[str, Any]:
    """Defaults overlaid with the JSON object at path, if there is one."""
    merged = dict(defaults)
    if not os.path.exists(path):
        return merged
    try:
        with open(path, "r", encoding="utf-8") as fh:
            stored = json.load(fh)
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable settings %s: %s", path, e)
        return merged
    if isinstance(stored, dict):
        merged.update(stored)
    else:
        logger.warning("Ignoring settings %s: expected a JSON object", path)
    return merged


def save_settings(settings: Dict[str, Any], path: str) -> None:
    try:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(settings, fh, indent=2, ensure_ascii=False)
    except OSError as e:
        logger.warning("Could not save settings %s: %s", path, e)


def gpu_available() -> bool:
    try:
        import torch

        if torch.cuda.is_available():
            logger.info("Using CUDA device %s", torch.cuda.get_device_name(0))
            return True
    except Exception as e:  # torch missing or a broken CUDA install
        logger.debug("GPU detection failed: %s", e)
    return False


def whisper_options(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Decode options for whisper's model.transcribe()."""
    language = settings.get("language", "th")
    device = settings.get("device", "auto")
    if device == "auto":
        fp16 = gpu_available()
    else:
        fp16 = device == "gpu"

    return {
        "task": "transcribe",
        "language": None if language == "auto" else language,
        "temperature": float(settings.get("temperature", 0.0)),
        "beam_size": int(settings.get("beam_size", 1)),
        "no_speech_threshold": float(settings.get("no_speech_threshold", 0.45)),
        "condition_on_previous_text": False,
        "without_timestamps": True,
        "fp16": bool(fp16),
    }
