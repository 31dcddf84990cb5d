from __future__ import annotations

import numpy as np

METER_FLOOR_DB = -60.0


def rms_db(block: np.ndarray) -> float:
    x = np.asarray(block, dtype=np.float32).reshape(-1)
    if x.size == 0:
        return METER_FLOOR_DB
    rms = float(np.sqrt(np.maximum(1e-12, np.mean(x * x))))
    return 20.0 * float(np.log10(max(rms, 1e-8)))


def input_level(block: np.ndarray, floor_db: float = METER_FLOOR_DB) -> float:
    """
    Map the RMS level of one captured block onto [0, 1]:
    floor_db and below is 0.0, full scale is 1.0.
    """
    db = rms_db(block)
    return max(0.0, min(1.0, (db - floor_db) / -floor_db))


def trim_silence(
    y: np.ndarray,
    sr: int,
    threshold_db: float = -50.0,
    window_ms: float = 20.0,
    hop_ms: float = 10.0,
    pre_pad_ms: float = 120.0,
    post_pad_ms: float = 280.0,
) -> np.ndarray:
    """
    Cut leading/trailing silence from a take using framed RMS in dB.
    Returns the input unchanged when nothing rises above threshold_db.
    """
    x = np.asarray(y, dtype=np.float32).reshape(-1)
    n = x.size
    if n == 0:
        return x

    frame_len = max(3, int(sr * (window_ms / 1000.0)))
    hop = max(1, int(sr * (hop_ms / 1000.0)))
    if n < frame_len:
        return x

    starts = np.arange(0, n - frame_len + 1, hop)
    frames = np.stack([x[s:s + frame_len] for s in starts])
    rms = np.sqrt(np.maximum(1e-12, (frames * frames).mean(axis=1)))
    active = 20.0 * np.log10(np.maximum(rms, 1e-8)) > float(threshold_db)
    if not np.any(active):
        return x

    first_f = int(np.argmax(active))
    last_f = int(len(active) - np.argmax(active[::-1]) - 1)
    i1 = max(0, int(starts[first_f]) - int(sr * pre_pad_ms / 1000.0))
    i2 = min(n, int(starts[last_f]) + frame_len + int(sr * post_pad_ms / 1000.0))
    if i2 <= i1:
        return x
    return x[i1:i2]
