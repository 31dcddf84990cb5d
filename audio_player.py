import logging
from typing import Optional

import numpy as np
import sounddevice as sd
import soundfile as sf

logger = logging.getLogger(__name__)


class AudioPlayer:
    """
    Replays recorded attempts on one mono output stream.
    Starting a new file cuts off whatever is still playing.
    """

    def __init__(self, samplerate: int = 16_000):
        self.samplerate = samplerate
        self._pending = np.zeros(0, dtype=np.float32)
        self._stream: Optional[sd.OutputStream] = None

    def _fill(self, outdata, frames, time_info, status):
        chunk = self._pending[:frames]
        self._pending = self._pending[frames:]
        outdata.fill(0)
        outdata[:chunk.size, 0] = chunk
        if chunk.size < frames:
            raise sd.CallbackStop()

    def _open(self, samplerate: int) -> sd.OutputStream:
        if self._stream is not None and samplerate == self.samplerate:
            return self._stream
        self.close()
        self.samplerate = samplerate
        self._stream = sd.OutputStream(
            samplerate=samplerate,
            channels=1,
            dtype="float32",
            blocksize=1024,
            latency="high",
            callback=self._fill,
        )
        return self._stream

    def play_file(self, path: str) -> None:
        frames, samplerate = sf.read(path, dtype="float32", always_2d=True)
        self.stop()
        mono = np.ascontiguousarray(frames.mean(axis=1), dtype=np.float32)
        if not mono.size:
            logger.info("Nothing to play in %s", path)
            return
        stream = self._open(samplerate)
        self._pending = mono
        # a stream ended by CallbackStop has to be stopped before it can restart
        if not stream.stopped:
            stream.abort()
        stream.start()

    def stop(self) -> None:
        self._pending = np.zeros(0, dtype=np.float32)
        if self._stream is not None and self._stream.active:
            self._stream.abort()

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            if stream.active:
                stream.abort()
        finally:
            stream.close()

    @property
    def active(self) -> bool:
        return self._stream is not None and bool(self._stream.active) and self._pending.size > 0
