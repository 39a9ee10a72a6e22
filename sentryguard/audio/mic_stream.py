"""Audio sources that push mono float32 chunks into a consumer callback."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Generator, Optional, Protocol, Union

import numpy as np

from sentryguard.utils.constants import AUDIO
from sentryguard.utils.errors import AcquisitionError
from sentryguard.utils.helpers import load_audio, normalize_signal

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[np.ndarray], None]


class AudioSource(Protocol):
    sample_rate: int

    def open(self, on_chunk: ChunkCallback) -> None:
        """Start delivering chunks. Raises AcquisitionError if the source cannot be opened."""

    def close(self) -> None:
        """Stop delivering chunks. Safe to call more than once."""


@dataclass
class MicStream:
    sample_rate: int
    chunk_size: int
    realtime: bool = False
    sleep_factor: float = 1.0

    def from_array(self, data: np.ndarray, normalize: bool = False) -> Generator[np.ndarray, None, None]:
        data = data.astype(np.float32)
        if normalize:
            data = normalize_signal(data)
        total = len(data)
        for idx in range(0, total, self.chunk_size):
            chunk = data[idx : idx + self.chunk_size]
            if self.realtime:
                time.sleep(len(chunk) / self.sample_rate * self.sleep_factor)
            yield chunk


@dataclass
class SoundDeviceSource:
    """Live microphone input through PortAudio."""

    device: Optional[Union[int, str]] = None
    sample_rate: int = AUDIO.sample_rate
    block_size: int = AUDIO.block_size
    _stream: Optional[Any] = field(default=None, init=False, repr=False)

    def open(self, on_chunk: ChunkCallback) -> None:
        if self._stream is not None:
            raise AcquisitionError("audio source already open")
        # Lazy import: loading sounddevice needs the PortAudio shared library.
        try:
            import sounddevice as sd
        except OSError as e:
            raise AcquisitionError(f"PortAudio is not available: {e}") from e

        def callback(indata, frames, time_info, status):
            if status:
                logger.debug("input stream status: %s", status)
            on_chunk(np.asarray(indata[:, 0], dtype=np.float32))

        try:
            stream = sd.InputStream(
                device=self.device,
                channels=1,
                samplerate=self.sample_rate,
                blocksize=self.block_size,
                dtype="float32",
                callback=callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as e:
            raise AcquisitionError(f"cannot open input device {self.device!r}: {e}") from e
        self._stream = stream
        logger.info("Microphone open (device=%s, %d Hz)", self.device, self.sample_rate)

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        import sounddevice as sd

        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            logger.warning("Error closing input stream: %s", e)


class ArraySource:
    """In-memory samples fed from a background thread.

    With ``realtime`` the feeder sleeps one chunk duration per chunk; with
    ``loop`` it restarts from the beginning until closed.
    """

    def __init__(
        self,
        samples: np.ndarray,
        sample_rate: int = AUDIO.sample_rate,
        chunk_size: int = AUDIO.block_size,
        realtime: bool = False,
        loop: bool = False,
    ) -> None:
        self.samples = np.asarray(samples, dtype=np.float32)
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.realtime = realtime
        self.loop = loop
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def open(self, on_chunk: ChunkCallback) -> None:
        if self._thread is not None:
            raise AcquisitionError("audio source already open")
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, args=(on_chunk,), daemon=True)
        self._thread.start()
        if not self.realtime and not self.loop:
            self._thread.join()

    def _run(self, on_chunk: ChunkCallback) -> None:
        mic = MicStream(self.sample_rate, self.chunk_size, realtime=self.realtime)
        while not self._stop.is_set():
            for chunk in mic.from_array(self.samples):
                if self._stop.is_set():
                    return
                on_chunk(chunk)
            if not self.loop:
                return

    def close(self) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2)


class WavFileSource(ArraySource):
    """Plays an audio file into the engine as if it were a microphone."""

    def __init__(self, path: Union[str, Path], realtime: bool = True, loop: bool = False) -> None:
        try:
            data, sr = load_audio(path)
        except (OSError, RuntimeError) as e:
            raise AcquisitionError(f"cannot read audio file {path}: {e}") from e
        super().__init__(data, sample_rate=sr, realtime=realtime, loop=loop)
        self.path = Path(path)
