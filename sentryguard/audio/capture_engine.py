"""Continuous capture into a rolling window, with metrics and snapshots on demand."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

import numpy as np

from sentryguard.audio.mic_stream import AudioSource
from sentryguard.audio.ring_buffer import SampleWindow
from sentryguard.audio.spectrum import SILENT, DetectionMetrics, SpectrumAnalyser, band_metrics
from sentryguard.audio.wav import encode_wav
from sentryguard.utils.constants import AUDIO, AudioConstants
from sentryguard.utils.errors import AcquisitionError, CaptureError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioSnapshot:
    wav: bytes
    sample_rate: int
    num_samples: int
    captured_at: float

    @property
    def duration_s(self) -> float:
        return self.num_samples / self.sample_rate


class AudioCaptureEngine:
    """
    Owns the audio source, the SampleWindow and the spectrum analyser.

    The source pushes chunks from its own thread through :meth:`ingest`;
    the detection tick and the orchestrator pull :meth:`current_metrics` and
    :meth:`snapshot` from the event loop. A lock serialises the two sides.
    """

    def __init__(self, params: AudioConstants = AUDIO) -> None:
        self.params = params
        self.source: Optional[AudioSource] = None
        self.sample_rate = params.sample_rate
        self._window: Optional[SampleWindow] = None
        self._analyser: Optional[SpectrumAnalyser] = None
        self._lock = threading.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def initialize(self, source: AudioSource) -> None:
        """Allocate the window and start ingestion. Raises AcquisitionError."""
        if self._running:
            self.shutdown()
        with self._lock:
            self.source = source
            self.sample_rate = source.sample_rate
            self._window = SampleWindow.for_duration(self.sample_rate, self.params.window_seconds)
            self._analyser = SpectrumAnalyser(self.params)
            self._running = True
        try:
            source.open(self.ingest)
        except AcquisitionError:
            self._release()
            raise
        except Exception as e:
            self._release()
            raise AcquisitionError(f"audio source failed to open: {e}") from e
        logger.info(
            "Capture engine running: %d Hz, %.1f s window (%d samples)",
            self.sample_rate,
            self.params.window_seconds,
            self._window.size if self._window is not None else 0,
        )

    def restart(self) -> None:
        """Tear down and reinitialise on the same source."""
        source = self.source
        if source is None:
            raise AcquisitionError("capture engine was never initialised")
        self.shutdown()
        self.initialize(source)

    def ingest(self, chunk: np.ndarray) -> None:
        with self._lock:
            if self._window is not None:
                self._window.write(chunk)

    def current_metrics(self) -> DetectionMetrics:
        with self._lock:
            if self._window is None or self._analyser is None:
                return SILENT
            newest = self._window.read(self._analyser.fft_size)
            if newest is None:
                return SILENT
            byte_bins = self._analyser.frame(newest)
        return band_metrics(byte_bins, self.sample_rate, self.params)

    def snapshot(self) -> AudioSnapshot:
        """Encode the whole window, oldest sample first. Raises CaptureError when not running."""
        with self._lock:
            if self._window is None:
                raise CaptureError("capture engine is not running")
            samples = self._window.linearize()
            sample_rate = self.sample_rate
        return AudioSnapshot(
            wav=encode_wav(samples, sample_rate),
            sample_rate=sample_rate,
            num_samples=len(samples),
            captured_at=time.time(),
        )

    def shutdown(self) -> None:
        if self.source is not None and self._running:
            self.source.close()
            logger.info("Capture engine stopped")
        self._release()

    def _release(self) -> None:
        with self._lock:
            self._window = None
            self._analyser = None
            self._running = False
