"""Circular buffer holding the most recent seconds of audio."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np


@dataclass
class SampleWindow:
    size: int
    dtype: type = np.float32
    buffer: np.ndarray = field(init=False)
    write_pos: int = field(init=False, default=0)
    written: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        if self.size <= 0:
            raise ValueError("SampleWindow size must be positive")
        self.buffer = np.zeros(self.size, dtype=self.dtype)

    @classmethod
    def for_duration(cls, sample_rate: int, seconds: float) -> "SampleWindow":
        return cls(int(sample_rate * seconds))

    @property
    def is_full(self) -> bool:
        return self.written >= self.size

    def write(self, data: np.ndarray) -> None:
        data = np.asarray(data, dtype=self.dtype).ravel()
        n = len(data)
        if n == 0:
            return
        if n >= self.size:
            # only the newest `size` samples survive; the oldest lands at write_pos
            tail = data[-self.size :]
            self.write_pos = (self.write_pos + n) % self.size
            self.buffer[self.write_pos :] = tail[: self.size - self.write_pos]
            self.buffer[: self.write_pos] = tail[self.size - self.write_pos :]
        else:
            end = self.write_pos + n
            if end <= self.size:
                self.buffer[self.write_pos:end] = data
            else:
                first = self.size - self.write_pos
                self.buffer[self.write_pos:] = data[:first]
                self.buffer[: end - self.size] = data[first:]
            self.write_pos = end % self.size
        self.written += n

    def read(self, length: int) -> Optional[np.ndarray]:
        """Return the newest *length* samples, or None if fewer were written."""
        if length > self.size or self.written < length:
            return None
        start = (self.write_pos - length) % self.size
        if start + length <= self.size:
            return self.buffer[start : start + length].copy()
        first = self.size - start
        return np.concatenate((self.buffer[start:], self.buffer[: length - first]))

    def linearize(self) -> np.ndarray:
        """Whole window in chronological order, oldest sample first.

        Before the window has filled once, the unwritten head reads as silence.
        """
        return np.concatenate((self.buffer[self.write_pos :], self.buffer[: self.write_pos]))

    def clear(self) -> None:
        self.buffer.fill(0)
        self.write_pos = 0
        self.written = 0
