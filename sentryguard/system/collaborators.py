"""Image sources consumed by the orchestrator."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from sentryguard.utils.errors import CaptureError


class ImageSource(Protocol):
    def capture(self) -> Optional[bytes]:
        """Return JPEG bytes, None when no frame is available, or raise CaptureError."""


@dataclass
class StillImageSource:
    """Re-reads a JPEG that an external camera process keeps overwriting."""

    path: Path

    def capture(self) -> Optional[bytes]:
        try:
            data = Path(self.path).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CaptureError(f"cannot read image {self.path}: {e}") from e
        return data or None


class NullImageSource:
    def capture(self) -> Optional[bytes]:
        return None
