"""Download progress models."""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel


class DownloadEventKind(str, Enum):
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"


class DownloadProgress(BaseModel):
    """Snapshot of a running download."""

    transferred: int = 0
    total: int | None = None  # None when the server sends no Content-Length
    elapsed: float = 0.0

    @property
    def percent(self) -> float | None:
        if not self.total:
            return None
        return min(100.0, self.transferred * 100.0 / self.total)

    @property
    def speed(self) -> float:
        """Average bytes per second since the download started."""
        if self.elapsed <= 0:
            return 0.0
        return self.transferred / self.elapsed


class DownloadEvent(BaseModel):
    """One item of a download stream; COMPLETED and FAILED are terminal."""

    kind: DownloadEventKind
    url: str
    dest: Path
    progress: DownloadProgress
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.kind != DownloadEventKind.PROGRESS
