"""Scoped temporary files in the shared scratch directory.

Every file a run creates is named ``{run_id}-{role}{suffix}`` where ``run_id``
is a random hex id, so concurrent runs sharing the directory never collide.
Leaving the scope deletes every registered path and anything else carrying
the run's prefix (e.g. segment files written by ffmpeg from a pattern).
"""

from __future__ import annotations

import logging
import tempfile
import uuid
from pathlib import Path
from types import TracebackType

from media_transcriber.config import settings

logger = logging.getLogger(__name__)


def default_scratch_root() -> Path:
    """Configured scratch directory, or the system temp dir."""
    return Path(settings.scratch_dir or tempfile.gettempdir())


def safe_unlink(path: Path) -> None:
    """Delete *path* if present; log and swallow any error."""
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Failed to clean up scratch file %s: %s", path, exc)


class ScratchSpace:
    """Context manager owning the temporary files of one processing run."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = Path(root) if root is not None else default_scratch_root()
        self.run_id = uuid.uuid4().hex
        self._paths: list[Path] = []

    def __enter__(self) -> ScratchSpace:
        self.root.mkdir(parents=True, exist_ok=True)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.cleanup()

    def path(self, role: str, suffix: str = "") -> Path:
        """Reserve a unique path for *role* (e.g. ``input``, ``audio``)."""
        if suffix and not suffix.startswith("."):
            suffix = f".{suffix}"
        path = self.root / f"{self.run_id}-{role}{suffix}"
        self._paths.append(path)
        return path

    def pattern(self, role: str, suffix: str = "") -> str:
        """An ffmpeg output pattern (``%03d`` index) under this run's prefix."""
        if suffix and not suffix.startswith("."):
            suffix = f".{suffix}"
        return str(self.root / f"{self.run_id}-{role}-%03d{suffix}")

    def indexed_path(self, role: str, index: int, suffix: str = "") -> Path:
        """The concrete file a :meth:`pattern` produces for *index*."""
        if suffix and not suffix.startswith("."):
            suffix = f".{suffix}"
        path = self.root / f"{self.run_id}-{role}-{index:03d}{suffix}"
        self._paths.append(path)
        return path

    def release(self, path: Path) -> None:
        """Delete one file now instead of at scope exit."""
        safe_unlink(path)
        if path in self._paths:
            self._paths.remove(path)

    def owned_files(self) -> list[Path]:
        """Files currently on disk that belong to this run."""
        return sorted(p for p in self.root.glob(f"{self.run_id}-*") if p.is_file())

    def cleanup(self) -> None:
        """Best-effort removal of everything this run created. Never raises."""
        targets = set(self._paths)
        try:
            targets.update(self.owned_files())
        except OSError as exc:
            logger.warning("Failed to list scratch dir %s: %s", self.root, exc)
        for path in targets:
            safe_unlink(path)
        self._paths.clear()
        if targets:
            logger.debug("Scratch run %s cleaned up %d path(s)", self.run_id, len(targets))
