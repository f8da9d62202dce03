"""Scoped temporary directory holding staged copies of app files."""

import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

import structlog

logger = structlog.get_logger()


class WorkingArea:
    """Uniquely named directory that is removed on exit, whatever the outcome.

    Usage::

        with WorkingArea(settings.work_root) as area:
            paths = staging.stage(sources, area.path)

    Removal failures are logged and never raised.
    """

    def __init__(self, root: Optional[Union[str, Path]] = None, prefix: str = "bcdeploy-"):
        self.root = Path(root) if root else None
        self.prefix = prefix
        self._path: Optional[Path] = None

    @property
    def path(self) -> Path:
        if self._path is None:
            raise RuntimeError("Working area is not open")
        return self._path

    def __enter__(self) -> "WorkingArea":
        if self.root is not None:
            self.root.mkdir(parents=True, exist_ok=True)
        self._path = Path(tempfile.mkdtemp(prefix=self.prefix, dir=str(self.root) if self.root else None))
        logger.debug("Created working area", path=str(self._path))
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        if self._path is None:
            return
        path, self._path = self._path, None
        try:
            shutil.rmtree(path)
            logger.debug("Removed working area", path=str(path))
        except OSError as e:
            logger.warning("Failed to remove working area", path=str(path), error=str(e))
