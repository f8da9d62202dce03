"""Publishing orchestration."""

from .orchestrator import AppPublisher
from .staging import LocalFileStaging
from .workspace import WorkingArea

__all__ = ["AppPublisher", "LocalFileStaging", "WorkingArea"]
