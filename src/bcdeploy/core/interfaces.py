"""Interfaces of the collaborators consumed by the publisher."""

from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence, Tuple, Union

from bcdeploy.core.models import ServerInstance


class TokenProvider(Protocol):
    """Mints bearer tokens for cloud tenants."""

    def renew(self, context: Any) -> Tuple[str, datetime]:
        ...


class ServerConfigProvider(Protocol):
    """Resolves the running server instance behind a local target.

    Returns None when no server instance is running (files-only hosts).
    """

    def get_server_instance(self, instance: str) -> Optional[ServerInstance]:
        ...


# Path, URL string, raw bytes or a binary file object
PackageSource = Union[str, Path, bytes, Any]


class FileStaging(Protocol):
    """Copies caller-supplied package sources into the working area.

    ``origin`` maps a staged path back to the caller's source, so that
    errors can name a file that still exists after the working area is gone.
    """

    def stage(self, sources: Sequence[PackageSource], destination: Path) -> List[Path]:
        ...

    def origin(self, staged: Path) -> str:
        ...
