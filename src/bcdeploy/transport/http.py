"""Publishing through the development endpoint over HTTP(S)."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import quote

import httpx
import structlog

from bcdeploy.core.exceptions import PublishError, PublishRejected
from bcdeploy.core.models import Package, SyncMode

logger = structlog.get_logger()

_SCHEMA_UPDATE_MODES = {
    SyncMode.CLEAN: "recreate",
    SyncMode.FORCE_SYNC: "forcesync",
}


@dataclass(frozen=True)
class DevEndpoint:
    """Development endpoint of a server instance or cloud environment.

    ``verify_tls`` applies to the client of each request only; there is no
    process-wide certificate toggle.
    """

    base_url: str
    auth: Optional[httpx.Auth] = None
    verify_tls: bool = True
    tenant: Optional[str] = None


def schema_update_mode(sync_mode: Optional[SyncMode]) -> str:
    return _SCHEMA_UPDATE_MODES.get(sync_mode, "synchronize")


def build_publish_url(endpoint: DevEndpoint, sync_mode: Optional[SyncMode]) -> str:
    url = f"{endpoint.base_url.rstrip('/')}/dev/apps?SchemaUpdateMode={schema_update_mode(sync_mode)}"
    if endpoint.tenant:
        url += f"&tenant={quote(endpoint.tenant, safe='')}"
    return url


class MultipartAppBody:
    """Single-part multipart/form-data body streamed from an app file."""

    def __init__(self, path: Path, chunk_size: int = 64 * 1024, boundary: Optional[str] = None):
        self.path = Path(path)
        self.chunk_size = chunk_size
        self.boundary = boundary or uuid.uuid4().hex

        name = self.path.name.replace("\\", "\\\\").replace('"', '\\"')
        disposition = (
            f'form-data; name="{name}"; filename="{name}"; '
            f"filename*=utf-8''{quote(self.path.name, safe='')}"
        )
        self._head = (
            f"--{self.boundary}\r\n"
            f"Content-Disposition: {disposition}\r\n"
            f"Content-Type: application/octet-stream\r\n\r\n"
        ).encode("utf-8")
        self._tail = f"\r\n--{self.boundary}--\r\n".encode("ascii")

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    @property
    def content_length(self) -> int:
        return len(self._head) + self.path.stat().st_size + len(self._tail)

    def __iter__(self) -> Iterator[bytes]:
        yield self._head
        with open(self.path, "rb") as f:
            for chunk in iter(lambda: f.read(self.chunk_size), b""):
                yield chunk
        yield self._tail


def _rejection(response: httpx.Response) -> PublishRejected:
    message = None
    try:
        data = response.json()
        if isinstance(data, dict):
            message = data.get("Message")
    except ValueError:
        pass
    if not message:
        message = response.text
    return PublishRejected(response.status_code, response.reason_phrase, message)


class HttpPublishTransport:
    """Uploads one app file per call to a development endpoint."""

    def __init__(self, chunk_size: int = 64 * 1024):
        self.chunk_size = chunk_size

    def publish(self, package: Package, endpoint: DevEndpoint, sync_mode: Optional[SyncMode] = None) -> None:
        """Publish a package; blocks until the endpoint answers (no timeout).

        Raises:
            PublishRejected: If the endpoint answers with a non-success status
            PublishError: If the request cannot be sent
            AuthExpired: If the bearer token cannot be renewed
        """
        url = build_publish_url(endpoint, sync_mode)
        body = MultipartAppBody(package.path, self.chunk_size)
        headers = {
            "Content-Type": body.content_type,
            "Content-Length": str(body.content_length),
        }

        logger.info(
            "Publishing app to development endpoint",
            app=str(package.identity),
            url=url,
            verify_tls=endpoint.verify_tls,
            size=body.content_length,
        )
        if not endpoint.verify_tls:
            logger.warning("TLS certificate verification disabled for request", url=url)

        try:
            with httpx.Client(verify=endpoint.verify_tls, timeout=None) as client:
                response = client.post(url, content=body, headers=headers, auth=endpoint.auth)
        except httpx.HTTPError as e:
            logger.error("Development endpoint request failed", url=url, error=str(e))
            raise PublishError(f"Request to {url} failed: {e}", code="transport_error")

        if not response.is_success:
            error = _rejection(response)
            logger.error(
                "Development endpoint rejected app",
                app=str(package.identity),
                status=response.status_code,
                error=error.detail,
            )
            raise error

        logger.info("Development endpoint accepted app", app=str(package.identity), status=response.status_code)
