"""
Pytest configuration and shared builders for bcdeploy tests.
"""

import io
import uuid
import zipfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional

import pytest

from bcdeploy.packages.appfile import AppFileHeader, MANIFEST_NAME, MANIFEST_NS
from bcdeploy.transport.channel import RemoteResponse


PUBLISHER = "Contoso"


def app_id_for(name: str) -> str:
    """Stable app id derived from the app name."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"app/{name}"))


def build_manifest(
    name: str,
    version: str = "1.0.0.0",
    app_id: Optional[str] = None,
    publisher: str = PUBLISHER,
    depends_on: Iterable[str] = (),
    show_my_code: Optional[bool] = None,
    extra: str = "",
) -> bytes:
    dependencies = "".join(
        f'<Dependency Id="{app_id_for(dep)}" Name="{dep}" Publisher="{publisher}" MinVersion="1.0.0.0" />'
        for dep in depends_on
    )
    show = f' ShowMyCode="{show_my_code}"' if show_my_code is not None else ""
    return (
        f'<?xml version="1.0" encoding="utf-8"?>'
        f'<Package xmlns="{MANIFEST_NS}">'
        f'<App Id="{app_id or app_id_for(name)}" Name="{name}" Publisher="{publisher}" Version="{version}"{show} />'
        f"<Dependencies>{dependencies}</Dependencies>"
        f"{extra}"
        f"</Package>"
    ).encode("utf-8")


def build_app_bytes(manifest: bytes, package_id: Optional[uuid.UUID] = None, header: bool = True) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(MANIFEST_NAME, manifest)
        zf.writestr("src/HelloWorld.Codeunit.al", "codeunit 50100 HelloWorld { }")
    content = buf.getvalue()
    if not header:
        return content
    return AppFileHeader(package_id or uuid.uuid4(), len(content)).to_bytes() + content


@pytest.fixture
def make_app(tmp_path: Path):
    """Factory writing an app file; returns its path."""

    def _make(
        name: str,
        version: str = "1.0.0.0",
        directory: Optional[Path] = None,
        header: bool = True,
        package_id: Optional[uuid.UUID] = None,
        file_name: Optional[str] = None,
        **manifest_kwargs,
    ) -> Path:
        directory = directory or tmp_path / "apps"
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / (file_name or f"{PUBLISHER}_{name}_{version}.app")
        manifest = build_manifest(name, version, **manifest_kwargs)
        path.write_bytes(build_app_bytes(manifest, package_id=package_id, header=header))
        return path

    return _make


class FakeChannel:
    """Records requests; answers per operation with a response, an exception or a callable."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.requests = []

    def execute(self, instance, request):
        self.requests.append((instance, request))
        handler = self.responses.get(request.operation)
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(request)
        return handler or RemoteResponse()

    @property
    def operations(self):
        return [request.operation for _, request in self.requests]

    def sent(self, operation):
        return [request for _, request in self.requests if request.operation == operation]


class FakeServerConfig:
    def __init__(self, server=None):
        self.server = server
        self.calls = []

    def get_server_instance(self, instance):
        self.calls.append(instance)
        return self.server


class FakeTokenProvider:
    def __init__(self, token: str = "token-123", expiry: Optional[datetime] = None, error: Optional[Exception] = None):
        self.token = token
        self.expiry = expiry or datetime.now(timezone.utc) + timedelta(hours=1)
        self.error = error
        self.contexts = []

    def renew(self, context):
        self.contexts.append(context)
        if self.error:
            raise self.error
        return self.token, self.expiry


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def token_provider():
    return FakeTokenProvider()
