"""Reading and rewriting of .app package files.

An app file is a zip archive holding ``NavxManifest.xml``, optionally
preceded by a 40-byte ``NAVX`` header that carries the package id and the
length of the zip content.
"""

from __future__ import annotations

import os
import shutil
import struct
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, Tuple
from uuid import UUID
from xml.etree import ElementTree as ET

import structlog

from bcdeploy.core.exceptions import InvalidPackage
from bcdeploy.core.models import (
    AppDependency,
    AppIdentity,
    AppManifest,
    AppReference,
    Package,
)

logger = structlog.get_logger()

MANIFEST_NAME = "NavxManifest.xml"
MANIFEST_NS = "http://schemas.microsoft.com/navx/2015/manifest"

HEADER_MAGIC = b"NAVX"
HEADER_SIZE = 40
_HEADER_FORMAT = "<4sII16sQ4s"

ET.register_namespace("", MANIFEST_NS)


@dataclass
class AppFileHeader:
    """Fixed-size header preceding the zip content."""

    package_id: UUID
    content_length: int
    format_version: int = 2

    def to_bytes(self) -> bytes:
        return struct.pack(
            _HEADER_FORMAT,
            HEADER_MAGIC,
            HEADER_SIZE,
            self.format_version,
            self.package_id.bytes_le,
            self.content_length,
            HEADER_MAGIC,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> Optional["AppFileHeader"]:
        """Parse the header; returns None for a bare zip archive."""
        if data[:4] != HEADER_MAGIC:
            return None
        if len(data) < HEADER_SIZE:
            raise ValueError("truncated NAVX header")
        magic, size, version, package_id, length, trailer = struct.unpack_from(_HEADER_FORMAT, data)
        if size != HEADER_SIZE or trailer != HEADER_MAGIC:
            raise ValueError(f"unsupported NAVX header (size={size})")
        return cls(package_id=UUID(bytes_le=package_id), content_length=length, format_version=version)


def _bool_attr(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value.strip().lower() == "true"


class ManifestDocument:
    """Mutable view over a NavxManifest.xml document."""

    def __init__(self, root: ET.Element):
        self.root = root
        self.ns = root.tag[1:].split("}", 1)[0] if root.tag.startswith("{") else ""

    @classmethod
    def from_bytes(cls, data: bytes) -> "ManifestDocument":
        return cls(ET.fromstring(data))

    def to_bytes(self) -> bytes:
        return ET.tostring(self.root, encoding="utf-8", xml_declaration=True)

    def tag(self, name: str) -> str:
        return f"{{{self.ns}}}{name}" if self.ns else name

    @property
    def app(self) -> ET.Element:
        app = self.root.find(self.tag("App"))
        if app is None:
            raise ValueError("manifest has no App element")
        return app

    def dependencies(self) -> Iterator[ET.Element]:
        container = self.root.find(self.tag("Dependencies"))
        if container is None:
            return iter(())
        return container.iter(self.tag("Dependency"))

    def internals_visible_to(self, create: bool = False) -> Optional[ET.Element]:
        container = self.root.find(self.tag("InternalsVisibleTo"))
        if container is None and create:
            container = ET.SubElement(self.root, self.tag("InternalsVisibleTo"))
        return container

    @property
    def show_my_code(self) -> bool:
        value = _bool_attr(self.app.get("ShowMyCode"))
        if value is not None:
            return value
        policy = self.root.find(self.tag("ResourceExposurePolicy"))
        if policy is not None:
            return bool(_bool_attr(policy.get("AllowDownloadingSource")))
        return False

    def set_show_my_code(self, value: bool) -> None:
        text = "True" if value else "False"
        self.app.set("ShowMyCode", text)
        policy = self.root.find(self.tag("ResourceExposurePolicy"))
        if policy is not None:
            for attr in ("AllowDebugging", "AllowDownloadingSource", "IncludeSourceInSymbolFile"):
                policy.set(attr, text.lower())

    def to_manifest(self) -> AppManifest:
        app = self.app
        missing = [attr for attr in ("Id", "Name", "Publisher", "Version") if not app.get(attr)]
        if missing:
            raise ValueError(f"App element missing {', '.join(missing)}")

        dependencies = [
            AppDependency(
                id=dep.get("Id") or dep.get("AppId"),
                name=dep.get("Name", ""),
                publisher=dep.get("Publisher", ""),
                min_version=dep.get("MinVersion") or dep.get("Version") or "0.0.0.0",
            )
            for dep in self.dependencies()
        ]

        modules = []
        container = self.internals_visible_to()
        if container is not None:
            for module in container.iter(self.tag("Module")):
                if module.get("Id"):
                    modules.append(
                        AppReference(
                            id=module.get("Id"),
                            name=module.get("Name", ""),
                            publisher=module.get("Publisher", ""),
                        )
                    )

        return AppManifest(
            identity=AppIdentity(
                publisher=app.get("Publisher"),
                name=app.get("Name"),
                version=app.get("Version"),
                id=app.get("Id"),
            ),
            dependencies=dependencies,
            internals_visible_to=modules,
            show_my_code=self.show_my_code,
        )


def _read(path: Path) -> Tuple[Optional[AppFileHeader], ManifestDocument]:
    with open(path, "rb") as f:
        header = AppFileHeader.from_bytes(f.read(HEADER_SIZE))
    # zipfile tolerates the prepended header
    with zipfile.ZipFile(path) as zf:
        try:
            data = zf.read(MANIFEST_NAME)
        except KeyError:
            raise ValueError(f"missing {MANIFEST_NAME}")
    return header, ManifestDocument.from_bytes(data)


def read_package(path: Path) -> Package:
    """Read the header and manifest of an app file.

    Raises:
        InvalidPackage: If the file cannot be read or parsed
    """
    path = Path(path)
    try:
        header, document = _read(path)
        manifest = document.to_manifest()
    except InvalidPackage:
        raise
    except (OSError, ValueError, zipfile.BadZipFile, ET.ParseError) as e:
        logger.error("Failed to read app file", path=str(path), error=str(e))
        raise InvalidPackage(str(path), str(e))

    return Package(
        path=path,
        manifest=manifest,
        package_id=header.package_id if header else None,
    )


def rewrite_package(
    path: Path,
    mutate: Callable[[ManifestDocument], None],
    package_id: Optional[UUID] = None,
) -> Package:
    """Rewrite the manifest of an app file in place.

    ``mutate`` edits the manifest document; every other zip entry is copied
    unchanged. When ``package_id`` is given it replaces the id in the header.
    The file is replaced atomically.
    """
    path = Path(path)
    try:
        header, document = _read(path)
    except (OSError, ValueError, zipfile.BadZipFile, ET.ParseError) as e:
        raise InvalidPackage(str(path), str(e))

    mutate(document)
    manifest_bytes = document.to_bytes()

    if package_id is not None and header is None:
        logger.warning("App file has no header, package id not replaced", path=str(path))

    tmp_file = path.with_suffix(path.suffix + ".rewriting")
    try:
        with tempfile.TemporaryFile() as content:
            with zipfile.ZipFile(path) as src, zipfile.ZipFile(content, "w") as dst:
                for info in src.infolist():
                    if info.filename == MANIFEST_NAME:
                        dst.writestr(info, manifest_bytes)
                        continue
                    with src.open(info) as s, dst.open(info, "w") as d:
                        shutil.copyfileobj(s, d)
            content_length = content.tell()
            content.seek(0)

            with open(tmp_file, "wb") as out:
                if header is not None:
                    header.content_length = content_length
                    if package_id is not None:
                        header.package_id = package_id
                    out.write(header.to_bytes())
                shutil.copyfileobj(content, out)
        os.replace(tmp_file, path)
    except Exception:
        if tmp_file.exists():
            os.remove(tmp_file)
        raise

    return read_package(path)
