"""Copying of package sources into the working area."""

from __future__ import annotations

import os
import shutil
import zipfile
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Sequence, Tuple
from urllib.parse import unquote, urlparse

import boto3
import httpx
import structlog

from bcdeploy.core.exceptions import InvalidPackage, PublishError
from bcdeploy.core.interfaces import PackageSource

logger = structlog.get_logger()

APP_SUFFIX = ".app"
DEFAULT_FILE_NAME = "package.app"


def _parse_s3_url(url: str) -> Tuple[str, str]:
    """Parse s3://bucket/key URL into (bucket, key)."""
    rest = url[len("s3://"):]
    parts = rest.split("/", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidPackage(url, "expected s3://bucket/key")
    return parts[0], parts[1]


def _file_name(name: str) -> str:
    name = os.path.basename(name.replace("\\", "/"))
    return name or DEFAULT_FILE_NAME


def _write_stream_to_file(stream_iter: Iterable[bytes], dest_path: Path) -> int:
    """Write streamed chunks to dest_path; the file appears only once complete."""
    tmp_file = dest_path.with_name(dest_path.name + ".downloading")
    bytes_written = 0
    try:
        with open(tmp_file, "wb") as f:
            for chunk in stream_iter:
                if not chunk:
                    continue
                bytes_written += len(chunk)
                f.write(chunk)
    except BaseException:
        tmp_file.unlink(missing_ok=True)
        raise
    os.replace(tmp_file, dest_path)
    return bytes_written


def _safe_extract_apps(zf: zipfile.ZipFile, dest_dir: Path, source: str) -> List[Path]:
    """Extract the app files of an archive, preventing zip-slip."""
    base = dest_dir.resolve()
    extracted = []
    for member in sorted(zf.infolist(), key=lambda m: m.filename):
        if member.is_dir() or not member.filename.lower().endswith(APP_SUFFIX):
            continue
        member_path = PurePosixPath(member.filename)
        if member_path.is_absolute() or ".." in member_path.parts:
            raise InvalidPackage(source, f"archive contains unsafe path {member.filename}")
        target = (base / member_path).resolve()
        if base not in target.parents:
            raise InvalidPackage(source, f"archive entry escapes destination: {member.filename}")
        target.parent.mkdir(parents=True, exist_ok=True)
        with zf.open(member) as src, open(target, "wb") as dst:
            shutil.copyfileobj(src, dst)
        extracted.append(target)
    return extracted


class LocalFileStaging:
    """Default FileStaging: local paths, archives, URLs, S3 objects and in-memory data.

    Each source lands in its own numbered subdirectory of the destination so
    equal file names from different sources never collide. Output order
    follows the input order; within a directory or archive, files are sorted
    by name.
    """

    def __init__(self, chunk_size: int = 64 * 1024):
        self.chunk_size = chunk_size
        self._origins: Dict[Path, str] = {}

    def stage(self, sources: Sequence[PackageSource], destination: Path) -> List[Path]:
        """Stage all sources and return the paths of the staged app files.

        Raises:
            InvalidPackage: If a source does not exist or holds no app file
            PublishError: If a remote source cannot be downloaded
        """
        self._origins = {}
        staged: List[Path] = []
        for index, source in enumerate(sources):
            slot = Path(destination) / f"{index:03d}"
            slot.mkdir(parents=True, exist_ok=True)
            paths = self._stage_one(source, slot)
            described = self._describe(source)
            for path in paths:
                self._origins.setdefault(path, described)
            logger.debug("Staged package source", source=described, files=len(paths))
            staged.extend(paths)

        logger.info("Staged packages", count=len(staged), destination=str(destination))
        return staged

    def origin(self, staged: Path) -> str:
        """Caller-facing name of a staged file from the last ``stage`` call."""
        return self._origins.get(Path(staged), str(staged))

    @staticmethod
    def _describe(source: PackageSource) -> str:
        if isinstance(source, bytes):
            return f"<{len(source)} bytes>"
        if isinstance(source, (str, Path)):
            return str(source)
        name = getattr(source, "name", None)
        return name if isinstance(name, str) else repr(source)

    def _stage_one(self, source: PackageSource, slot: Path) -> List[Path]:
        if isinstance(source, bytes):
            target = slot / DEFAULT_FILE_NAME
            target.write_bytes(source)
            return [target]

        if isinstance(source, str) and source.startswith(("http://", "https://")):
            return [self._download_url(source, slot)]
        if isinstance(source, str) and source.startswith("s3://"):
            return [self._download_s3(source, slot)]

        if isinstance(source, (str, Path)):
            return self._stage_path(Path(source), slot)

        if hasattr(source, "read"):
            name = getattr(source, "name", None)
            target = slot / (_file_name(name) if isinstance(name, str) else DEFAULT_FILE_NAME)
            _write_stream_to_file(iter(lambda: source.read(self.chunk_size), b""), target)
            return [target]

        raise InvalidPackage(repr(source), "unsupported package source")

    def _stage_path(self, path: Path, slot: Path) -> List[Path]:
        if path.is_dir():
            apps = sorted(p for p in path.iterdir() if p.is_file() and p.suffix.lower() == APP_SUFFIX)
            if not apps:
                raise InvalidPackage(str(path), "directory contains no app files")
            staged = []
            for app in apps:
                target = slot / app.name
                shutil.copyfile(app, target)
                self._origins[target] = str(app)
                staged.append(target)
            return staged

        if not path.is_file():
            raise InvalidPackage(str(path), "file not found")

        if path.suffix.lower() == ".zip":
            try:
                with zipfile.ZipFile(path) as zf:
                    staged = _safe_extract_apps(zf, slot, str(path))
            except zipfile.BadZipFile as e:
                raise InvalidPackage(str(path), f"invalid archive: {e}")
            if not staged:
                raise InvalidPackage(str(path), "archive contains no app files")
            base = slot.resolve()
            for target in staged:
                self._origins[target] = f"{path}!{target.relative_to(base).as_posix()}"
            return staged

        target = slot / path.name
        shutil.copyfile(path, target)
        return [target]

    def _download_url(self, url: str, slot: Path) -> Path:
        target = slot / _file_name(unquote(urlparse(url).path))
        logger.info("Downloading package", url=url, dest=str(target))
        try:
            with httpx.Client(timeout=None, follow_redirects=True) as client:
                with client.stream("GET", url) as response:
                    response.raise_for_status()
                    bytes_written = _write_stream_to_file(response.iter_bytes(self.chunk_size), target)
        except httpx.HTTPError as e:
            logger.error("Package download failed", url=url, error=str(e))
            raise PublishError(f"Failed to download {url}: {e}", code="download_failed")
        logger.info("Downloaded package", url=url, bytes=bytes_written)
        return target

    def _download_s3(self, url: str, slot: Path) -> Path:
        bucket, key = _parse_s3_url(url)
        target = slot / _file_name(key)
        logger.info("Downloading package from S3", bucket=bucket, key=key, dest=str(target))
        try:
            s3 = boto3.client("s3")
            body = s3.get_object(Bucket=bucket, Key=key)["Body"]
            bytes_written = _write_stream_to_file(body.iter_chunks(self.chunk_size), target)
        except Exception as e:
            logger.error("Package download from S3 failed", bucket=bucket, key=key, error=str(e))
            raise PublishError(f"Failed to download {url}: {e}", code="download_failed")
        logger.info("Downloaded package from S3", bytes=bytes_written)
        return target
