"""Remote firmware builds: package the source tree, upload it, unpack the result."""

from __future__ import annotations

import io
import json
import logging
import os
import shutil
import zipfile
from functools import partial
from pathlib import Path, PurePosixPath
from typing import Callable

import requests

from mosctl.core.context import CallContext
from mosctl.core.errors import (
    LocalIOError,
    PackagingError,
    ProtocolError,
    ServiceError,
    TransportError,
    TransportTimeoutError,
)
from mosctl.core.manifest import MANIFEST_FILE_NAME, Manifest, detect_arch, read_manifest, set_manifest_arch
from mosctl.core.model import BuildResult, FirmwareInfo, PackageManifest
from mosctl.core.settings import Settings

BUILD_DIR = "build"
BUILD_LOG = "build.log"
FIRMWARE_FILE_NAME = "fw.zip"
ARCHIVE_PREFIX = "src"

HTTP_OK = 200
HTTP_TEAPOT = 418  # build ran and failed
HTTP_CHUNK_SIZE = 64 * 1024

Transformer = Callable[[bytes], bytes]

LOGGER = logging.getLogger(__name__)


def _normalize_entry(entry: str) -> str:
    entry = entry.replace("\\", "/").strip()
    while entry.startswith("./"):
        entry = entry[2:]
    return entry.rstrip("/") or "."


def package_manifest_for(
    manifest: Manifest,
    project_dir: Path,
    arch: str = "",
    build_vars: dict[str, str] | None = None,
) -> PackageManifest:
    whitelist = {MANIFEST_FILE_NAME, "."}
    for entry in (*manifest.sources, *manifest.filesystem, *manifest.extra_files):
        whitelist.add(_normalize_entry(entry))

    transformers: dict[str, Transformer] = {
        MANIFEST_FILE_NAME: partial(
            set_manifest_arch,
            arch=arch,
            build_vars=build_vars or None,
            project_dir=project_dir,
        ),
    }
    return PackageManifest(whitelist=frozenset(whitelist), transformers=transformers)


def zip_up(
    root: Path,
    whitelist: frozenset[str] | set[str],
    transformers: dict[str, Transformer] | None = None,
) -> bytes:
    """Zip whitelisted top-level entries of `root` under the `src/` prefix.

    The whitelist applies to the first path component only. Transformers are
    keyed by forward-slash relative path.
    """
    transformers = transformers or {}
    buffer = io.BytesIO()
    try:
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for dirpath, dirnames, filenames in os.walk(root):
                rel_dir = os.path.relpath(dirpath, root)
                if rel_dir == ".":
                    kept = []
                    for name in sorted(dirnames):
                        if name in whitelist:
                            kept.append(name)
                        else:
                            LOGGER.debug("ignoring %s/", name)
                    dirnames[:] = kept
                else:
                    dirnames.sort()

                for name in sorted(filenames):
                    rel_path = name if rel_dir == "." else os.path.join(rel_dir, name)
                    rel_posix = PurePosixPath(*Path(rel_path).parts).as_posix()
                    if rel_posix.split("/", 1)[0] not in whitelist:
                        LOGGER.debug("ignoring %s", rel_posix)
                        continue
                    LOGGER.debug("zipping %s", rel_posix)
                    archive.writestr(
                        f"{ARCHIVE_PREFIX}/{rel_posix}",
                        _read_transformed(root / rel_path, rel_posix, transformers),
                    )
    except OSError as exc:
        raise PackagingError(f"packaging {root} failed") from exc
    return buffer.getvalue()


def _read_transformed(path: Path, rel_posix: str, transformers: dict[str, Transformer]) -> bytes:
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise PackagingError(f"could not read {rel_posix}") from exc
    transform = transformers.get(rel_posix)
    if transform is None:
        return data
    try:
        return transform(data)
    except PackagingError:
        raise
    except Exception as exc:
        raise PackagingError(f"could not transform {rel_posix}") from exc


def unzip_into(data: bytes, dest: Path, strip_components: int = 0) -> list[Path]:
    """Extract an in-memory zip under `dest`, refusing entries that escape it."""
    dest_resolved = dest.resolve()
    written: list[Path] = []
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            for info in archive.infolist():
                parts = PurePosixPath(info.filename).parts[strip_components:]
                if not parts:
                    continue
                target = (dest_resolved / Path(*parts)).resolve()
                if dest_resolved != target and dest_resolved not in target.parents:
                    raise ProtocolError(f"archive entry '{info.filename}' escapes {dest}")
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(info) as src, open(target, "wb") as out:
                    shutil.copyfileobj(src, out)
                written.append(target)
    except zipfile.BadZipFile as exc:
        raise ProtocolError("response is not a zip archive") from exc
    except OSError as exc:
        raise LocalIOError(f"unpacking into {dest} failed") from exc
    return written


def read_response_body(ctx: CallContext, response: requests.Response, operation: str) -> bytes:
    """Read a streamed response body, checking `ctx` between chunks."""
    chunks: list[bytes] = []
    for chunk in response.iter_content(chunk_size=HTTP_CHUNK_SIZE):
        ctx.check(operation)
        chunks.append(chunk)
    ctx.check(operation)
    return b"".join(chunks)


class BuildUploader:
    """Posts a source archive to the build service and unpacks its answer."""

    def __init__(self, settings: Settings, *, http: requests.Session | None = None) -> None:
        self._settings = settings
        self._http = http

    @property
    def build_url(self) -> str:
        return f"{self._settings.server.rstrip('/')}/api/{self._settings.user}/firmware/build"

    def upload(self, ctx: CallContext, archive: bytes, workdir: Path) -> BuildResult:
        ctx.check("build upload")
        LOGGER.info("Uploading sources (%d bytes) to %s", len(archive), self.build_url)
        status_code, body = self._post(ctx, archive)

        if status_code not in (HTTP_OK, HTTP_TEAPOT):
            raise ServiceError(status_code, body.decode("utf-8", errors="replace").strip())

        build_dir = workdir / BUILD_DIR
        if build_dir.exists():
            try:
                shutil.rmtree(build_dir)
            except OSError as exc:
                raise LocalIOError(f"could not remove previous {build_dir}") from exc
        unzip_into(body, workdir)

        log_path = build_dir / BUILD_LOG
        if not log_path.is_file():
            raise ProtocolError(f"build result has no {BUILD_DIR}/{BUILD_LOG}")

        firmware_path = None
        if status_code == HTTP_OK:
            firmware_path = build_dir / FIRMWARE_FILE_NAME
            if not firmware_path.is_file():
                raise ProtocolError(f"successful build result has no {BUILD_DIR}/{FIRMWARE_FILE_NAME}")

        return BuildResult(
            status_code=status_code,
            root=workdir,
            log_path=log_path,
            firmware_path=firmware_path,
        )

    def _post(self, ctx: CallContext, archive: bytes) -> tuple[int, bytes]:
        http = self._http or requests.Session()
        try:
            with http.post(
                self.build_url,
                files={"file": ("source.zip", archive, "application/zip")},
                auth=(self._settings.user, self._settings.password),
                timeout=ctx.remaining(),
                stream=True,
            ) as response:
                body = read_response_body(ctx, response, "build upload")
                status_code = response.status_code
        except requests.exceptions.Timeout as exc:
            raise TransportTimeoutError(f"build upload to {self.build_url} timed out") from exc
        except requests.exceptions.RequestException as exc:
            raise TransportError(f"build upload to {self.build_url} failed") from exc
        finally:
            if self._http is None:
                http.close()
        return status_code, body


def read_firmware_info(fw_path: Path) -> FirmwareInfo:
    """Read name/platform/version/build_id from a firmware bundle's manifest.json."""
    try:
        with zipfile.ZipFile(fw_path) as bundle:
            names = [n for n in bundle.namelist() if PurePosixPath(n).name == "manifest.json"]
            if not names:
                raise ProtocolError(f"{fw_path} has no manifest.json")
            doc = json.loads(bundle.read(min(names, key=len)))
    except (zipfile.BadZipFile, ValueError) as exc:
        raise ProtocolError(f"{fw_path} is not a valid firmware bundle") from exc
    except OSError as exc:
        raise LocalIOError(f"could not read {fw_path}") from exc
    return FirmwareInfo(
        name=str(doc.get("name", "")),
        platform=str(doc.get("platform", "")),
        version=str(doc.get("version", "")),
        build_id=str(doc.get("build_id", "")),
    )


def build_remote(
    ctx: CallContext,
    settings: Settings,
    workdir: Path,
    *,
    echo: Callable[[str], None],
    http: requests.Session | None = None,
) -> BuildResult:
    """Package `workdir`, build it remotely and echo the log when it matters.

    The log is echoed when the build failed or in verbose mode.
    """
    manifest = read_manifest(workdir)
    arch = detect_arch(manifest, settings.arch)
    package = package_manifest_for(manifest, workdir, arch, settings.build_vars)
    archive = zip_up(workdir, package.whitelist, package.transformers)

    result = BuildUploader(settings, http=http).upload(ctx, archive, workdir)

    if settings.verbose or not result.succeeded:
        try:
            echo(result.log_path.read_text(encoding="utf-8", errors="replace"))
        except OSError as exc:
            raise LocalIOError(f"could not read {result.log_path}") from exc
    return result
