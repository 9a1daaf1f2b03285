"""Project skeleton initialisation."""

from __future__ import annotations

import logging
from pathlib import Path

import requests
import yaml

from mosctl.core.build import read_response_body, unzip_into
from mosctl.core.context import CallContext
from mosctl.core.errors import InvalidArgumentError, LocalIOError, ServiceError, TransportError, TransportTimeoutError
from mosctl.core.manifest import MANIFEST_FILE_NAME, parse_manifest
from mosctl.core.settings import Settings


LOGGER = logging.getLogger(__name__)


def skeleton_url(settings: Settings) -> str:
    return f"{settings.server.rstrip('/')}/downloads/skeleton.zip"


def _download(ctx: CallContext, url: str, http: requests.Session | None) -> bytes:
    session = http or requests.Session()
    try:
        with session.get(url, timeout=ctx.remaining(), stream=True) as response:
            if response.status_code != 200:
                raise ServiceError(response.status_code, f"bad response on {url}")
            return read_response_body(ctx, response, "skeleton download")
    except requests.exceptions.Timeout as exc:
        raise TransportTimeoutError(f"download of {url} timed out") from exc
    except requests.exceptions.RequestException as exc:
        raise TransportError(f"download of {url} failed") from exc
    finally:
        if http is None:
            session.close()


def init_project(
    ctx: CallContext,
    settings: Settings,
    target: Path,
    *,
    force: bool = False,
    http: requests.Session | None = None,
) -> list[Path]:
    """Unpack the project skeleton into `target` and apply the configured arch."""
    target.mkdir(parents=True, exist_ok=True)
    if any(target.iterdir()) and not force:
        raise InvalidArgumentError("refuse to init source tree in non-empty directory")

    url = skeleton_url(settings)
    LOGGER.info("Downloading project skeleton from %s", url)
    ctx.check("skeleton download")
    data = _download(ctx, url, http)
    written = unzip_into(data, target, strip_components=1)

    if settings.arch:
        manifest_path = target / MANIFEST_FILE_NAME
        try:
            doc = dict(parse_manifest(manifest_path.read_bytes()).raw)
            doc["arch"] = settings.arch
            manifest_path.write_text(yaml.safe_dump(doc, sort_keys=False), encoding="utf-8")
        except OSError as exc:
            raise LocalIOError(f"could not set arch in {manifest_path}") from exc
    return written
