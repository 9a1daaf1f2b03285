"""The parts of the firmware manifest (mos.yml) the build path reads and rewrites."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from mosctl.core.errors import InvalidArgumentError, LocalIOError, PackagingError

MANIFEST_FILE_NAME = "mos.yml"


@dataclass(frozen=True)
class Manifest:
    name: str = ""
    arch: str = ""
    version: str = ""
    mongoose_os_version: str = "master"
    sources: tuple[str, ...] = ()
    filesystem: tuple[str, ...] = ()
    extra_files: tuple[str, ...] = ()
    build_vars: dict[str, str] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)


def _str_list(doc: dict[str, Any], key: str) -> tuple[str, ...]:
    value = doc.get(key) or []
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list):
        raise PackagingError(f"{MANIFEST_FILE_NAME}: '{key}' must be a list")
    return tuple(str(v) for v in value)


def parse_manifest(data: bytes | str) -> Manifest:
    try:
        doc = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise PackagingError(f"Invalid YAML in {MANIFEST_FILE_NAME}") from exc
    if doc is None:
        doc = {}
    if not isinstance(doc, dict):
        raise PackagingError(f"{MANIFEST_FILE_NAME} must contain a mapping at root")

    build_vars = doc.get("build_vars") or {}
    if not isinstance(build_vars, dict):
        raise PackagingError(f"{MANIFEST_FILE_NAME}: 'build_vars' must be a mapping")

    return Manifest(
        name=str(doc.get("name") or ""),
        arch=str(doc.get("arch") or ""),
        version=str(doc.get("version") or ""),
        mongoose_os_version=str(doc.get("mongoose_os_version") or "master"),
        sources=_str_list(doc, "sources"),
        filesystem=_str_list(doc, "filesystem"),
        extra_files=_str_list(doc, "extra_files"),
        build_vars={str(k): str(v) for k, v in build_vars.items()},
        raw=doc,
    )


def read_manifest(project_dir: Path) -> Manifest:
    path = project_dir / MANIFEST_FILE_NAME
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise LocalIOError(f"Could not read {path}") from exc
    return parse_manifest(data)


def detect_arch(manifest: Manifest, arch_override: str = "") -> str:
    arch = arch_override or manifest.arch
    if not arch:
        raise InvalidArgumentError(
            f"--arch must be specified or {MANIFEST_FILE_NAME} should contain an arch key"
        )
    return arch


def fixup_app_name(name: str, project_dir: Path) -> str:
    """Empty app names default to the project directory's name."""
    if name:
        return name
    return project_dir.resolve().name


def parse_build_vars(items: Iterable[str]) -> dict[str, str]:
    build_vars: dict[str, str] = {}
    for item in items:
        name, sep, value = item.partition(":")
        if not sep or not name:
            raise InvalidArgumentError(f"Build variable '{item}' must be in the format NAME:VALUE")
        build_vars[name] = value
    return build_vars


def set_manifest_arch(
    data: bytes,
    arch: str,
    build_vars: dict[str, str] | None,
    project_dir: Path,
) -> bytes:
    """Rewrite manifest content with the resolved arch, build vars and app name.

    Keys the tool does not know about are carried over untouched.
    """
    manifest = parse_manifest(data)
    doc = dict(manifest.raw)

    if arch:
        doc["arch"] = arch

    if build_vars:
        merged = dict(doc.get("build_vars") or {})
        merged.update(build_vars)
        doc["build_vars"] = merged

    doc["name"] = fixup_app_name(manifest.name, project_dir)

    return yaml.safe_dump(doc, sort_keys=False, default_flow_style=False).encode("utf-8")
