"""Core data models shared by sessions, transfers, builds and the CLI."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable


class RawJSON:
    """Already-encoded JSON text spliced into a frame as-is."""

    def __init__(self, text: str) -> None:
        self.text = text

    def to_json(self) -> str:
        return self.text


class DelayedJSON:
    """A value whose JSON encoding happens only when the frame is written."""

    def __init__(self, value: Any) -> None:
        self.value = value

    def to_json(self) -> str:
        return json.dumps(self.value, separators=(",", ":"))


def encode_args(args: Any) -> str:
    if hasattr(args, "to_json"):
        return args.to_json()
    return json.dumps(args, separators=(",", ":"))


@dataclass(frozen=True)
class MethodCall:
    cmd: str
    args: Any = None


@dataclass(frozen=True)
class MethodResult:
    status: int
    status_msg: str = ""
    response: Any = None

    @property
    def ok(self) -> bool:
        return self.status == 0


@dataclass(frozen=True)
class FileChunk:
    filename: str
    offset: int
    length: int
    data: bytes
    left: int


@dataclass(frozen=True)
class BootStep:
    value: int
    hold_s: float


BootSequence = tuple[BootStep, ...]


@dataclass(frozen=True)
class PackageManifest:
    whitelist: frozenset[str]
    transformers: dict[str, Callable[[bytes], bytes]] = field(default_factory=dict)


@dataclass(frozen=True)
class BuildResult:
    status_code: int
    root: Path
    log_path: Path
    firmware_path: Path | None = None

    @property
    def succeeded(self) -> bool:
        return self.status_code == 200


@dataclass(frozen=True)
class FirmwareInfo:
    name: str
    platform: str
    version: str
    build_id: str
