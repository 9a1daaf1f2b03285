"""Stable public API for building tooling on top of mosctl.

This module is the supported integration surface for third-party callers
(build services, test rigs, scripts). Avoid importing from private/internal
modules unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

from pathlib import Path
from typing import BinaryIO, Callable

import requests

from mosctl.core import fs
from mosctl.core.build import build_remote
from mosctl.core.context import CallContext
from mosctl.core.errors import (
    BuildFailedError,
    ConfigError,
    HardwareIOError,
    InvalidArgumentError,
    LocalIOError,
    MosctlError,
    OperationCancelledError,
    PackagingError,
    ProtocolError,
    RemoteError,
    ServiceError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
)
from mosctl.core.model import BuildResult, FileChunk, FirmwareInfo, MethodResult
from mosctl.core.rpc import call_device_service
from mosctl.core.session import DevConf, DevConn
from mosctl.core.settings import Settings
from mosctl.transports.base import ChannelFactory, JunkHandler
from mosctl.transports.framed import open_channel

__all__ = [
    "MosctlError",
    "BuildFailedError",
    "ConfigError",
    "HardwareIOError",
    "InvalidArgumentError",
    "LocalIOError",
    "OperationCancelledError",
    "PackagingError",
    "ProtocolError",
    "RemoteError",
    "ServiceError",
    "TransportError",
    "TransportConnectError",
    "TransportSendError",
    "TransportTimeoutError",
    "BuildResult",
    "CallContext",
    "DevConf",
    "FileChunk",
    "FirmwareInfo",
    "MethodResult",
    "Settings",
    "Client",
]


class Client:
    """Public client for one device plus the remote build service.

    A `Client` owns at most one device connection. Use it as a context manager
    so the connection is released on every exit path; each blocking call takes
    an optional `CallContext` for timeouts and cancellation.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        channel_factory: ChannelFactory | None = None,
        junk_handler: JunkHandler | None = None,
        http: requests.Session | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self._dev_conn = DevConn(
            self.settings.port,
            channel_factory=channel_factory or open_channel,
            junk_handler=junk_handler,
        )
        self._http = http

    def _ctx(self, ctx: CallContext | None) -> CallContext:
        return ctx or CallContext(self.settings.timeout_s)

    def connect(self, ctx: CallContext | None = None) -> None:
        self._dev_conn.connect(self._ctx(ctx), self.settings.reconnect)

    def disconnect(self, ctx: CallContext | None = None) -> None:
        self._dev_conn.disconnect(self._ctx(ctx))

    def __enter__(self) -> Client:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()

    def call(self, method: str, args: str = "", *, ctx: CallContext | None = None) -> str:
        return call_device_service(self._ctx(ctx), self._dev_conn, method, args)

    def list_files(self, *, ctx: CallContext | None = None) -> list[str]:
        return fs.list_files(self._ctx(ctx), self._dev_conn)

    def get_file(self, name: str, *, ctx: CallContext | None = None) -> bytes:
        return fs.get_file(self._ctx(ctx), self._dev_conn, name)

    def put_data(self, reader: BinaryIO, dev_filename: str, *, ctx: CallContext | None = None) -> int:
        return fs.put_data(self._ctx(ctx), self._dev_conn, reader, dev_filename)

    def put_file(
        self,
        host_filename: str,
        dev_filename: str | None = None,
        *,
        ctx: CallContext | None = None,
    ) -> int:
        return fs.put_file(self._ctx(ctx), self._dev_conn, host_filename, dev_filename)

    def remove_file(self, name: str, *, ctx: CallContext | None = None) -> None:
        fs.remove_file(self._ctx(ctx), self._dev_conn, name)

    def get_config(self, *, ctx: CallContext | None = None) -> DevConf:
        return self._dev_conn.get_config(self._ctx(ctx))

    def set_config(self, dev_conf: DevConf, *, ctx: CallContext | None = None) -> None:
        self._dev_conn.set_config(self._ctx(ctx), dev_conf)

    def build(
        self,
        project_dir: Path,
        *,
        echo: Callable[[str], None] = print,
        ctx: CallContext | None = None,
    ) -> BuildResult:
        return build_remote(self._ctx(ctx), self.settings, project_dir, echo=echo, http=self._http)
