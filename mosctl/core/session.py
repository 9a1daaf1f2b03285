"""Lifecycle of one logical connection to a device."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from mosctl.core.context import CallContext, background
from mosctl.core.errors import InvalidArgumentError, ProtocolError, TransportConnectError
from mosctl.core.model import DelayedJSON
from mosctl.core.services import ConfigService, FilesystemService, VarsService
from mosctl.transports.base import ChannelFactory, JunkHandler, RPCChannel

# Empty destination: the device on the other end of the link handles the frame
# itself instead of routing it by id.
DIRECT_DEST = ""
LOCAL_ID = "mos"
DISCONNECT_SETTLE_S = 0.5

LOGGER = logging.getLogger(__name__)


def _drop_junk(junk: bytes) -> None:
    return None


class DevConf:
    """Device configuration document addressed by dotted keys."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.data = data

    def get(self, key: str = "") -> Any:
        node: Any = self.data
        if not key:
            return node
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                raise InvalidArgumentError(f"Config key '{key}' not found")
            node = node[part]
        return node

    def set(self, key: str, value: str) -> None:
        parts = key.split(".")
        node: Any = self.data
        for part in parts[:-1]:
            if not isinstance(node, dict) or part not in node:
                raise InvalidArgumentError(f"Config key '{key}' not found")
            node = node[part]
        if not isinstance(node, dict) or parts[-1] not in node:
            raise InvalidArgumentError(f"Config key '{key}' not found")
        node[parts[-1]] = _coerce(value, node[parts[-1]], key)


def _coerce(value: str, current: Any, key: str) -> Any:
    if isinstance(current, bool):
        lowered = value.strip().lower()
        if lowered not in {"true", "false"}:
            raise InvalidArgumentError(f"Config key '{key}' expects true/false, got '{value}'")
        return lowered == "true"
    if isinstance(current, int):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise InvalidArgumentError(f"Config key '{key}' expects an integer, got '{value}'") from exc
    if isinstance(current, float):
        try:
            return float(value)
        except ValueError as exc:
            raise InvalidArgumentError(f"Config key '{key}' expects a number, got '{value}'") from exc
    if isinstance(current, (dict, list)):
        raise InvalidArgumentError(f"Config key '{key}' is not a scalar")
    return value


class DevConn:
    """One connection to a device at an address like serial:///dev/ttyUSB0.

    At most one channel is live at a time; `disconnect` must clear it before
    `connect` opens another.
    """

    def __init__(
        self,
        address: str,
        *,
        channel_factory: ChannelFactory,
        junk_handler: JunkHandler | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.address = address
        self.dest = DIRECT_DEST
        self.junk_handler = junk_handler or _drop_junk
        self.reconnect = False
        self.rpc: RPCChannel | None = None
        self.config: ConfigService | None = None
        self.vars: VarsService | None = None
        self.fs: FilesystemService | None = None
        self._channel_factory = channel_factory
        self._sleep = sleep or time.sleep

    @property
    def connected(self) -> bool:
        return self.rpc is not None

    def connect(self, ctx: CallContext, reconnect: bool = False) -> None:
        if self.rpc is not None:
            return

        self.reconnect = reconnect
        try:
            self.rpc = self._channel_factory(
                ctx,
                self.address,
                local_id=LOCAL_ID,
                junk_handler=self.junk_handler,
                reconnect=reconnect,
            )
        except OSError as exc:
            raise TransportConnectError(f"connect to {self.address} failed") from exc

        self.config = ConfigService(self.rpc, DIRECT_DEST)
        self.vars = VarsService(self.rpc, DIRECT_DEST)
        self.fs = FilesystemService(self.rpc, DIRECT_DEST)

    def disconnect(self, ctx: CallContext) -> None:
        if self.rpc is None:
            return
        LOGGER.debug("Disconnecting from %s", self.address)
        try:
            self.rpc.disconnect(ctx)
        finally:
            # Reopening a port right after closing it fails on some platforms.
            self._sleep(DISCONNECT_SETTLE_S)
            self.rpc = None
            self.config = self.vars = self.fs = None

    def get_config(self, ctx: CallContext) -> DevConf:
        raw = self._require(self.config).get(ctx)
        if not isinstance(raw, dict):
            raise ProtocolError("Config.Get returned a non-object document")
        return DevConf(raw)

    def set_config(self, ctx: CallContext, dev_conf: DevConf) -> None:
        self._require(self.config).set(ctx, DelayedJSON(dev_conf.data))

    def _require(self, client: Any) -> Any:
        if client is None:
            raise TransportConnectError(f"not connected to {self.address}")
        return client

    def __enter__(self) -> DevConn:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect(background())


def create_dev_conn(
    ctx: CallContext,
    address: str,
    reconnect: bool,
    *,
    channel_factory: ChannelFactory,
    junk_handler: JunkHandler | None = None,
) -> DevConn:
    dev_conn = DevConn(address, channel_factory=channel_factory, junk_handler=junk_handler)
    dev_conn.connect(ctx, reconnect)
    return dev_conn
