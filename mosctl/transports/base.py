"""Transport interfaces."""

from __future__ import annotations

from typing import Callable, Protocol

from mosctl.core.context import CallContext
from mosctl.core.model import MethodCall, MethodResult

JunkHandler = Callable[[bytes], None]


class RPCChannel(Protocol):
    def call(self, ctx: CallContext, dest: str, command: MethodCall) -> MethodResult:
        """Send one command to `dest` and wait for its result envelope."""

    def disconnect(self, ctx: CallContext) -> None:
        """Close the channel. A reconnecting channel stays closed."""


class ChannelFactory(Protocol):
    def __call__(
        self,
        ctx: CallContext,
        address: str,
        *,
        local_id: str,
        junk_handler: JunkHandler,
        reconnect: bool,
    ) -> RPCChannel:
        """Open a channel to the device at `address`."""


class ByteLink(Protocol):
    def write(self, data: bytes) -> None:
        """Write all of `data` or raise OSError."""

    def read(self, timeout_s: float) -> bytes:
        """Return whatever arrived within `timeout_s`, possibly nothing."""

    def close(self) -> None:
        """Release the underlying port or socket."""


class LineControl(Protocol):
    def set_bitbang_mode(self, mask: int) -> None:
        """Drive the lines in `mask`; zero releases every line."""

    def write_byte(self, value: int) -> None:
        """Set the state of all driven lines at once."""
