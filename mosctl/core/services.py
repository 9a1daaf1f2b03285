"""Per-service RPC clients bound to one channel and destination."""

from __future__ import annotations

from typing import Any

from mosctl.core.context import CallContext
from mosctl.core.errors import RemoteError, TransportError
from mosctl.core.model import DelayedJSON, MethodCall
from mosctl.transports.base import RPCChannel


class ServiceClient:
    def __init__(self, channel: RPCChannel, dest: str) -> None:
        self.channel = channel
        self.dest = dest

    def _call(self, ctx: CallContext, method: str, args: Any = None) -> Any:
        try:
            result = self.channel.call(ctx, self.dest, MethodCall(cmd=method, args=args))
        except TransportError as exc:
            raise type(exc)(f"{method} failed") from exc
        if not result.ok:
            raise RemoteError(
                f"{method}: remote error: {result.status_msg}",
                status=result.status,
                status_msg=result.status_msg,
            )
        return result.response


class ConfigService(ServiceClient):
    def get(self, ctx: CallContext) -> Any:
        return self._call(ctx, "Config.Get", {})

    def set(self, ctx: CallContext, config: DelayedJSON) -> None:
        self._call(ctx, "Config.Set", _ArgsWithDelayedField("config", config))


class VarsService(ServiceClient):
    def get(self, ctx: CallContext) -> Any:
        return self._call(ctx, "Vars.Get", {})


class FilesystemService(ServiceClient):
    def list(self, ctx: CallContext) -> Any:
        return self._call(ctx, "FS.List")

    def get(self, ctx: CallContext, *, filename: str, offset: int, length: int) -> Any:
        # firmware reads the chunk size from "len"
        return self._call(ctx, "FS.Get", {"filename": filename, "offset": offset, "len": length})

    def put(self, ctx: CallContext, *, filename: str, data: str, append: bool) -> None:
        self._call(ctx, "FS.Put", {"filename": filename, "data": data, "append": append})

    def remove(self, ctx: CallContext, *, filename: str) -> None:
        self._call(ctx, "FS.Remove", {"filename": filename})


class _ArgsWithDelayedField:
    """`{"<key>": <delayed value>}` encoded only at transmission time."""

    def __init__(self, key: str, value: DelayedJSON) -> None:
        self.key = key
        self.value = value

    def to_json(self) -> str:
        return '{"%s":%s}' % (self.key, self.value.to_json())
