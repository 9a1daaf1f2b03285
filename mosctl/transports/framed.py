"""RPC channel carrying JSON frames over a serial port or TCP socket.

Frames are JSON documents wrapped in triple-quote delimiters. Anything the
device prints between frames (boot messages, logs) is handed to the junk
handler untouched.
"""

from __future__ import annotations

import itertools
import json
import logging
import socket
from typing import Any, Callable
from urllib.parse import urlsplit

import serial

from mosctl.core.context import CallContext
from mosctl.core.errors import (
    InvalidArgumentError,
    ProtocolError,
    TransportConnectError,
    TransportSendError,
)
from mosctl.core.model import MethodCall, MethodResult, encode_args
from mosctl.transports.base import ByteLink, JunkHandler

FRAME_DELIMITER = b'"""'
DEFAULT_BAUD_RATE = 115200
DEFAULT_TCP_PORT = 80
_READ_SLICE_S = 0.1
LOGGER = logging.getLogger(__name__)


class SerialLink:
    def __init__(self, port: str, baud_rate: int = DEFAULT_BAUD_RATE) -> None:
        try:
            self._serial = serial.Serial(port, baud_rate, timeout=_READ_SLICE_S)
        except (serial.SerialException, OSError) as exc:
            raise TransportConnectError(f"Could not open serial port {port}") from exc

    def write(self, data: bytes) -> None:
        try:
            self._serial.write(data)
            self._serial.flush()
        except serial.SerialException as exc:
            raise OSError(str(exc)) from exc

    def read(self, timeout_s: float) -> bytes:
        self._serial.timeout = timeout_s
        try:
            waiting = self._serial.in_waiting
            return self._serial.read(max(1, waiting))
        except serial.SerialException as exc:
            raise OSError(str(exc)) from exc

    def close(self) -> None:
        self._serial.close()


class TCPLink:
    def __init__(self, host: str, port: int, timeout_s: float | None = None) -> None:
        try:
            self._socket = socket.create_connection((host, port), timeout=timeout_s)
        except OSError as exc:
            raise TransportConnectError(f"TCP connect failed for {host}:{port}") from exc

    def write(self, data: bytes) -> None:
        self._socket.sendall(data)

    def read(self, timeout_s: float) -> bytes:
        self._socket.settimeout(timeout_s)
        try:
            data = self._socket.recv(4096)
        except socket.timeout:
            return b""
        if not data:
            raise ConnectionResetError("connection closed by peer")
        return data

    def close(self) -> None:
        self._socket.close()


def parse_address(address: str) -> tuple[str, str, int | None]:
    """Split a connect address into (scheme, target, port).

    Accepts serial:///dev/ttyUSB0, serial://COM7, tcp://host[:port] and bare
    serial device names.
    """
    if "://" not in address:
        return "serial", address, None
    parts = urlsplit(address)
    if parts.scheme == "serial":
        target = parts.netloc + parts.path
        if not target:
            raise InvalidArgumentError(f"Serial address '{address}' names no port")
        return "serial", target, None
    if parts.scheme == "tcp":
        if not parts.hostname:
            raise InvalidArgumentError(f"TCP address '{address}' names no host")
        return "tcp", parts.hostname, parts.port or DEFAULT_TCP_PORT
    raise InvalidArgumentError(f"Unsupported address scheme '{parts.scheme}' in '{address}'")


def open_link(address: str, timeout_s: float | None = None) -> ByteLink:
    scheme, target, port = parse_address(address)
    if scheme == "tcp":
        return TCPLink(target, port or DEFAULT_TCP_PORT, timeout_s)
    return SerialLink(target)


class FramedChannel:
    def __init__(
        self,
        link_opener: Callable[[CallContext], ByteLink],
        ctx: CallContext,
        *,
        local_id: str,
        junk_handler: JunkHandler,
        reconnect: bool = False,
    ) -> None:
        self._open_link = link_opener
        self._link: ByteLink | None = link_opener(ctx)
        self._local_id = local_id
        self._junk_handler = junk_handler
        self._reconnect = reconnect
        self._ids = itertools.count(1)
        self._buffer = b""

    def call(self, ctx: CallContext, dest: str, command: MethodCall) -> MethodResult:
        request_id = next(self._ids)
        frame = self._encode(request_id, dest, command)
        try:
            return self._exchange(ctx, request_id, frame, command.cmd)
        except OSError as exc:
            if not self._reconnect:
                raise TransportSendError(f"{command.cmd}: link failure") from exc
            LOGGER.info("Link dropped during %s (%s), reconnecting", command.cmd, exc)
            self._reopen(ctx)
            try:
                return self._exchange(ctx, request_id, frame, command.cmd)
            except OSError as retry_exc:
                raise TransportSendError(f"{command.cmd}: link failure after reconnect") from retry_exc

    def disconnect(self, ctx: CallContext) -> None:
        link, self._link = self._link, None
        self._reconnect = False
        if link is None:
            return
        try:
            link.close()
        except OSError as exc:
            raise TransportSendError("disconnect failed") from exc

    def _reopen(self, ctx: CallContext) -> None:
        if self._link is not None:
            try:
                self._link.close()
            except OSError:
                LOGGER.debug("Ignoring close error on dropped link")
        self._buffer = b""
        # reopen under the current call's deadline
        self._link = self._open_link(ctx)

    def _encode(self, request_id: int, dest: str, command: MethodCall) -> bytes:
        header: dict[str, Any] = {
            "v": 1,
            "id": request_id,
            "src": self._local_id,
            "dst": dest,
            "cmd": command.cmd,
        }
        text = json.dumps(header, separators=(",", ":"))
        if command.args is not None:
            text = text[:-1] + ',"args":' + encode_args(command.args) + "}"
        return FRAME_DELIMITER + text.encode("utf-8") + FRAME_DELIMITER + b"\n"

    def _exchange(self, ctx: CallContext, request_id: int, frame: bytes, operation: str) -> MethodResult:
        if self._link is None:
            raise TransportSendError(f"{operation}: channel is closed")
        ctx.check(operation)
        self._link.write(frame)
        while True:
            for doc in self._drain_frames():
                if doc.get("id") != request_id:
                    LOGGER.debug("Dropping frame for id %s while waiting for %s", doc.get("id"), request_id)
                    continue
                return _decode_result(doc)
            ctx.check(operation)
            remaining = ctx.remaining()
            slice_s = _READ_SLICE_S if remaining is None else min(_READ_SLICE_S, remaining)
            self._buffer += self._link.read(slice_s)

    def _drain_frames(self) -> list[dict[str, Any]]:
        docs: list[dict[str, Any]] = []
        while True:
            start = self._buffer.find(FRAME_DELIMITER)
            if start < 0:
                # keep a possible partial delimiter at the tail
                keep = len(FRAME_DELIMITER) - 1
                if len(self._buffer) > keep:
                    self._emit_junk(self._buffer[:-keep])
                    self._buffer = self._buffer[-keep:]
                return docs
            if start > 0:
                self._emit_junk(self._buffer[:start])
                self._buffer = self._buffer[start:]
            end = self._buffer.find(FRAME_DELIMITER, len(FRAME_DELIMITER))
            if end < 0:
                return docs
            body = self._buffer[len(FRAME_DELIMITER):end]
            self._buffer = self._buffer[end + len(FRAME_DELIMITER):]
            try:
                doc = json.loads(body)
            except ValueError:
                self._emit_junk(FRAME_DELIMITER + body + FRAME_DELIMITER)
                continue
            if isinstance(doc, dict):
                docs.append(doc)

    def _emit_junk(self, junk: bytes) -> None:
        if junk:
            self._junk_handler(junk)


def _decode_result(doc: dict[str, Any]) -> MethodResult:
    status = doc.get("status", 0)
    if not isinstance(status, int):
        raise ProtocolError(f"Malformed response envelope: status {status!r}")
    return MethodResult(
        status=status,
        status_msg=str(doc.get("status_msg") or ""),
        response=doc.get("response"),
    )


def open_channel(
    ctx: CallContext,
    address: str,
    *,
    local_id: str,
    junk_handler: JunkHandler,
    reconnect: bool,
) -> FramedChannel:
    ctx.check(f"connect to {address}")
    parse_address(address)
    LOGGER.info("Connecting to %s", address)
    return FramedChannel(
        lambda call_ctx: open_link(address, call_ctx.remaining()),
        ctx,
        local_id=local_id,
        junk_handler=junk_handler,
        reconnect=reconnect,
    )
