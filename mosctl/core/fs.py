"""Chunked file transfer to and from the device filesystem."""

from __future__ import annotations

import base64
import binascii
import logging
import os
from collections.abc import Iterator
from typing import Any, BinaryIO

from mosctl.core.context import CallContext
from mosctl.core.errors import LocalIOError, ProtocolError, TransportConnectError
from mosctl.core.model import FileChunk
from mosctl.core.services import FilesystemService
from mosctl.core.session import DevConn

# Changing this breaks compatibility with firmware that sizes its buffers for it.
CHUNK_SIZE = 512

LOGGER = logging.getLogger(__name__)


def _fs(dev_conn: DevConn) -> FilesystemService:
    if dev_conn.fs is None:
        raise TransportConnectError(f"not connected to {dev_conn.address}")
    return dev_conn.fs


def list_files(ctx: CallContext, dev_conn: DevConn) -> list[str]:
    files = _fs(dev_conn).list(ctx)
    if not isinstance(files, list):
        raise ProtocolError("FS.List returned a non-list response")
    return [str(f) for f in files]


def _decode_chunk(raw: Any, filename: str, offset: int) -> FileChunk:
    if not isinstance(raw, dict) or "data" not in raw or "left" not in raw:
        raise ProtocolError(f"FS.Get {filename} at offset {offset}: malformed chunk")
    try:
        data = base64.b64decode(raw["data"] or "", validate=True)
    except (binascii.Error, TypeError) as exc:
        raise ProtocolError(f"FS.Get {filename} at offset {offset}: bad chunk encoding") from exc
    left = raw["left"]
    if not isinstance(left, int) or left < 0:
        raise ProtocolError(f"FS.Get {filename} at offset {offset}: bad 'left' value {left!r}")
    return FileChunk(filename=filename, offset=offset, length=CHUNK_SIZE, data=data, left=left)


def iter_chunks(ctx: CallContext, dev_conn: DevConn, name: str) -> Iterator[FileChunk]:
    fs = _fs(dev_conn)
    offset = 0
    while True:
        raw = fs.get(ctx, filename=name, offset=offset, length=CHUNK_SIZE)
        chunk = _decode_chunk(raw, name, offset)
        yield chunk
        offset += len(chunk.data)
        if chunk.left == 0:
            return


def get_file(ctx: CallContext, dev_conn: DevConn, name: str) -> bytes:
    """Fetch a whole file; any failed chunk fails the transfer."""
    contents = bytearray()
    for chunk in iter_chunks(ctx, dev_conn, name):
        contents += chunk.data
    LOGGER.debug("Fetched %s (%d bytes)", name, len(contents))
    return bytes(contents)


def put_data(ctx: CallContext, dev_conn: DevConn, reader: BinaryIO, dev_filename: str) -> int:
    """Write a stream to the device; only the first chunk truncates the file.

    Returns the number of chunks sent.
    """
    fs = _fs(dev_conn)
    append = False
    sent = 0
    while True:
        try:
            data = reader.read(CHUNK_SIZE)
        except OSError as exc:
            raise LocalIOError(f"reading data for {dev_filename} failed") from exc
        if not data:
            break
        fs.put(
            ctx,
            filename=dev_filename,
            data=base64.b64encode(data).decode("ascii"),
            append=append,
        )
        sent += 1
        # All subsequent writes to this file append.
        append = True
    LOGGER.debug("Wrote %s in %d chunks", dev_filename, sent)
    return sent


def put_file(
    ctx: CallContext,
    dev_conn: DevConn,
    host_filename: str,
    dev_filename: str | None = None,
) -> int:
    dev_filename = dev_filename or os.path.basename(host_filename)
    try:
        handle = open(host_filename, "rb")
    except OSError as exc:
        raise LocalIOError(f"could not open {host_filename}") from exc
    with handle:
        return put_data(ctx, dev_conn, handle, dev_filename)


def remove_file(ctx: CallContext, dev_conn: DevConn, dev_filename: str) -> None:
    _fs(dev_conn).remove(ctx, filename=dev_filename)
