"""Arbitrary method calls against the attached device."""

from __future__ import annotations

import json
import logging
import time
from typing import Callable

from mosctl.core.context import CallContext
from mosctl.core.errors import InvalidArgumentError, RemoteError, TransportConnectError, TransportError
from mosctl.core.model import MethodCall, RawJSON
from mosctl.core.session import DevConn

# The device reboots ~100ms after acknowledging; nothing may be sent before then.
REBOOT_WAIT_S = 0.2
REBOOT_METHODS = frozenset({"Sys.Reboot"})

LOGGER = logging.getLogger(__name__)


def is_json(text: str) -> bool:
    """True for a JSON object, array or string (null is tolerated too)."""
    try:
        value = json.loads(text)
    except ValueError:
        return False
    return value is None or isinstance(value, (dict, list, str))


def call_device_service(
    ctx: CallContext,
    dev_conn: DevConn,
    method: str,
    args: str = "",
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    if not method:
        raise InvalidArgumentError("method required")
    if args and not is_json(args):
        raise InvalidArgumentError(f"Args [{args}] is not a valid JSON string")
    if dev_conn.rpc is None:
        raise TransportConnectError(f"not connected to {dev_conn.address}")

    command = MethodCall(cmd=method, args=RawJSON(args) if args else None)
    try:
        result = dev_conn.rpc.call(ctx, dev_conn.dest, command)
    except TransportError as exc:
        raise type(exc)(f"call {method} failed") from exc

    if not result.ok:
        raise RemoteError(
            f"remote error: {result.status_msg}",
            status=result.status,
            status_msg=result.status_msg,
        )

    if method in REBOOT_METHODS:
        LOGGER.debug("Waiting %.1fs for %s to take effect", REBOOT_WAIT_S, method)
        sleep(REBOOT_WAIT_S)

    return json.dumps(result.response, indent=2)
