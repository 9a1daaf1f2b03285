"""Typer CLI entrypoint."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import NoReturn

import typer

from mosctl.core import fs
from mosctl.core.boot import open_launchxl
from mosctl.core.build import build_remote, read_firmware_info
from mosctl.core.context import CallContext
from mosctl.core.errors import BuildFailedError, InvalidArgumentError, MosctlError, describe_error
from mosctl.core.manifest import parse_build_vars
from mosctl.core.project import init_project
from mosctl.core.rpc import call_device_service, is_json
from mosctl.core.session import DevConn, create_dev_conn
from mosctl.core.settings import Settings, load_settings
from mosctl.transports.framed import open_channel

app = typer.Typer(help="Talk to Mongoose OS devices and build their firmware remotely")
LOGGER = logging.getLogger("mosctl")


class BootMode(str, Enum):
    bootloader = "bootloader"
    firmware = "firmware"


def _fail(exc: MosctlError) -> NoReturn:
    typer.echo(f"Error: {describe_error(exc)}", err=True)
    raise typer.Exit(code=1) from None


def _log_junk(junk: bytes) -> None:
    LOGGER.debug("device: %s", junk.decode("utf-8", errors="replace").rstrip())


@contextmanager
def _device(settings: Settings, call_ctx: CallContext) -> Iterator[DevConn]:
    dev_conn = create_dev_conn(
        call_ctx,
        settings.port,
        settings.reconnect,
        channel_factory=open_channel,
        junk_handler=_log_junk,
    )
    with dev_conn:
        yield dev_conn


@app.callback()
def main(
    ctx: typer.Context,
    port: str | None = typer.Option(None, "--port", envvar="MOS_PORT", help="serial:///dev/ttyUSB0, tcp://host:port"),
    timeout: float | None = typer.Option(None, "--timeout", envvar="MOS_TIMEOUT", help="Seconds per command"),
    reconnect: bool | None = typer.Option(None, "--reconnect/--no-reconnect", help="Reopen dropped links"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging and build log echo"),
    server: str | None = typer.Option(None, "--server", envvar="MOS_SERVER", help="Build service URL"),
    user: str | None = typer.Option(None, "--user", envvar="MOS_USER"),
    password: str | None = typer.Option(None, "--pass", envvar="MOS_PASS"),
    arch: str | None = typer.Option(None, "--arch", envvar="MOS_ARCH", help="Target architecture"),
    build_var: list[str] | None = typer.Option(None, "--build-var", help="NAME:VALUE, repeatable"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        settings = load_settings().merged(
            port=port,
            timeout_s=timeout,
            reconnect=reconnect,
            verbose=verbose or None,
            server=server,
            user=user,
            password=password,
            arch=arch,
            build_vars=parse_build_vars(build_var) if build_var else None,
        )
    except MosctlError as exc:
        _fail(exc)
    ctx.obj = settings


@app.command("call")
def call(
    ctx: typer.Context,
    method: str,
    args: str = typer.Argument("", help="JSON object, array or string"),
) -> None:
    """Call an RPC method on the device and print its response."""
    settings: Settings = ctx.obj
    call_ctx = CallContext(settings.timeout_s)
    try:
        # Reject bad args before touching the port.
        if not method:
            raise InvalidArgumentError("method required")
        if args and not is_json(args):
            raise InvalidArgumentError(f"Args [{args}] is not a valid JSON string")
        with _device(settings, call_ctx) as dev_conn:
            result = call_device_service(call_ctx, dev_conn, method, args)
    except MosctlError as exc:
        _fail(exc)
    typer.echo(result)


@app.command("ls")
def ls(ctx: typer.Context) -> None:
    """List files on the device."""
    settings: Settings = ctx.obj
    call_ctx = CallContext(settings.timeout_s)
    try:
        with _device(settings, call_ctx) as dev_conn:
            files = fs.list_files(call_ctx, dev_conn)
    except MosctlError as exc:
        _fail(exc)
    for name in files:
        typer.echo(name)


@app.command("get")
def get(ctx: typer.Context, filename: str) -> None:
    """Print a device file to stdout."""
    settings: Settings = ctx.obj
    call_ctx = CallContext(settings.timeout_s)
    try:
        with _device(settings, call_ctx) as dev_conn:
            data = fs.get_file(call_ctx, dev_conn, filename)
    except MosctlError as exc:
        _fail(exc)
    typer.echo(data, nl=False)


@app.command("put")
def put(
    ctx: typer.Context,
    host_file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    dev_file: str | None = typer.Argument(None, help="Defaults to the host file's name"),
) -> None:
    """Upload a local file to the device."""
    settings: Settings = ctx.obj
    call_ctx = CallContext(settings.timeout_s)
    try:
        with _device(settings, call_ctx) as dev_conn:
            fs.put_file(call_ctx, dev_conn, str(host_file), dev_file)
    except MosctlError as exc:
        _fail(exc)


@app.command("rm")
def rm(ctx: typer.Context, filename: str) -> None:
    """Remove a file from the device."""
    settings: Settings = ctx.obj
    call_ctx = CallContext(settings.timeout_s)
    try:
        with _device(settings, call_ctx) as dev_conn:
            fs.remove_file(call_ctx, dev_conn, filename)
    except MosctlError as exc:
        _fail(exc)


@app.command("config-get")
def config_get(ctx: typer.Context, key: str = typer.Argument("", help="Dotted key, e.g. wifi.sta.ssid")) -> None:
    """Print the device configuration, or one key of it."""
    settings: Settings = ctx.obj
    call_ctx = CallContext(settings.timeout_s)
    try:
        with _device(settings, call_ctx) as dev_conn:
            value = dev_conn.get_config(call_ctx).get(key)
    except MosctlError as exc:
        _fail(exc)
    typer.echo(json.dumps(value, indent=2))


@app.command("config-set")
def config_set(ctx: typer.Context, assignments: list[str] = typer.Argument(..., help="KEY=VALUE")) -> None:
    """Change device configuration keys."""
    settings: Settings = ctx.obj
    call_ctx = CallContext(settings.timeout_s)
    try:
        pairs = []
        for item in assignments:
            key, sep, value = item.partition("=")
            if not sep or not key:
                raise InvalidArgumentError(f"'{item}' is not in the format KEY=VALUE")
            pairs.append((key, value))
        with _device(settings, call_ctx) as dev_conn:
            dev_conf = dev_conn.get_config(call_ctx)
            for key, value in pairs:
                dev_conf.set(key, value)
            dev_conn.set_config(call_ctx, dev_conf)
    except MosctlError as exc:
        _fail(exc)


@app.command("build")
def build(ctx: typer.Context) -> None:
    """Build the project in the current directory on the build service."""
    settings: Settings = ctx.obj
    call_ctx = CallContext(settings.timeout_s)
    typer.echo(f"Connecting to {settings.server}, user {settings.user}")
    try:
        result = build_remote(call_ctx, settings, Path.cwd(), echo=typer.echo)
        if not result.succeeded:
            raise BuildFailedError("build failed")
        fw_path = result.firmware_path
        info = read_firmware_info(fw_path)
    except MosctlError as exc:
        _fail(exc)
    typer.echo(f"Success, built {info.name}/{info.platform} version {info.version} ({info.build_id}).")
    typer.echo(f"Firmware saved to {fw_path.relative_to(result.root)}")


@app.command("init")
def init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Allow a non-empty directory"),
) -> None:
    """Create a new project from the build service's skeleton."""
    settings: Settings = ctx.obj
    call_ctx = CallContext(settings.timeout_s)
    typer.echo(f"Connecting to {settings.server}, user {settings.user} ...")
    try:
        init_project(call_ctx, settings, Path.cwd(), force=force)
    except MosctlError as exc:
        _fail(exc)
    if settings.arch:
        typer.echo(f"Arch set to {settings.arch!r}")


@app.command("boot")
def boot(
    mode: BootMode,
    ftdi_serial: str | None = typer.Option(None, "--ftdi-serial", help="FTDI serial number of the board"),
) -> None:
    """Put a LaunchXL board into bootloader mode or boot its firmware."""
    try:
        control, lines = open_launchxl(ftdi_serial)
        try:
            if mode is BootMode.bootloader:
                control.enter_bootloader()
            else:
                control.boot_firmware()
        finally:
            lines.close()
    except MosctlError as exc:
        _fail(exc)
    typer.echo(f"Board is in {mode.value} mode")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
