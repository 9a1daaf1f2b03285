from __future__ import annotations

import base64
import io

from mosctl.api import CallContext, Client, Settings
from mosctl.core.model import MethodResult


class FakeChannel:
    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.disconnected = False

    def call(self, ctx, dest, command):
        args = command.args
        if command.cmd == "FS.Put":
            previous = self.files.get(args["filename"], b"") if args["append"] else b""
            self.files[args["filename"]] = previous + base64.b64decode(args["data"])
            return MethodResult(status=0)
        if command.cmd == "FS.Get":
            content = self.files[args["filename"]]
            piece = content[args["offset"]:args["offset"] + args["len"]]
            left = len(content) - args["offset"] - len(piece)
            return MethodResult(status=0, response={"data": base64.b64encode(piece).decode(), "left": left})
        if command.cmd == "FS.List":
            return MethodResult(status=0, response=sorted(self.files))
        return MethodResult(status=0, response={"cmd": command.cmd})

    def disconnect(self, ctx):
        self.disconnected = True


def test_public_client_file_round_trip(monkeypatch) -> None:
    monkeypatch.setattr("time.sleep", lambda s: None)
    channel = FakeChannel()
    payload = bytes(range(256)) * 5

    with Client(Settings(port="tcp://10.0.0.9"), channel_factory=lambda ctx, address, **kw: channel) as client:
        assert client.put_data(io.BytesIO(payload), "blob.bin") == 3
        assert client.list_files() == ["blob.bin"]
        assert client.get_file("blob.bin", ctx=CallContext(timeout_s=5)) == payload
        assert '"cmd": "Sys.GetInfo"' in client.call("Sys.GetInfo")

    assert channel.disconnected
