from __future__ import annotations

import io
import zipfile
from pathlib import Path

import pytest
import yaml

from mosctl.core.context import CallContext
from mosctl.core.errors import InvalidArgumentError, OperationCancelledError, ServiceError
from mosctl.core.project import init_project
from mosctl.core.settings import Settings


def _skeleton() -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("skeleton/mos.yml", "name: app\narch: esp8266\nsources: [src]\n")
        archive.writestr("skeleton/src/main.c", "int main(void) { return 0; }\n")
    return buffer.getvalue()


class FakeResponse:
    def __init__(self, status_code: int, content: bytes, on_chunk=None) -> None:
        self.status_code = status_code
        self.content = content
        self.on_chunk = on_chunk or (lambda index: None)

    def iter_content(self, chunk_size: int = 1):
        for index, start in enumerate(range(0, len(self.content), 16)):
            self.on_chunk(index)
            yield self.content[start:start + 16]

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return None


class FakeHTTP:
    def __init__(self, response: FakeResponse) -> None:
        self.response = response
        self.urls: list[str] = []

    def get(self, url, **kwargs):
        self.urls.append(url)
        return self.response


def test_init_unpacks_skeleton_stripping_top_dir(tmp_path: Path) -> None:
    http = FakeHTTP(FakeResponse(200, _skeleton()))
    init_project(CallContext(), Settings(server="https://builds.example/"), tmp_path, http=http)

    assert http.urls == ["https://builds.example/downloads/skeleton.zip"]
    assert (tmp_path / "mos.yml").is_file()
    assert (tmp_path / "src" / "main.c").is_file()


def test_init_sets_arch(tmp_path: Path) -> None:
    http = FakeHTTP(FakeResponse(200, _skeleton()))
    init_project(CallContext(), Settings(arch="cc3200"), tmp_path, http=http)

    manifest = yaml.safe_load((tmp_path / "mos.yml").read_text())
    assert manifest["arch"] == "cc3200"
    assert manifest["sources"] == ["src"]


def test_init_refuses_non_empty_directory(tmp_path: Path) -> None:
    (tmp_path / "existing.txt").write_text("x")
    http = FakeHTTP(FakeResponse(200, _skeleton()))

    with pytest.raises(InvalidArgumentError):
        init_project(CallContext(), Settings(), tmp_path, http=http)
    assert http.urls == []

    init_project(CallContext(), Settings(), tmp_path, force=True, http=http)
    assert (tmp_path / "mos.yml").is_file()


def test_init_bad_status(tmp_path: Path) -> None:
    with pytest.raises(ServiceError):
        init_project(CallContext(), Settings(), tmp_path, http=FakeHTTP(FakeResponse(404, b"")))


def test_init_cancelled_during_download_writes_nothing(tmp_path: Path) -> None:
    ctx = CallContext()

    def cancel_after_first_chunk(index: int) -> None:
        if index == 1:
            ctx.cancel()

    http = FakeHTTP(FakeResponse(200, _skeleton(), on_chunk=cancel_after_first_chunk))
    with pytest.raises(OperationCancelledError):
        init_project(ctx, Settings(), tmp_path, http=http)
    assert list(tmp_path.iterdir()) == []
