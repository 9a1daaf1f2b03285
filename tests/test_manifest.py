from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from mosctl.core.errors import InvalidArgumentError, PackagingError
from mosctl.core.manifest import (
    detect_arch,
    fixup_app_name,
    parse_build_vars,
    parse_manifest,
    set_manifest_arch,
)


def test_parse_manifest_defaults() -> None:
    manifest = parse_manifest(b"name: demo\nsources: [src]\n")
    assert manifest.name == "demo"
    assert manifest.sources == ("src",)
    assert manifest.filesystem == ()
    assert manifest.mongoose_os_version == "master"
    assert manifest.build_vars == {}


def test_parse_manifest_rejects_non_mapping() -> None:
    with pytest.raises(PackagingError):
        parse_manifest(b"- just\n- a list\n")


def test_detect_arch_prefers_override() -> None:
    manifest = parse_manifest(b"arch: esp8266\n")
    assert detect_arch(manifest, "cc3200") == "cc3200"
    assert detect_arch(manifest) == "esp8266"

    with pytest.raises(InvalidArgumentError):
        detect_arch(parse_manifest(b"name: x\n"))


def test_fixup_app_name_uses_directory(tmp_path: Path) -> None:
    project = tmp_path / "blinky"
    project.mkdir()
    assert fixup_app_name("", project) == "blinky"
    assert fixup_app_name("named", project) == "named"


def test_parse_build_vars() -> None:
    assert parse_build_vars(["A:1", "URL:http://x:80"]) == {"A": "1", "URL": "http://x:80"}
    with pytest.raises(InvalidArgumentError):
        parse_build_vars(["NOVALUE"])


def test_set_manifest_arch_preserves_unknown_keys(tmp_path: Path) -> None:
    original = b"arch: esp8266\nauthor: someone\nbuild_vars:\n  KEEP: yes-please\nconfig_schema:\n  - [\"foo\", \"s\", {}]\n"
    rewritten = yaml.safe_load(
        set_manifest_arch(original, "cc3200", {"EXTRA": "1"}, tmp_path)
    )

    assert rewritten["arch"] == "cc3200"
    assert rewritten["author"] == "someone"
    assert rewritten["build_vars"] == {"KEEP": "yes-please", "EXTRA": "1"}
    assert rewritten["config_schema"] == [["foo", "s", {}]]
    assert rewritten["name"] == tmp_path.name


def test_set_manifest_arch_without_override_keeps_arch(tmp_path: Path) -> None:
    rewritten = yaml.safe_load(set_manifest_arch(b"arch: esp8266\nname: x\n", "", None, tmp_path))
    assert rewritten == {"arch": "esp8266", "name": "x"}
