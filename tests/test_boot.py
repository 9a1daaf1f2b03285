from __future__ import annotations

import pytest

from mosctl.core.boot import (
    BOOTLOADER_START_S,
    RESET_BIT,
    RESET_HOLD_S,
    SOP2_BIT,
    LaunchXLDeviceControl,
)
from mosctl.core.errors import HardwareIOError


class FakeLines:
    def __init__(self, fail_on_write: int | None = None) -> None:
        self.events: list[tuple[str, object]] = []
        self.fail_on_write = fail_on_write
        self._writes = 0

    def set_bitbang_mode(self, mask: int) -> None:
        self.events.append(("mode", mask))

    def write_byte(self, value: int) -> None:
        self._writes += 1
        if self._writes == self.fail_on_write:
            raise HardwareIOError("usb write failed")
        self.events.append(("write", value))

    def sleep(self, seconds: float) -> None:
        self.events.append(("sleep", seconds))


def test_enter_bootloader_then_boot_firmware_order() -> None:
    lines = FakeLines()
    control = LaunchXLDeviceControl(lines, sleep=lines.sleep)

    control.enter_bootloader()
    control.boot_firmware()

    assert lines.events == [
        ("write", SOP2_BIT),
        ("sleep", RESET_HOLD_S),
        ("write", RESET_BIT | SOP2_BIT),
        ("sleep", BOOTLOADER_START_S),
        ("write", 0),
        ("sleep", RESET_HOLD_S),
        ("mode", 0),
    ]


def test_hold_times_meet_minimums() -> None:
    assert RESET_HOLD_S >= 0.05
    assert BOOTLOADER_START_S >= 1.0


def test_bit_layout() -> None:
    assert SOP2_BIT == 0x01
    assert RESET_BIT == 0x20


@pytest.mark.parametrize("failing_write, label", [(1, "enter reset"), (2, "leave reset")])
def test_enter_bootloader_write_failure_is_fatal(failing_write: int, label: str) -> None:
    lines = FakeLines(fail_on_write=failing_write)
    control = LaunchXLDeviceControl(lines, sleep=lines.sleep)

    with pytest.raises(HardwareIOError) as exc:
        control.enter_bootloader()

    assert label in str(exc.value)
    # nothing after the failed write is attempted
    assert ("sleep", BOOTLOADER_START_S) not in lines.events


def test_boot_firmware_release_failure() -> None:
    class StuckLines(FakeLines):
        def set_bitbang_mode(self, mask: int) -> None:
            raise HardwareIOError("stuck")

    lines = StuckLines()
    control = LaunchXLDeviceControl(lines, sleep=lines.sleep)
    with pytest.raises(HardwareIOError) as exc:
        control.boot_firmware()
    assert "release" in str(exc.value)


def test_sequences_do_not_retry() -> None:
    lines = FakeLines(fail_on_write=1)
    control = LaunchXLDeviceControl(lines, sleep=lines.sleep)
    with pytest.raises(HardwareIOError):
        control.boot_firmware()
    assert lines.events == []
