from __future__ import annotations

import pytest
import usb.core

from mosctl.core.errors import HardwareIOError
from mosctl.transports.ftdi import FTDIBitBang


class FakeUSBDevice:
    def __init__(self, write_error: bool = False) -> None:
        self.control: list[tuple[int, int, int, int]] = []
        self.bulk: list[tuple[int, bytes]] = []
        self.write_error = write_error

    def ctrl_transfer(self, bm_request_type, b_request, w_value, w_index, data_or_length=None):
        self.control.append((bm_request_type, b_request, w_value, w_index))
        return 0

    def write(self, endpoint, data):
        if self.write_error:
            raise usb.core.USBError("pipe error")
        self.bulk.append((endpoint, bytes(data)))
        return len(data)


def test_set_bitbang_mode_encodes_mode_and_mask() -> None:
    device = FakeUSBDevice()
    lines = FTDIBitBang(device)

    lines.set_bitbang_mode(0x61)
    lines.set_bitbang_mode(0)

    assert device.control == [(0x40, 0x0B, 0x0161, 1), (0x40, 0x0B, 0x0000, 1)]


def test_write_byte_goes_to_interface_endpoint() -> None:
    device = FakeUSBDevice()
    FTDIBitBang(device).write_byte(0x21)
    assert device.bulk == [(0x02, b"\x21")]


def test_usb_errors_become_hardware_errors() -> None:
    lines = FTDIBitBang(FakeUSBDevice(write_error=True))
    with pytest.raises(HardwareIOError):
        lines.write_byte(0)
