"""FTDI bit-bang line control over libusb (pyusb)."""

from __future__ import annotations

import logging

import usb.core
import usb.util

from mosctl.core.errors import HardwareIOError

# FTDI vendor requests
_SIO_RESET = 0x00
_SIO_SET_BITMODE = 0x0B
_BITMODE_RESET = 0x00
_BITMODE_BITBANG = 0x01
_REQ_OUT = usb.util.CTRL_OUT | usb.util.CTRL_TYPE_VENDOR | usb.util.CTRL_RECIPIENT_DEVICE

LOGGER = logging.getLogger(__name__)


class FTDIBitBang:
    """Drives one interface of an FTDI chip in asynchronous bit-bang mode.

    Interface A is index 0 (wIndex 1, bulk OUT endpoint 0x02).
    """

    def __init__(self, device: usb.core.Device, interface: int = 0) -> None:
        self._device = device
        self._interface = interface
        self._index = interface + 1
        self._out_ep = 0x02 + 2 * interface

    @classmethod
    def open(
        cls,
        vendor_id: int,
        product_id: int,
        *,
        serial_number: str | None = None,
        interface: int = 0,
    ) -> FTDIBitBang:
        def _match(dev: usb.core.Device) -> bool:
            if serial_number is None:
                return True
            try:
                return usb.util.get_string(dev, dev.iSerialNumber) == serial_number
            except (usb.core.USBError, ValueError):
                return False

        try:
            device = usb.core.find(idVendor=vendor_id, idProduct=product_id, custom_match=_match)
        except usb.core.NoBackendError as exc:
            raise HardwareIOError("No libusb backend available") from exc
        if device is None:
            wanted = f" with serial {serial_number}" if serial_number else ""
            raise HardwareIOError(f"FTDI device {vendor_id:04x}:{product_id:04x}{wanted} not found")

        try:
            if device.is_kernel_driver_active(interface):
                device.detach_kernel_driver(interface)
            usb.util.claim_interface(device, interface)
            device.ctrl_transfer(_REQ_OUT, _SIO_RESET, 0, interface + 1)
        except (usb.core.USBError, NotImplementedError) as exc:
            usb.util.dispose_resources(device)
            raise HardwareIOError("Could not claim FTDI interface") from exc
        LOGGER.debug("Opened FTDI %04x:%04x interface %d", vendor_id, product_id, interface)
        return cls(device, interface)

    def set_bitbang_mode(self, mask: int) -> None:
        mode = _BITMODE_BITBANG if mask else _BITMODE_RESET
        try:
            self._device.ctrl_transfer(_REQ_OUT, _SIO_SET_BITMODE, (mode << 8) | (mask & 0xFF), self._index)
        except usb.core.USBError as exc:
            raise HardwareIOError(f"Could not set bit-bang mask {mask:#04x}") from exc

    def write_byte(self, value: int) -> None:
        try:
            written = self._device.write(self._out_ep, bytes([value & 0xFF]))
        except usb.core.USBError as exc:
            raise HardwareIOError(f"Could not write line state {value:#04x}") from exc
        if written != 1:
            raise HardwareIOError(f"Short write of line state {value:#04x}")

    def close(self) -> None:
        try:
            usb.util.release_interface(self._device, self._interface)
        finally:
            usb.util.dispose_resources(self._device)
