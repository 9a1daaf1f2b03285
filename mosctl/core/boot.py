"""Boot mode control for boards whose reset and SOP2 lines hang off an FTDI chip.

Line values: 1 is released/high, 0 is asserted/low.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable

from mosctl.core.errors import HardwareIOError
from mosctl.core.model import BootSequence, BootStep
from mosctl.transports.base import LineControl

if TYPE_CHECKING:
    from mosctl.transports.ftdi import FTDIBitBang

VENDOR_TI = 0x0451
PRODUCT_LAUNCHXL = 0xC32A

DEBUG_BIT = 0x40  # 0 - debug led on, 1 - debug led off
RESET_BIT = 0x20  # 0 - RST low (device in reset), 1 - RST high (running)
SOP2_BIT = 0x01  # TCK jump-wired to SOP2; 0 - SOP2 low, 1 - SOP2 high

RESET_HOLD_S = 0.05
BOOTLOADER_START_S = 1.0

LOGGER = logging.getLogger(__name__)


def enter_bootloader_sequence() -> BootSequence:
    return (
        BootStep(SOP2_BIT, RESET_HOLD_S),
        BootStep(RESET_BIT | SOP2_BIT, BOOTLOADER_START_S),
    )


def boot_firmware_sequence() -> BootSequence:
    return (BootStep(0, RESET_HOLD_S),)


class LaunchXLDeviceControl:
    def __init__(self, lines: LineControl, *, sleep: Callable[[float], None] = time.sleep) -> None:
        self._lines = lines
        self._sleep = sleep

    def enter_bootloader(self) -> None:
        """Pulse reset with SOP2 high and wait for the ROM bootloader."""
        self._apply(enter_bootloader_sequence(), ("enter reset state", "leave reset state"))

    def boot_firmware(self) -> None:
        """Pulse reset with SOP2 low, then let go of every line.

        The board's pull-ups take reset high once the lines are released.
        """
        self._apply(boot_firmware_sequence(), ("enter reset state",))
        try:
            self._lines.set_bitbang_mode(0)
        except (HardwareIOError, OSError) as exc:
            raise HardwareIOError("failed to release line control") from exc

    def _apply(self, sequence: BootSequence, labels: tuple[str, ...]) -> None:
        for step, label in zip(sequence, labels):
            LOGGER.debug("Lines -> %#04x (%s), hold %.3fs", step.value, label, step.hold_s)
            try:
                self._lines.write_byte(step.value)
            except (HardwareIOError, OSError) as exc:
                raise HardwareIOError(f"failed to {label}") from exc
            self._sleep(step.hold_s)


def open_launchxl(serial_number: str | None = None) -> tuple[LaunchXLDeviceControl, FTDIBitBang]:
    """Open the board's FTDI and park it in reset with SOP2 low and debug LED on."""
    from mosctl.transports.ftdi import FTDIBitBang

    lines = FTDIBitBang.open(VENDOR_TI, PRODUCT_LAUNCHXL, serial_number=serial_number)
    try:
        lines.set_bitbang_mode(DEBUG_BIT | RESET_BIT | SOP2_BIT)
        lines.write_byte(0)
    except HardwareIOError:
        lines.close()
        raise
    return LaunchXLDeviceControl(lines), lines
