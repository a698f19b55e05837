#!/usr/bin/env python3
"""
Erase / write / verify driver for the SPI flash behind the FPGA.

A programming run:

1. Hold the FPGA in reset so the companion MCU owns the SPI bus, and check
   that the FPGA reports being under reset.
2. Identify the flash chip (informational only).
3. Walk the image in chunks.  Whenever a chunk lands in a 4K sector that has
   not been erased yet, erase that sector and wait for the busy bit to clear.
   Then write the chunk and wait again.  Sectors are erased lazily, exactly
   once, on first touch.
4. Optionally read every chunk back and compare it with the image.
5. Release the FPGA and check that it left reset.

On a verify mismatch the run stops with the FPGA still held in reset, so a
partially written bitstream is never booted.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterator, Optional, Tuple

from .constants import (
    ADDRESS_MAX,
    LED_ACTIVE,
    LED_IDLE,
    LED_PROGRAMMING_MODE,
    SECTOR_MASK,
    SECTOR_SIZE,
)
from .core.models import FlashIdentity, ProgrammingCursor, ProgrammingSettings, ProgramResult
from .diagnostics import format_diff
from .errors import DeviceUnresponsiveError, FpgaResetError, VerifyMismatchError
from .usb_protocol import ProtocolClient

log = logging.getLogger(__name__)

# on_progress(phase, bytes_done, bytes_total), phase is "write" or "verify"
ProgressCallback = Callable[[str, int, int], None]


def sector_address(addr: int) -> int:
    """Start address of the 4K sector containing *addr*."""
    return addr & SECTOR_MASK


def iter_chunks(load_address: int, length: int, chunk_size: int) -> Iterator[Tuple[int, int]]:
    """Yield ``(offset, size)`` pairs covering ``length`` bytes.

    Chunks are ``chunk_size`` bytes except the last one, and never straddle
    a sector boundary (only possible when *load_address* is not
    chunk-aligned).
    """
    offset = 0
    while offset < length:
        address = load_address + offset
        sector_end = sector_address(address) + SECTOR_SIZE
        size = min(chunk_size, length - offset, sector_end - address)
        yield offset, size
        offset += size


def wait_while_busy(client: ProtocolClient, delay_s: float,
                    max_polls: Optional[int] = None,
                    what: str = "flash operation") -> int:
    """Sleep, then poll the flash busy bit until it clears.

    Returns the number of polls taken.

    Raises:
        DeviceUnresponsiveError: *max_polls* polls all reported busy.
    """
    polls = 0
    while True:
        time.sleep(delay_s)
        polls += 1
        if not client.flash_busy():
            return polls
        if max_polls is not None and polls >= max_polls:
            raise DeviceUnresponsiveError(
                f"Flash still busy after {polls} status polls ({what})"
            )


class FlashProgrammer:
    """Drives a ``ProtocolClient`` through a full programming run."""

    def __init__(self, client: ProtocolClient, settings: Optional[ProgrammingSettings] = None):
        self.client = client
        self.settings = settings or ProgrammingSettings()

    # -- FPGA reset control ------------------------------------------------

    def hold_fpga(self) -> None:
        """Assert FPGA reset and confirm the target entered programming mode."""
        self.client.fpga_reset_assert()
        self.client.set_rgb_led(*LED_PROGRAMMING_MODE)
        if not self.client.fpga_is_under_reset():
            raise FpgaResetError("Failed to assert FPGA reset")
        log.debug("FPGA held in reset")

    def release_fpga(self) -> None:
        """Deassert FPGA reset and confirm the target left it."""
        self.client.fpga_reset_deassert()
        if self.client.fpga_is_under_reset():
            raise FpgaResetError("Failed to release FPGA reset")
        self.client.set_rgb_led(*LED_IDLE)
        log.debug("FPGA released")

    def identify(self) -> FlashIdentity:
        identity = self.client.flash_identify()
        log.info("%s", identity)
        return identity

    # -- Programming -------------------------------------------------------

    def program(self, image: bytes, load_address: int = 0, verify: bool = True,
                on_progress: Optional[ProgressCallback] = None) -> ProgramResult:
        """Erase, write and (optionally) verify *image* at *load_address*.

        Raises:
            ValueError: The image does not fit below the 4 GiB boundary.
            FpgaResetError: The FPGA did not enter or leave reset.
            TransportError: Any USB transfer failed.
            DeviceUnresponsiveError: The busy bit never cleared.
            VerifyMismatchError: Read-back data differs from the image.
        """
        length = len(image)
        if load_address < 0 or (length and load_address + length - 1 > ADDRESS_MAX):
            raise ValueError(
                f"Image of {length} bytes at 0x{load_address:08x} does not fit in flash address space"
            )

        self.hold_fpga()
        result = ProgramResult(identity=self.identify())
        self.client.set_rgb_led(*LED_ACTIVE)

        self._write(image, load_address, result, on_progress)
        log.info("Wrote %d bytes in %d chunks, erased %d sectors",
                 result.bytes_written, result.chunks_written, len(result.sectors_erased))

        if verify:
            self._verify(image, load_address, on_progress)
            result.verified = True
            log.info("Verified %d bytes", length)

        self.release_fpga()
        return result

    def _wait(self, delay_s: float, what: str) -> None:
        wait_while_busy(self.client, delay_s, self.settings.max_busy_polls, what)

    def _write(self, image: bytes, load_address: int, result: ProgramResult,
               on_progress: Optional[ProgressCallback]) -> None:
        total = len(image)
        cursor = ProgrammingCursor(base_address=load_address)

        for offset, size in iter_chunks(load_address, total, self.settings.chunk_size):
            address = cursor.load_address
            sector = sector_address(address)
            if sector != cursor.current_erased_sector:
                log.debug("Erasing sector 0x%08x", sector)
                self.client.flash_erase_4k(sector)
                self._wait(self.settings.erase_poll_delay_s, f"erase 0x{sector:08x}")
                cursor.current_erased_sector = sector
                result.sectors_erased.append(sector)

            self.client.flash_write(address, image[offset:offset + size])
            cursor.advance(size)
            self._wait(self.settings.write_poll_delay_s, f"write 0x{address:08x}")

            result.chunks_written += 1
            result.bytes_written += size
            if on_progress:
                on_progress("write", cursor.byte_offset, total)

    def _verify(self, image: bytes, load_address: int,
                on_progress: Optional[ProgressCallback]) -> None:
        total = len(image)
        for offset, size in iter_chunks(load_address, total, self.settings.chunk_size):
            address = load_address + offset
            expected = bytes(image[offset:offset + size])
            actual = self.client.flash_read(address, size)
            if actual != expected:
                raise VerifyMismatchError(
                    offset, address, expected, actual,
                    diff=format_diff(expected, actual, size, address),
                )
            if on_progress:
                on_progress("verify", offset + size, total)
