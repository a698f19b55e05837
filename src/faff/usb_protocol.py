#!/usr/bin/env python3
"""
Command/response protocol spoken by the companion microcontroller.

Every command is a single bulk OUT transfer starting with an opcode byte.
Commands that answer do so with a single fixed-size bulk IN transfer; the
response length is implied by the opcode, there is no framing.  The link is
strictly half-duplex: one request, then its response, then the next request.

Frame layouts (addresses big-endian)::

    SET_RGB_LED         01 rr gg bb
    FPGA_RESET_ASSERT   10
    FPGA_RESET_DEASSERT 11
    FPGA_QUERY_STATUS   12                     -> status(1)
    FLASH_IDENTIFY      20                     -> mfgr(1) dev(1) uid(8, BE)
    FLASH_ERASE_4K      21 aa aa aa aa
    FLASH_ERASE_32K     22 aa aa aa aa
    FLASH_ERASE_64K     23 aa aa aa aa
    FLASH_ERASE_CHIP    24
    FLASH_WRITE         25 aa aa aa aa nn dd.. (nn data bytes)
    FLASH_READ          26 aa aa aa aa nn      -> data(nn)
    FLASH_QUERY_STATUS  27                     -> status(1)

Any transfer error is fatal for the run; nothing is retried.
"""

import logging
import struct
from enum import IntEnum, IntFlag
from typing import Optional

import usb.core

from .constants import ADDRESS_MAX, MAX_CHUNK_SIZE
from .core.models import FlashIdentity, LinkSettings
from .errors import TransportError
from .transport import UsbTransport

log = logging.getLogger(__name__)


class Opcode(IntEnum):
    # General
    SET_RGB_LED = 0x01
    # FPGA interface
    FPGA_RESET_ASSERT = 0x10
    FPGA_RESET_DEASSERT = 0x11
    FPGA_QUERY_STATUS = 0x12
    # Flash interface
    FLASH_IDENTIFY = 0x20
    FLASH_ERASE_4K = 0x21
    FLASH_ERASE_32K = 0x22
    FLASH_ERASE_64K = 0x23
    FLASH_ERASE_CHIP = 0x24
    FLASH_WRITE = 0x25
    FLASH_READ = 0x26
    FLASH_QUERY_STATUS = 0x27


class FpgaStatusFlags(IntFlag):
    UNDER_RESET = 1 << 0


class FlashStatusFlags(IntFlag):
    BUSY = 1 << 0


STATUS_RESPONSE_SIZE = 1
IDENTIFY_RESPONSE_SIZE = 10

_ADDR = struct.Struct('>BI')          # opcode, address
_ADDR_LEN = struct.Struct('>BIB')     # opcode, address, length
_IDENTIFY = struct.Struct('>BBQ')     # mfgr, device, unique id


def _check_address(addr: int) -> None:
    if not 0 <= addr <= ADDRESS_MAX:
        raise ValueError(f"Flash address {addr:#x} does not fit in 32 bits")


def _check_length(length: int) -> None:
    if not 1 <= length <= MAX_CHUNK_SIZE:
        raise ValueError(f"Transfer length must be 1..{MAX_CHUNK_SIZE}, got {length}")


def _transport_error(action: str, e: usb.core.USBError) -> TransportError:
    """Wrap a pyusb error, keeping the libusb error code when there is one."""
    code = e.backend_error_code if e.backend_error_code is not None else e.errno
    return TransportError(action, code, e.strerror or str(e))


class ProtocolClient:
    """Synchronous request/response client for one claimed device.

    Stateless apart from the transport and the link settings.
    """

    def __init__(self, transport: UsbTransport, link: Optional[LinkSettings] = None):
        self.transport = transport
        self.link = link or LinkSettings()

    # -- Transfers ---------------------------------------------------------

    def _send(self, frame: bytes, action: str) -> None:
        log.debug("TX %s", frame.hex(' '))
        try:
            transferred = self.transport.write(
                self.link.endpoint_tx, frame, self.link.timeout_ms,
            )
        except usb.core.USBError as e:
            raise _transport_error(action, e) from e
        if transferred != len(frame):
            raise TransportError(
                action, reason=f"short write ({transferred} of {len(frame)} bytes)",
            )

    def _receive(self, length: int, action: str) -> bytes:
        try:
            data = self.transport.read(self.link.endpoint_rx, length, self.link.timeout_ms)
        except usb.core.USBError as e:
            raise _transport_error(action, e) from e
        if len(data) != length:
            raise TransportError(
                action, reason=f"short read ({len(data)} of {length} bytes)",
            )
        log.debug("RX %s", data.hex(' '))
        return bytes(data)

    # -- General -----------------------------------------------------------

    def set_rgb_led(self, r: int, g: int, b: int) -> None:
        for component in (r, g, b):
            if not 0 <= component <= 0xFF:
                raise ValueError(f"LED component {component} outside 0..255")
        self._send(bytes([Opcode.SET_RGB_LED, r, g, b]), "Failed to set LED colour")

    # -- FPGA --------------------------------------------------------------

    def fpga_reset_assert(self) -> None:
        self._send(bytes([Opcode.FPGA_RESET_ASSERT]), "Failed to assert FPGA reset line")

    def fpga_reset_deassert(self) -> None:
        self._send(bytes([Opcode.FPGA_RESET_DEASSERT]), "Failed to deassert FPGA reset line")

    def fpga_query_status(self) -> int:
        self._send(bytes([Opcode.FPGA_QUERY_STATUS]), "Failed to request FPGA state")
        return self._receive(STATUS_RESPONSE_SIZE, "Failed to read FPGA state response")[0]

    def fpga_is_under_reset(self) -> bool:
        return bool(self.fpga_query_status() & FpgaStatusFlags.UNDER_RESET)

    # -- Flash -------------------------------------------------------------

    def flash_identify(self) -> FlashIdentity:
        self._send(bytes([Opcode.FLASH_IDENTIFY]), "Failed to request Flash properties")
        resp = self._receive(IDENTIFY_RESPONSE_SIZE, "Failed to read Flash properties response")
        mfgr, device, unique_id = _IDENTIFY.unpack(resp)
        return FlashIdentity(manufacturer_id=mfgr, device_id=device, unique_id=unique_id)

    def _erase(self, opcode: Opcode, addr: int, action: str) -> None:
        _check_address(addr)
        self._send(_ADDR.pack(opcode, addr), action)

    def flash_erase_4k(self, addr: int) -> None:
        self._erase(Opcode.FLASH_ERASE_4K, addr, "Failed to initiate 4k sector erase")

    def flash_erase_32k(self, addr: int) -> None:
        self._erase(Opcode.FLASH_ERASE_32K, addr, "Failed to initiate 32k block erase")

    def flash_erase_64k(self, addr: int) -> None:
        self._erase(Opcode.FLASH_ERASE_64K, addr, "Failed to initiate 64k block erase")

    def flash_erase_chip(self) -> None:
        self._send(bytes([Opcode.FLASH_ERASE_CHIP]), "Failed to initiate chip erase")

    def flash_write(self, addr: int, data: bytes) -> None:
        _check_address(addr)
        _check_length(len(data))
        frame = _ADDR_LEN.pack(Opcode.FLASH_WRITE, addr, len(data)) + bytes(data)
        self._send(frame, "Failed to initiate flash write")

    def flash_read(self, addr: int, length: int) -> bytes:
        _check_address(addr)
        _check_length(length)
        self._send(_ADDR_LEN.pack(Opcode.FLASH_READ, addr, length), "Failed to request flash read")
        return self._receive(length, "Failed to read flash data response")

    def flash_query_status(self) -> int:
        self._send(bytes([Opcode.FLASH_QUERY_STATUS]), "Failed to request Flash status")
        return self._receive(STATUS_RESPONSE_SIZE, "Failed to read Flash status response")[0]

    def flash_busy(self) -> bool:
        return bool(self.flash_query_status() & FlashStatusFlags.BUSY)
