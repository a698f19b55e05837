"""
faff - Find and Flash FPGA

Programs the SPI flash behind an FPGA through its companion
microcontroller, over a small USB bulk command protocol.

Features:
- Device selection by VID:PID and optional serial number
- Lazy 4K sector erase, chunked writes and read-back verification
- FPGA reset control around programming
- Status LED feedback

Usage:
    # As a library
    from faff import DeviceSelector, FlashProgrammer, ProtocolClient, find_device

    with find_device(DeviceSelector(0x1209, 0x0001)) as handle:
        FlashProgrammer(ProtocolClient(handle)).program(image, load_address=0)

    # Command line
    faff flash top.bin
    faff detect
"""

from faff.__version__ import __version__
from faff.bitstream import BitstreamImage
from faff.core.models import (
    DeviceSelector,
    FlashIdentity,
    LinkSettings,
    ProgrammingSettings,
    ProgramResult,
)
from faff.device_detector import find_device, list_devices
from faff.diagnostics import format_diff
from faff.errors import (
    ClaimError,
    DeviceNotFoundError,
    DeviceUnresponsiveError,
    DiscoveryError,
    FaffError,
    FpgaResetError,
    TransportError,
    VerifyMismatchError,
)
from faff.programmer import FlashProgrammer, sector_address
from faff.usb_protocol import Opcode, ProtocolClient

__all__ = [
    # Version
    "__version__",
    # Session
    "find_device",
    "list_devices",
    "ProtocolClient",
    "Opcode",
    "FlashProgrammer",
    "sector_address",
    "format_diff",
    "BitstreamImage",
    # Models
    "DeviceSelector",
    "FlashIdentity",
    "LinkSettings",
    "ProgrammingSettings",
    "ProgramResult",
    # Errors
    "FaffError",
    "DeviceNotFoundError",
    "DiscoveryError",
    "ClaimError",
    "TransportError",
    "FpgaResetError",
    "DeviceUnresponsiveError",
    "VerifyMismatchError",
]
