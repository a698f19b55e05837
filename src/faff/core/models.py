"""
faff Models - Pure data classes shared by the locator, protocol and programmer.

Settings objects are frozen: they are built once from config/CLI and never
mutated during a run.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from ..constants import (
    ADDRESS_MAX,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_ENDPOINT_RX,
    DEFAULT_ENDPOINT_TX,
    DEFAULT_MAX_BUSY_POLLS,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_USB_INTERFACE,
    ERASE_POLL_DELAY_S,
    MAX_CHUNK_SIZE,
    USB_ID_MAX,
    WRITE_POLL_DELAY_S,
)

# =============================================================================
# Device selection
# =============================================================================


@dataclass(frozen=True)
class DeviceSelector:
    """Which USB device to bind to.

    If ``serial`` is None the first device with a matching VID:PID wins.
    """
    vendor_id: int
    product_id: int
    serial: Optional[str] = None

    def __post_init__(self):
        for name in ('vendor_id', 'product_id'):
            value = getattr(self, name)
            if not 0 <= value <= USB_ID_MAX:
                raise ValueError(f"USB {name} {value:#x} is outside allowable range")

    def __str__(self) -> str:
        text = f"{self.vendor_id:04x}:{self.product_id:04x}"
        if self.serial is not None:
            text += f" (serial {self.serial})"
        return text


@dataclass
class DetectedDevice:
    """Entry in the ``faff detect`` listing."""
    vid: int
    pid: int
    serial: str = ""
    bus: Optional[int] = None
    address: Optional[int] = None


# =============================================================================
# Link / programming settings
# =============================================================================


@dataclass(frozen=True)
class LinkSettings:
    """USB interface, endpoints and per-transfer timeout."""
    interface: int = DEFAULT_USB_INTERFACE
    endpoint_tx: int = DEFAULT_ENDPOINT_TX
    endpoint_rx: int = DEFAULT_ENDPOINT_RX
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    def __post_init__(self):
        if self.timeout_ms <= 0:
            raise ValueError("USB timeout must be positive")


@dataclass(frozen=True)
class ProgrammingSettings:
    """Chunking and busy-poll behaviour of a programming run.

    ``max_busy_polls`` of None polls forever, matching firmware that never
    reports a stuck busy bit.
    """
    chunk_size: int = DEFAULT_CHUNK_SIZE
    erase_poll_delay_s: float = ERASE_POLL_DELAY_S
    write_poll_delay_s: float = WRITE_POLL_DELAY_S
    max_busy_polls: Optional[int] = DEFAULT_MAX_BUSY_POLLS

    def __post_init__(self):
        if not 1 <= self.chunk_size <= MAX_CHUNK_SIZE:
            raise ValueError(
                f"Chunk size must be between 1 and {MAX_CHUNK_SIZE}, got {self.chunk_size}"
            )
        if self.max_busy_polls is not None and self.max_busy_polls < 1:
            raise ValueError("max_busy_polls must be positive or None")


# =============================================================================
# Flash / programming state
# =============================================================================


@dataclass(frozen=True)
class FlashIdentity:
    """FLASH_IDENTIFY response."""
    manufacturer_id: int
    device_id: int
    unique_id: int

    def __str__(self) -> str:
        return (
            f"Flash chip mfgr: 0x{self.manufacturer_id:02x}, "
            f"Device ID: 0x{self.device_id:02x} "
            f"Unique ID: 0x{self.unique_id:016x}"
        )


@dataclass
class ProgrammingCursor:
    """Position of a programming run.  Only ever moves forward."""
    base_address: int
    byte_offset: int = 0
    current_erased_sector: Optional[int] = None

    @property
    def load_address(self) -> int:
        return self.base_address + self.byte_offset

    def advance(self, count: int) -> None:
        if count <= 0:
            raise ValueError("Cursor can only move forward")
        if self.load_address + count - 1 > ADDRESS_MAX:
            raise ValueError("Cursor moved past the end of the address space")
        self.byte_offset += count


@dataclass
class ProgramResult:
    """Outcome of a successful ``FlashProgrammer.program`` run."""
    identity: FlashIdentity
    bytes_written: int = 0
    chunks_written: int = 0
    sectors_erased: List[int] = field(default_factory=list)
    verified: bool = False
