"""Exceptions raised by faff.

Device faults are ``RuntimeError`` subclasses so callers that only care
about "the hardware said no" can keep catching ``RuntimeError``.
"""

from typing import Optional


class FaffError(RuntimeError):
    """Base class for every fatal condition of a programming run."""


# -- Discovery ---------------------------------------------------------------

class DeviceNotFoundError(FaffError):
    """No attached device satisfied the selector."""


class DiscoveryError(FaffError):
    """Enumeration aborted: a descriptor could not be read or a device opened."""


class ClaimError(FaffError):
    """The programming interface could not be claimed."""


# -- Transport ---------------------------------------------------------------

class TransportError(FaffError):
    """A bulk transfer failed (timeout, stall, disconnect, short transfer)."""

    def __init__(self, action: str, code: Optional[int] = None, reason: str = ""):
        self.action = action
        self.code = code
        self.reason = reason
        detail = reason or "transfer failed"
        if code is not None:
            detail = f"{detail} ({code})"
        super().__init__(f"{action}: {detail}")


# -- Device state ------------------------------------------------------------

class FpgaResetError(FaffError):
    """The FPGA did not enter or leave reset when told to."""


class DeviceUnresponsiveError(FaffError):
    """The flash busy bit never cleared within the polling cap."""


# -- Verification ------------------------------------------------------------

class VerifyMismatchError(FaffError):
    """Read-back data differs from the image.

    Attributes:
        offset: Offset of the mismatching chunk within the image.
        address: Absolute flash address of that chunk.
        expected: Image bytes for the chunk.
        actual: Bytes read back from flash.
        diff: Human-readable hex diff (see ``faff.diagnostics``).
    """

    def __init__(self, offset: int, address: int, expected: bytes, actual: bytes,
                 diff: str = ""):
        self.offset = offset
        self.address = address
        self.expected = expected
        self.actual = actual
        self.diff = diff
        super().__init__(
            f"Verify failed for {len(expected)} byte block at 0x{address:08x} "
            f"(image offset 0x{offset:x})"
        )
