#!/usr/bin/env python3
"""
USB bulk transport for the faff programming interface.

The ``UsbTransport`` ABC abstracts the raw USB I/O so that:
  • Tests can inject a mock or simulated transport (no real hardware needed).
  • ``PyUsbTransport`` provides real USB via pyusb (libusb backend).

A ``PyUsbTransport`` is the device handle of a programming session: it is
created by the device locator for one already-enumerated device, claims the
programming interface on entry and releases everything exactly once on exit::

    with find_device(selector) as handle:
        client = ProtocolClient(handle)
        ...

Requires: ``pip install pyusb`` + ``apt install libusb-1.0-0``
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import usb.core
import usb.util

from .constants import DEFAULT_TIMEOUT_MS, DEFAULT_USB_INTERFACE
from .errors import ClaimError

log = logging.getLogger(__name__)


# =========================================================================
# Abstract USB transport
# =========================================================================

class UsbTransport(ABC):
    """Abstract USB bulk transport — mockable for testing."""

    @abstractmethod
    def close(self) -> None:
        """Release interface and close."""

    @abstractmethod
    def write(self, endpoint: int, data: bytes, timeout: int = DEFAULT_TIMEOUT_MS) -> int:
        """Bulk write to endpoint.  Returns bytes transferred."""

    @abstractmethod
    def read(self, endpoint: int, length: int, timeout: int = DEFAULT_TIMEOUT_MS) -> bytes:
        """Bulk read from endpoint.  Returns data read."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the device is currently open."""


# =========================================================================
# Real transport: PyUSB  (libusb backend)
# =========================================================================

def get_serial(device: Any) -> str:
    """Read the serial-number string descriptor of *device*.

    Returns "" when the device does not declare a serial.  Errors from the
    string request propagate as ``usb.core.USBError``.
    """
    serial_idx = getattr(device, 'iSerialNumber', 0)
    if not serial_idx:
        return ""
    try:
        return usb.util.get_string(device, serial_idx) or ""
    except ValueError as e:
        # pyusb raises ValueError when the langid list is empty (usually
        # no permission on the device node)
        raise usb.core.USBError(str(e)) from e


class PyUsbTransport(UsbTransport):
    """Real USB transport using pyusb (libusb backend).

    Lifecycle:
    1. ``open()`` — open the device handle (reads the active configuration)
    2. ``claim()`` — detach any kernel driver and claim the interface
    3. Bulk read/write to endpoints
    4. ``close()`` — release the interface and dispose of the handle
    """

    def __init__(self, device: Any, interface: int = DEFAULT_USB_INTERFACE):
        self._device = device
        self._interface = interface
        self._is_open = False
        self._claimed = False

    def open(self) -> None:
        """Open the device handle.

        pyusb opens lazily; fetching the active configuration forces the
        backend to open the device so permission problems surface here.
        """
        self._device.get_active_configuration()
        self._is_open = True

    def claim(self) -> None:
        """Claim the programming interface.

        Raises:
            ClaimError: If the interface cannot be claimed.  The device is
                released before the error propagates.
        """
        if not self._is_open:
            self.open()

        # Detach kernel driver if active (Linux-specific)
        try:
            if self._device.is_kernel_driver_active(self._interface):
                self._device.detach_kernel_driver(self._interface)
                log.debug("Detached kernel driver from interface %d", self._interface)
        except (usb.core.USBError, NotImplementedError) as e:
            log.debug("Kernel driver detach: %s", e)

        try:
            usb.util.claim_interface(self._device, self._interface)
        except usb.core.USBError as e:
            self.close()
            raise ClaimError(
                f"Failed to claim usb interface 0x{self._interface:02x}: {e}"
            ) from e
        self._claimed = True
        log.debug("Claimed interface %d", self._interface)

    def close(self) -> None:
        """Release interface and close.  Safe to call more than once."""
        if self._device is None:
            return
        if self._claimed:
            try:
                usb.util.release_interface(self._device, self._interface)
            except usb.core.USBError as e:
                log.debug("Release interface %d: %s", self._interface, e)
            self._claimed = False
        usb.util.dispose_resources(self._device)
        self._device = None
        self._is_open = False

    def write(self, endpoint: int, data: bytes, timeout: int = DEFAULT_TIMEOUT_MS) -> int:
        """Bulk write to *endpoint*."""
        if not self._is_open or self._device is None:
            raise RuntimeError("Transport not open")
        return self._device.write(endpoint, data, timeout=timeout)

    def read(self, endpoint: int, length: int, timeout: int = DEFAULT_TIMEOUT_MS) -> bytes:
        """Bulk read of up to *length* bytes from *endpoint*."""
        if not self._is_open or self._device is None:
            raise RuntimeError("Transport not open")
        data = self._device.read(endpoint, length, timeout=timeout)
        return bytes(data)

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def interface(self) -> int:
        return self._interface

    @property
    def device(self) -> Any:
        """Raw pyusb device handle (for diagnostics)."""
        return self._device

    @property
    def serial(self) -> str:
        """Serial string of the bound device ("" if unavailable)."""
        if self._device is None:
            return ""
        try:
            return get_serial(self._device)
        except usb.core.USBError as e:
            log.warning("Failed to query serial descriptor: %s", e)
            return ""

    def __enter__(self):
        self.claim()
        return self

    def __exit__(self, *exc):
        self.close()
