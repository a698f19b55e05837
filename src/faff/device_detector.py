#!/usr/bin/env python3
"""
USB device locator for the faff programming interface.

Enumerates attached USB devices through pyusb and binds to exactly one
device matching a ``DeviceSelector``:

- devices with the wrong VID:PID are skipped without being opened
- with no serial in the selector, the first VID:PID match wins
- with a serial, only an exact (case-sensitive) serial match is accepted;
  rejected candidates are closed before the scan moves on

The enumeration generator and every rejected handle are released on all
exit paths, including errors raised mid-scan.
"""

import logging
from contextlib import closing
from typing import Any, List

import usb.core
import usb.util

from .constants import DEFAULT_USB_INTERFACE
from .core.models import DetectedDevice, DeviceSelector
from .errors import DeviceNotFoundError, DiscoveryError
from .transport import PyUsbTransport, get_serial

log = logging.getLogger(__name__)


def _read_ids(device: Any) -> tuple:
    """Return (idVendor, idProduct) from the device descriptor."""
    try:
        return device.idVendor, device.idProduct
    except usb.core.USBError as e:
        raise DiscoveryError(f"Failed to get device descriptor: {e}") from e


def _open(device: Any, interface: int) -> PyUsbTransport:
    """Open *device* and wrap it in an (unclaimed) transport."""
    handle = PyUsbTransport(device, interface)
    try:
        handle.open()
    except usb.core.USBError as e:
        handle.close()
        raise DiscoveryError(
            f"Failed to open device {device.idVendor:04x}:{device.idProduct:04x}: {e}"
        ) from e
    return handle


def _serial_matches(handle: PyUsbTransport, wanted: str) -> bool:
    """Compare the candidate's serial with *wanted*.

    A candidate whose serial cannot be read is simply not a match.
    """
    try:
        serial = get_serial(handle.device)
    except usb.core.USBError as e:
        log.warning("Failed to query serial descriptor: %s", e)
        return False
    if not serial:
        log.debug("Device does not have a serial number")
        return False
    log.debug("Candidate serial %r", serial)
    return serial == wanted


def find_device(selector: DeviceSelector,
                interface: int = DEFAULT_USB_INTERFACE) -> PyUsbTransport:
    """Find and open the one device described by *selector*.

    Returns:
        An opened, not yet claimed, ``PyUsbTransport``.  Use it as a context
        manager to claim the interface and guarantee release.

    Raises:
        DeviceNotFoundError: No attached device matches.
        DiscoveryError: Enumeration, a descriptor read or an open failed.
    """
    log.debug("Scanning USB devices for %s", selector)
    try:
        with closing(usb.core.find(find_all=True)) as devices:
            for device in devices:
                vid, pid = _read_ids(device)
                if vid != selector.vendor_id or pid != selector.product_id:
                    continue

                handle = _open(device, interface)
                try:
                    if selector.serial is None or _serial_matches(handle, selector.serial):
                        return handle
                except BaseException:
                    handle.close()
                    raise

                # Not a serial match
                handle.close()
    except usb.core.NoBackendError as e:
        raise DiscoveryError(f"No USB backend available (is libusb installed?): {e}") from e
    except usb.core.USBError as e:
        raise DiscoveryError(f"Failed to enumerate USB devices: {e}") from e

    raise DeviceNotFoundError(f"Failed to find device with VID:PID {selector}")


def list_devices(vendor_id: int, product_id: int) -> List[DetectedDevice]:
    """List every attached device with the given VID:PID and its serial.

    Devices that cannot be opened or queried are still listed, with an
    empty serial.
    """
    found: List[DetectedDevice] = []
    try:
        with closing(usb.core.find(find_all=True, idVendor=vendor_id,
                                   idProduct=product_id)) as devices:
            for device in devices:
                serial = ""
                try:
                    serial = get_serial(device)
                except usb.core.USBError as e:
                    log.warning("Failed to open device %04x:%04x: %s",
                                vendor_id, product_id, e)
                finally:
                    usb.util.dispose_resources(device)
                found.append(DetectedDevice(
                    vid=vendor_id,
                    pid=product_id,
                    serial=serial,
                    bus=getattr(device, 'bus', None),
                    address=getattr(device, 'address', None),
                ))
    except usb.core.NoBackendError as e:
        raise DiscoveryError(f"No USB backend available (is libusb installed?): {e}") from e
    except usb.core.USBError as e:
        raise DiscoveryError(f"Failed to enumerate USB devices: {e}") from e

    log.info("Found %d device(s) with VID:PID %04x:%04x", len(found), vendor_id, product_id)
    return found
