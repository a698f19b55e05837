"""Tests for PyUsbTransport with the pyusb device mocked."""

import unittest
from unittest.mock import MagicMock, call, patch

import usb.core

from faff.errors import ClaimError
from faff.transport import PyUsbTransport, UsbTransport, get_serial


def _make_device(kernel_driver=False):
    dev = MagicMock()
    dev.is_kernel_driver_active.return_value = kernel_driver
    dev.iSerialNumber = 3
    dev.write.side_effect = lambda ep, data, timeout: len(data)
    dev.read.return_value = [0x01, 0x02]
    return dev


@patch('usb.util.dispose_resources')
@patch('usb.util.release_interface')
@patch('usb.util.claim_interface')
class TestPyUsbTransport(unittest.TestCase):

    def test_is_usb_transport(self, *_):
        self.assertTrue(issubclass(PyUsbTransport, UsbTransport))

    def test_open(self, mock_claim, mock_release, mock_dispose):
        dev = _make_device()
        t = PyUsbTransport(dev)
        self.assertFalse(t.is_open)
        t.open()
        self.assertTrue(t.is_open)
        dev.get_active_configuration.assert_called_once()
        mock_claim.assert_not_called()

    def test_claim_default_interface(self, mock_claim, mock_release, mock_dispose):
        dev = _make_device()
        t = PyUsbTransport(dev)
        t.claim()
        self.assertTrue(t.is_open)
        mock_claim.assert_called_once_with(dev, 2)
        dev.detach_kernel_driver.assert_not_called()

    def test_claim_detaches_kernel_driver(self, mock_claim, mock_release, mock_dispose):
        dev = _make_device(kernel_driver=True)
        PyUsbTransport(dev, interface=1).claim()
        dev.detach_kernel_driver.assert_called_once_with(1)
        mock_claim.assert_called_once_with(dev, 1)

    def test_detach_unsupported_is_ignored(self, mock_claim, mock_release, mock_dispose):
        dev = _make_device()
        dev.is_kernel_driver_active.side_effect = NotImplementedError
        PyUsbTransport(dev).claim()
        mock_claim.assert_called_once()

    def test_claim_failure_releases_device(self, mock_claim, mock_release, mock_dispose):
        dev = _make_device()
        mock_claim.side_effect = usb.core.USBError("Resource busy", -6, 16)
        t = PyUsbTransport(dev)
        with self.assertRaises(ClaimError) as ctx:
            t.claim()
        self.assertIn("Failed to claim usb interface 0x02", str(ctx.exception))
        mock_release.assert_not_called()
        mock_dispose.assert_called_once_with(dev)
        self.assertFalse(t.is_open)

    def test_close_releases_once(self, mock_claim, mock_release, mock_dispose):
        dev = _make_device()
        t = PyUsbTransport(dev)
        t.claim()
        t.close()
        t.close()
        mock_release.assert_called_once_with(dev, 2)
        mock_dispose.assert_called_once_with(dev)
        self.assertFalse(t.is_open)
        self.assertIsNone(t.device)

    def test_close_unclaimed_skips_release(self, mock_claim, mock_release, mock_dispose):
        dev = _make_device()
        t = PyUsbTransport(dev)
        t.open()
        t.close()
        mock_release.assert_not_called()
        mock_dispose.assert_called_once_with(dev)

    def test_release_error_still_disposes(self, mock_claim, mock_release, mock_dispose):
        dev = _make_device()
        mock_release.side_effect = usb.core.USBError("No such device", -4, 19)
        t = PyUsbTransport(dev)
        t.claim()
        t.close()
        mock_dispose.assert_called_once_with(dev)

    def test_context_manager(self, mock_claim, mock_release, mock_dispose):
        dev = _make_device()
        with PyUsbTransport(dev) as t:
            mock_claim.assert_called_once_with(dev, 2)
            self.assertTrue(t.is_open)
        mock_release.assert_called_once_with(dev, 2)
        mock_dispose.assert_called_once_with(dev)

    def test_context_manager_releases_on_error(self, mock_claim, mock_release, mock_dispose):
        dev = _make_device()
        with self.assertRaises(RuntimeError):
            with PyUsbTransport(dev):
                raise RuntimeError("boom")
        mock_dispose.assert_called_once_with(dev)

    def test_write_read(self, mock_claim, mock_release, mock_dispose):
        dev = _make_device()
        t = PyUsbTransport(dev)
        t.claim()
        self.assertEqual(t.write(0x02, b'\x27', 100), 1)
        self.assertEqual(t.read(0x84, 2, 100), b'\x01\x02')
        dev.write.assert_called_once_with(0x02, b'\x27', timeout=100)
        dev.read.assert_called_once_with(0x84, 2, timeout=100)

    def test_io_requires_open(self, mock_claim, mock_release, mock_dispose):
        t = PyUsbTransport(_make_device())
        with self.assertRaises(RuntimeError):
            t.write(0x02, b'\x00')
        with self.assertRaises(RuntimeError):
            t.read(0x84, 1)

    def test_io_after_close(self, mock_claim, mock_release, mock_dispose):
        t = PyUsbTransport(_make_device())
        t.claim()
        t.close()
        with self.assertRaises(RuntimeError):
            t.write(0x02, b'\x00')

    @patch('usb.util.get_string', return_value="SN42")
    def test_serial(self, mock_get_string, mock_claim, mock_release, mock_dispose):
        dev = _make_device()
        t = PyUsbTransport(dev)
        self.assertEqual(t.serial, "SN42")
        mock_get_string.assert_called_once_with(dev, 3)
        t.close()
        self.assertEqual(t.serial, "")

    @patch('usb.util.get_string', side_effect=usb.core.USBError("Pipe error", -9, 32))
    def test_serial_unreadable(self, mock_get_string, mock_claim, mock_release, mock_dispose):
        self.assertEqual(PyUsbTransport(_make_device()).serial, "")

    @patch('usb.util.get_string', side_effect=ValueError("The device has no langid"))
    def test_serial_no_langid(self, mock_get_string, mock_claim, mock_release, mock_dispose):
        t = PyUsbTransport(_make_device())
        t.claim()
        self.assertEqual(t.serial, "")
        self.assertTrue(t.is_open)


class TestGetSerial(unittest.TestCase):

    def test_no_serial_index(self):
        dev = MagicMock()
        dev.iSerialNumber = 0
        with patch('usb.util.get_string') as mock_get_string:
            self.assertEqual(get_serial(dev), "")
        mock_get_string.assert_not_called()

    def test_none_string(self):
        dev = MagicMock()
        dev.iSerialNumber = 3
        with patch('usb.util.get_string', return_value=None):
            self.assertEqual(get_serial(dev), "")

    def test_error_propagates(self):
        dev = MagicMock()
        dev.iSerialNumber = 3
        with patch('usb.util.get_string',
                   side_effect=usb.core.USBError("Pipe error", -9, 32)):
            with self.assertRaises(usb.core.USBError):
                get_serial(dev)

    def test_no_langid_becomes_usb_error(self):
        dev = MagicMock()
        dev.iSerialNumber = 3
        with patch('usb.util.get_string',
                   side_effect=ValueError("The device has no langid")):
            with self.assertRaises(usb.core.USBError) as ctx:
                get_serial(dev)
        self.assertIn("no langid", str(ctx.exception))

    def test_reads_descriptor(self):
        dev = MagicMock()
        dev.iSerialNumber = 3
        with patch('usb.util.get_string', return_value="ABC") as mock_get_string:
            self.assertEqual(get_serial(dev), "ABC")
        self.assertEqual(mock_get_string.call_args, call(dev, 3))
