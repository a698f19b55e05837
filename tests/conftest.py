"""Shared fixtures: an in-memory programming target and isolated config.

``FakeFlashTarget`` implements ``UsbTransport`` and answers the command
protocol the way the companion firmware does, against a simulated NOR
flash (erase sets bytes to 0xFF, writes can only clear bits).
"""

import struct
from unittest.mock import patch

import pytest

from faff import conf
from faff.constants import (
    BLOCK_32K_SIZE,
    BLOCK_64K_SIZE,
    DEFAULT_ENDPOINT_RX,
    DEFAULT_ENDPOINT_TX,
    SECTOR_SIZE,
)
from faff.transport import UsbTransport
from faff.usb_protocol import Opcode


class FakeFlashTarget(UsbTransport):
    """Simulated companion MCU + SPI flash + FPGA reset line."""

    def __init__(self, flash_size=0x200000, fill=0xFF, erase_busy_polls=2,
                 write_busy_polls=1, manufacturer_id=0xEF, device_id=0x40,
                 unique_id=0x0123456789ABCDEF, serial="FAKE0001"):
        self.memory = bytearray([fill]) * flash_size
        self.erase_busy_polls = erase_busy_polls
        self.write_busy_polls = write_busy_polls
        self.manufacturer_id = manufacturer_id
        self.device_id = device_id
        self.unique_id = unique_id
        self.serial = serial

        # Fault injection
        self.ignore_reset_assert = False
        self.ignore_reset_deassert = False
        self.stuck_busy = False
        self.corrupt_addresses = set()

        self.under_reset = False
        self.leds = []
        self.ops = []           # (Opcode, address or None, length or None)
        self.status_polls = 0
        self._busy = 0
        self._response = None
        self._is_open = True
        self.close_count = 0

    # -- UsbTransport ------------------------------------------------------

    def write(self, endpoint, data, timeout=100):
        assert endpoint == DEFAULT_ENDPOINT_TX
        assert self._response is None, "command sent before previous response was read"
        data = bytes(data)
        opcode = Opcode(data[0])

        if opcode == Opcode.SET_RGB_LED:
            self.leds.append(tuple(data[1:4]))
            self.ops.append((opcode, None, None))
        elif opcode == Opcode.FPGA_RESET_ASSERT:
            self.under_reset = not self.ignore_reset_assert or self.under_reset
            self.ops.append((opcode, None, None))
        elif opcode == Opcode.FPGA_RESET_DEASSERT:
            self.under_reset = self.ignore_reset_deassert and self.under_reset
            self.ops.append((opcode, None, None))
        elif opcode == Opcode.FPGA_QUERY_STATUS:
            self._response = bytes([0x01 if self.under_reset else 0x00])
        elif opcode == Opcode.FLASH_IDENTIFY:
            self._response = struct.pack('>BBQ', self.manufacturer_id, self.device_id,
                                         self.unique_id)
            self.ops.append((opcode, None, None))
        elif opcode in (Opcode.FLASH_ERASE_4K, Opcode.FLASH_ERASE_32K, Opcode.FLASH_ERASE_64K):
            (addr,) = struct.unpack('>I', data[1:5])
            size = {
                Opcode.FLASH_ERASE_4K: SECTOR_SIZE,
                Opcode.FLASH_ERASE_32K: BLOCK_32K_SIZE,
                Opcode.FLASH_ERASE_64K: BLOCK_64K_SIZE,
            }[opcode]
            start = addr - addr % size
            self.memory[start:start + size] = b'\xff' * size
            self._busy = self.erase_busy_polls
            self.ops.append((opcode, addr, None))
        elif opcode == Opcode.FLASH_ERASE_CHIP:
            self.memory[:] = b'\xff' * len(self.memory)
            self._busy = self.erase_busy_polls
            self.ops.append((opcode, None, None))
        elif opcode == Opcode.FLASH_WRITE:
            addr, length = struct.unpack('>IB', data[1:6])
            payload = data[6:]
            assert len(payload) == length
            for i, b in enumerate(payload):
                self.memory[addr + i] &= b
            self._busy = self.write_busy_polls
            self.ops.append((opcode, addr, length))
        elif opcode == Opcode.FLASH_READ:
            addr, length = struct.unpack('>IB', data[1:6])
            chunk = bytearray(self.memory[addr:addr + length])
            for i in range(length):
                if addr + i in self.corrupt_addresses:
                    chunk[i] ^= 0xFF
            self._response = bytes(chunk)
            self.ops.append((opcode, addr, length))
        elif opcode == Opcode.FLASH_QUERY_STATUS:
            self.status_polls += 1
            busy = self.stuck_busy or self._busy > 0
            if self._busy > 0:
                self._busy -= 1
            self._response = bytes([0x01 if busy else 0x00])
        return len(data)

    def read(self, endpoint, length, timeout=100):
        assert endpoint == DEFAULT_ENDPOINT_RX
        assert self._response is not None, "read without a pending response"
        resp, self._response = self._response, None
        assert len(resp) == length
        return resp

    def close(self):
        self.close_count += 1
        self._is_open = False

    @property
    def is_open(self):
        return self._is_open

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # -- Helpers -----------------------------------------------------------

    def ops_of(self, opcode):
        return [op for op in self.ops if op[0] == opcode]

    def opcodes(self):
        return [op[0] for op in self.ops]


@pytest.fixture
def make_target():
    """Factory for FakeFlashTarget with custom options."""
    return FakeFlashTarget


@pytest.fixture
def target():
    return FakeFlashTarget()


@pytest.fixture(autouse=True)
def no_sleep():
    """Busy-poll delays are real sleeps; skip them in tests."""
    with patch('faff.programmer.time.sleep') as mock_sleep:
        yield mock_sleep


@pytest.fixture(autouse=True)
def isolated_config(tmp_path):
    """Point the config file at a temp dir so tests never see ~/.config."""
    config_dir = tmp_path / 'config'
    with patch.object(conf, 'CONFIG_DIR', str(config_dir)), \
         patch.object(conf, 'CONFIG_PATH', str(config_dir / 'config.json')):
        yield config_dir / 'config.json'
