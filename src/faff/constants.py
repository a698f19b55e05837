"""Shared constants for faff.

USB ids, endpoint numbers and timing values match the companion
microcontroller firmware.  Everything here is read-only; runtime overrides
go through ``faff.conf`` into frozen settings objects.
"""

# =========================================================================
# USB link
# =========================================================================

# Test VID:PID from http://pid.codes/pids/
DEFAULT_USB_VID = 0x1209
DEFAULT_USB_PID = 0x0001

# The programming interface on the companion firmware
DEFAULT_USB_INTERFACE = 2

# Bulk endpoints: commands out, responses in
DEFAULT_ENDPOINT_TX = 0x02
DEFAULT_ENDPOINT_RX = 0x84

# Per-transfer timeout (ms)
DEFAULT_TIMEOUT_MS = 100

USB_ID_MAX = 0xFFFF
ADDRESS_MAX = 0xFFFFFFFF

# =========================================================================
# Flash geometry
# =========================================================================

SECTOR_SIZE = 4096
SECTOR_MASK = 0xFFFFF000
BLOCK_32K_SIZE = 32 * 1024
BLOCK_64K_SIZE = 64 * 1024

# USB FS max packet size is 64 bytes.  A FLASH_WRITE frame carries a 6-byte
# header, so the biggest power of two that fits is 32.
MAX_CHUNK_SIZE = 32
DEFAULT_CHUNK_SIZE = MAX_CHUNK_SIZE

# =========================================================================
# Busy polling
# =========================================================================

ERASE_POLL_DELAY_S = 0.005
WRITE_POLL_DELAY_S = 0.001
# Block and chip erases take seconds to minutes
BLOCK_ERASE_POLL_DELAY_S = 0.020
CHIP_ERASE_POLL_DELAY_S = 0.100

# Upper bound on status polls per erase/write (0 in config disables it).
# At the erase delay this allows ~50 s before giving up.
DEFAULT_MAX_BUSY_POLLS = 10000

# =========================================================================
# Status LED colours (r, g, b)
# =========================================================================

LED_PROGRAMMING_MODE = (0, 128, 0)
LED_ACTIVE = (64, 32, 0)
LED_IDLE = (0, 16, 0)
