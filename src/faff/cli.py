#!/usr/bin/env python3
"""
faff - Find and Flash FPGA - Command Line Interface

Entry point for the faff package.
"""

import argparse
import logging
import sys
from contextlib import contextmanager

from .__version__ import __version__
from .bitstream import BitstreamImage
from .conf import (
    CONFIG_KEYS,
    CONFIG_PATH,
    build_link_settings,
    build_programming_settings,
    build_selector,
    effective_config,
    load_config,
    parse_hex,
    parse_int,
    set_config_value,
)
from .constants import (
    BLOCK_32K_SIZE,
    BLOCK_64K_SIZE,
    BLOCK_ERASE_POLL_DELAY_S,
    CHIP_ERASE_POLL_DELAY_S,
    ERASE_POLL_DELAY_S,
    MAX_CHUNK_SIZE,
    SECTOR_SIZE,
)
from .device_detector import find_device, list_devices
from .errors import FaffError, VerifyMismatchError
from .programmer import FlashProgrammer, iter_chunks, wait_while_busy
from .usb_protocol import ProtocolClient

log = logging.getLogger(__name__)

_ERASE_SIZES = {
    '4k': (SECTOR_SIZE, ERASE_POLL_DELAY_S),
    '32k': (BLOCK_32K_SIZE, BLOCK_ERASE_POLL_DELAY_S),
    '64k': (BLOCK_64K_SIZE, BLOCK_ERASE_POLL_DELAY_S),
}


def _err(message):
    print(message, file=sys.stderr)


def _configure_logging(verbose=0):
    """Set up logging based on verbosity (filter out noisy pyusb)."""
    if verbose >= 2:
        logging.basicConfig(level=logging.DEBUG, format='[%(levelname)s] %(name)s: %(message)s')
        if verbose < 3:
            logging.getLogger('usb').setLevel(logging.WARNING)
    elif verbose == 1:
        logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    else:
        logging.basicConfig(level=logging.WARNING, format='%(message)s')


def build_parser():
    parser = argparse.ArgumentParser(
        prog="faff",
        description="faff: Find and Flash FPGA",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    faff flash top.bin                   Program and verify top.bin at 0x0
    faff flash top.bin --lma 0x100000    Program at a load address
    faff --usb-serial ABC123 flash top.bin
    faff detect                          List devices and their serials
    faff identify                        Show flash chip ids
    faff erase --chip                    Erase the whole flash
    faff read 0x0 256 -o dump.bin        Read flash contents
    faff led 004000                      Set status LED colour
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv, -vvv)"
    )

    target = parser.add_argument_group("Target selection")
    target.add_argument("--usb-vid", type=parse_hex, help="Vendor ID of device to use (hex)")
    target.add_argument("--usb-pid", type=parse_hex, help="Product ID of device to use (hex)")
    target.add_argument(
        "--usb-serial",
        help="Select device with this serial. If not specified (or empty), the first "
             "device found with a matching VID:PID is used",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Flash command
    flash_parser = subparsers.add_parser("flash", help="Write a file to the target flash")
    flash_parser.add_argument("file", nargs="?", help="The file that should be written to the target")
    flash_parser.add_argument("-f", "--file", dest="file_opt", metavar="FILE",
                              help="Same as the positional FILE")
    flash_parser.add_argument("--lma", type=parse_int, default=0,
                              help="Load memory address for the file (default 0x0000)")
    flash_parser.add_argument("--no-verify", action="store_true",
                              help="Do not read back the programmed file to verify it")

    # Detect command
    subparsers.add_parser("detect", help="List devices with the selected VID:PID")

    # Identify command
    subparsers.add_parser("identify", help="Show flash manufacturer, device and unique id")

    # Erase command
    erase_parser = subparsers.add_parser("erase", help="Erase flash")
    erase_parser.add_argument("address", nargs="?", type=parse_int, help="Block address")
    erase_parser.add_argument("--size", choices=sorted(_ERASE_SIZES), default="4k",
                              help="Erase block size (default 4k)")
    erase_parser.add_argument("--chip", action="store_true", help="Erase the whole chip")

    # Read command
    read_parser = subparsers.add_parser("read", help="Dump flash contents to a file")
    read_parser.add_argument("address", type=parse_int, help="Start address")
    read_parser.add_argument("length", type=parse_int, help="Number of bytes")
    read_parser.add_argument("--output", "-o", required=True, help="Output file")

    # LED command
    led_parser = subparsers.add_parser("led", help="Set the status LED colour")
    led_parser.add_argument("hex", help="Hex color code (e.g., 00ff00 for green)")

    # Config command
    config_parser = subparsers.add_parser("config", help="Show or change saved settings")
    config_parser.add_argument("--set", metavar="KEY=VALUE", dest="assignment",
                               help=f"Persist a setting ({', '.join(CONFIG_KEYS)})")

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "flash": flash,
        "detect": detect,
        "identify": identify,
        "erase": erase,
        "read": read_flash,
        "led": set_led,
        "config": show_config,
    }
    try:
        return commands[args.command](args)
    except VerifyMismatchError as e:
        _err(e.diff or str(e))
        return 1
    except (FaffError, ValueError, OSError) as e:
        log.debug("Command %s failed", args.command, exc_info=True)
        _err(str(e))
        return 1


# =========================================================================
# Session helpers
# =========================================================================

@contextmanager
def _session(args, config):
    """Bind to the selected device and yield a ProtocolClient.

    The device is released on every exit path.
    """
    selector = build_selector(args.usb_vid, args.usb_pid, args.usb_serial, config)
    link = build_link_settings(config)
    with find_device(selector, link.interface) as handle:
        _err(f"Claimed device {selector.vendor_id:04x}:{selector.product_id:04x} "
             f"with serial {handle.serial}")
        yield ProtocolClient(handle, link)


class _ProgressPrinter:
    """Single-line progress on stderr, one line per phase."""

    LABELS = {"write": "Programming", "verify": "Reading"}

    def __init__(self, load_address, stream=None):
        self.load_address = load_address
        self.stream = stream or sys.stderr
        self._phase = None

    def __call__(self, phase, done, total):
        if self._phase is not None and phase != self._phase:
            self.stream.write("\n")
        self._phase = phase
        self.stream.write(
            f"\r{self.LABELS.get(phase, phase)} block 0x{self.load_address + done:08x}"
            f" / 0x{self.load_address + total:08x}"
        )
        self.stream.flush()

    def finish(self):
        if self._phase is not None:
            self.stream.write("\n")
            self._phase = None


# =========================================================================
# Commands
# =========================================================================

def flash(args):
    """Program (and verify) a bitstream file."""
    path = args.file or args.file_opt
    if not path:
        _err("No input file specified")
        _err("To view help, run faff flash -h")
        return 1

    config = load_config()
    try:
        image = BitstreamImage.open(path)
    except OSError as e:
        _err(f"Failed to open bitstream file '{path}': {e.strerror or e}")
        return 1

    progress = _ProgressPrinter(args.lma)
    with image:
        with _session(args, config) as client:
            programmer = FlashProgrammer(client, build_programming_settings(config))
            try:
                result = programmer.program(
                    image.data, args.lma, verify=not args.no_verify, on_progress=progress,
                )
            finally:
                progress.finish()

    _err(str(result.identity))
    status = "verified" if result.verified else "not verified"
    _err(f"Wrote {result.bytes_written} bytes to 0x{args.lma:08x} "
         f"({len(result.sectors_erased)} sectors erased, {status})")
    return 0


def detect(args):
    """List devices matching the selected VID:PID."""
    selector = build_selector(args.usb_vid, args.usb_pid, args.usb_serial)
    _err(f"Searching for devices with VID:PID "
         f"{selector.vendor_id:04x}:{selector.product_id:04x}")

    devices = list_devices(selector.vendor_id, selector.product_id)
    for i, dev in enumerate(devices):
        location = f" (bus {dev.bus} address {dev.address})" if dev.bus is not None else ""
        _err(f"[{i}] Serial: {dev.serial}{location}")

    if not devices:
        _err("Failed to find any devices")
        return 1
    _err(f"Found {len(devices)} devices")
    return 0


def identify(args):
    """Print the flash chip identity."""
    config = load_config()
    with _session(args, config) as client:
        programmer = FlashProgrammer(client, build_programming_settings(config))
        programmer.hold_fpga()
        identity = programmer.identify()
        programmer.release_fpga()
    print(identity)
    return 0


def erase(args):
    """Erase one block, or the whole chip."""
    if args.chip == (args.address is not None):
        _err("Specify either an address or --chip")
        return 1

    if not args.chip:
        size, _ = _ERASE_SIZES[args.size]
        if args.address % size:
            _err(f"Address 0x{args.address:08x} is not aligned to {args.size}")
            return 1

    config = load_config()
    settings = build_programming_settings(config)
    with _session(args, config) as client:
        programmer = FlashProgrammer(client, settings)
        programmer.hold_fpga()
        if args.chip:
            client.flash_erase_chip()
            wait_while_busy(client, CHIP_ERASE_POLL_DELAY_S, settings.max_busy_polls,
                            "chip erase")
            _err("Chip erased")
        else:
            size, delay = _ERASE_SIZES[args.size]
            erase_block = {
                '4k': client.flash_erase_4k,
                '32k': client.flash_erase_32k,
                '64k': client.flash_erase_64k,
            }[args.size]
            erase_block(args.address)
            wait_while_busy(client, delay, settings.max_busy_polls,
                            f"{args.size} erase 0x{args.address:08x}")
            _err(f"Erased {args.size} block at 0x{args.address:08x}")
        programmer.release_fpga()
    return 0


def read_flash(args):
    """Dump flash contents to a file."""
    if args.length <= 0:
        _err("Length must be positive")
        return 1

    config = load_config()
    dump = bytearray()
    with _session(args, config) as client:
        programmer = FlashProgrammer(client, build_programming_settings(config))
        programmer.hold_fpga()
        for offset, size in iter_chunks(args.address, args.length, MAX_CHUNK_SIZE):
            dump += client.flash_read(args.address + offset, size)
        programmer.release_fpga()

    # Only touch the output once the whole range was read
    with open(args.output, 'wb') as out:
        out.write(dump)
    _err(f"Read {args.length} bytes from 0x{args.address:08x} into {args.output}")
    return 0


def set_led(args):
    """Set the status LED colour."""
    hex_color = args.hex.lstrip('#')
    if len(hex_color) != 6:
        _err("Error: Invalid hex color. Use format: 00ff00")
        return 1

    r = int(hex_color[0:2], 16)
    g = int(hex_color[2:4], 16)
    b = int(hex_color[4:6], 16)

    with _session(args, load_config()) as client:
        client.set_rgb_led(r, g, b)
    print(f"Set LED to #{hex_color}")
    return 0


def show_config(args):
    """Show effective settings, or persist one."""
    if args.assignment:
        key, sep, value = args.assignment.partition('=')
        if not sep:
            _err("Use --set KEY=VALUE")
            return 1
        try:
            stored = set_config_value(key.strip(), value.strip())
        except KeyError:
            _err(f"Unknown setting '{key}'. Known: {', '.join(CONFIG_KEYS)}")
            return 1
        print(f"{key.strip()} = {stored!r}")
        return 0

    print(f"# {CONFIG_PATH}")
    for key, value in effective_config().items():
        if key in ('usb_vid', 'usb_pid'):
            value = f"{value:04x}"
        elif key in ('endpoint_tx', 'endpoint_rx'):
            value = f"0x{value:02x}"
        print(f"{key} = {value}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
