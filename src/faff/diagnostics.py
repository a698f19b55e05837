"""Operator-facing reports for failed verification."""


def hex_bytes(data: bytes) -> str:
    """Render *data* as space-separated upper-case hex pairs."""
    return " ".join(f"{b:02X}" for b in data)


def format_diff(expected: bytes, actual: bytes, byte_count: int, offset: int) -> str:
    """Format a side-by-side hex dump of a mismatching block.

    Args:
        expected: Bytes from the image.
        actual: Bytes read back from flash.
        byte_count: Number of bytes in the block.
        offset: Absolute flash address of the block.
    """
    return (
        f"Verify error for block of size {byte_count} at 0x{offset:08x}:\n"
        f"    Expected: {hex_bytes(expected[:byte_count])}\n"
        f"    Read:     {hex_bytes(actual[:byte_count])}"
    )
