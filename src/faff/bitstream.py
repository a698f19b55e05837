"""Read-only bitstream images backed by a memory-mapped file.

Usage::

    with BitstreamImage.open("top.bin") as image:
        programmer.program(image.data, load_address)
"""

from __future__ import annotations

import logging
import mmap
import os
from typing import Optional, Union

log = logging.getLogger(__name__)


class BitstreamImage:
    """Immutable view of a bitstream file.

    ``data`` supports ``len()`` and slicing.  The mapping and the file
    descriptor are released by ``close()`` (or leaving the ``with`` block).
    """

    def __init__(self, path: str, data: Union[mmap.mmap, bytes],
                 mapping: Optional[mmap.mmap] = None):
        self.path = path
        self.data = data
        self._mapping = mapping

    @classmethod
    def open(cls, path: Union[str, os.PathLike]) -> BitstreamImage:
        """Map *path* read-only.

        Raises:
            OSError: The file cannot be opened or mapped.
        """
        path = os.fspath(path)
        with open(path, 'rb') as f:
            size = os.fstat(f.fileno()).st_size
            if size == 0:
                # mmap refuses empty files
                log.warning("Bitstream file '%s' is empty", path)
                return cls(path, b"")
            mapping = mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)
        log.debug("Mapped '%s' (%d bytes)", path, size)
        return cls(path, mapping, mapping)

    def __len__(self) -> int:
        return len(self.data)

    @property
    def closed(self) -> bool:
        return self._mapping is not None and self._mapping.closed

    def close(self) -> None:
        if self._mapping is not None and not self._mapping.closed:
            self._mapping.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
