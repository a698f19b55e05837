"""Tests for memory-mapped bitstream images."""

import pytest

from faff.bitstream import BitstreamImage


def test_maps_file(tmp_path):
    path = tmp_path / "top.bin"
    path.write_bytes(bytes(range(100)))
    with BitstreamImage.open(path) as image:
        assert len(image) == 100
        assert image.data[10:13] == b'\x0a\x0b\x0c'
        assert image.path == str(path)
        assert not image.closed
    assert image.closed


def test_empty_file(tmp_path):
    path = tmp_path / "empty.bin"
    path.write_bytes(b'')
    with BitstreamImage.open(path) as image:
        assert len(image) == 0
        assert image.data == b''


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        BitstreamImage.open(tmp_path / "nope.bin")


def test_close_twice(tmp_path):
    path = tmp_path / "top.bin"
    path.write_bytes(b'\x01')
    image = BitstreamImage.open(str(path))
    image.close()
    image.close()
    assert image.closed
