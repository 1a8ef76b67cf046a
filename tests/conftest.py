"""
Shared fixtures: blank .d88 images built with D88Image.create in tmp_path.

SMALL_GEOMETRY uses 1024-byte blocks so one extent spans all 16
allocation-map slots, and only 80 blocks so capacity limits are cheap to hit.
"""

import pytest

from d88cpm.disk.d88_image import D88Image
from d88cpm.disk.geometry import DiskGeometry, DEFAULT_GEOMETRY
from d88cpm.fs.directory import DirectoryEntry, DirectoryScanner, encode_filename

SMALL_GEOMETRY = DiskGeometry(tracks=12, block_size=1024)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep user config files out of the tests"""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))


def make_image(path, geometry=DEFAULT_GEOMETRY):
    image = D88Image(str(path), geometry)
    image.create(b"TEST")
    return image


@pytest.fixture
def image_path(tmp_path):
    path = tmp_path / "disk.d88"
    make_image(path)
    return path


@pytest.fixture
def image(image_path):
    image = D88Image(str(image_path), DEFAULT_GEOMETRY)
    image.open()
    yield image
    image.close()


@pytest.fixture
def small_image(tmp_path):
    image = make_image(tmp_path / "small.d88", SMALL_GEOMETRY)
    image.open()
    yield image
    image.close()


def put_entry(image, index, filename, blocks=(), record_count=0, extent=0, status=0):
    """Write a directory entry straight into the image"""
    name, extension = encode_filename(filename)
    allocation = list(blocks) + [0] * (16 - len(blocks))
    entry = DirectoryEntry(status=status, name=name, extension=extension, extent=extent,
                           record_count=record_count, allocation=allocation)
    image.write_at(image.geometry.entry_addr(index), entry.to_bytes())
    return entry


def scan_for(image, filename):
    name, extension = encode_filename(filename)
    return DirectoryScanner(image, image.geometry).scan(name, extension)


def pattern(size):
    """Deterministic content that differs from the fill byte pattern"""
    return bytes((i * 7 + 3) % 251 for i in range(size))
