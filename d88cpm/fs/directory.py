"""
fs/directory.py
CP/M Directory Module
Handles 8.3 name encoding, directory entry (FCB) parsing, and directory scans
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from d88cpm.disk.geometry import (
    ALLOCATION_MAP_SIZE, ENTRY_SIZE, RECORDS_PER_EXTENT, D88Error, DiskGeometry
)

logger = logging.getLogger(__name__)

NAME_SIZE = 8
EXTENSION_SIZE = 3
STATUS_LIVE = 0x00
STATUS_DELETED = 0xE5
FULL_EXTENT = 0x80


class InvalidFilename(D88Error, ValueError):
    """Raised when a host filename cannot be expressed as a CP/M 8.3 name"""
    pass


def encode_filename(host_filename: str) -> Tuple[bytes, bytes]:
    """
    Convert a host filename to the space-padded, uppercase 8.3 directory form.
    Longer names and extensions are truncated.
    """
    base = os.path.basename(host_filename)
    stem, sep, ext = base.rpartition('.')
    if not sep or not stem:
        raise InvalidFilename(f"Filename has no extension: {host_filename}")

    try:
        name = stem[:NAME_SIZE].upper().encode('ascii')
        extension = ext[:EXTENSION_SIZE].upper().encode('ascii')
    except UnicodeEncodeError as e:
        raise InvalidFilename(f"Filename is not ASCII: {host_filename}") from e

    return name.ljust(NAME_SIZE, b' '), extension.ljust(EXTENSION_SIZE, b' ')


@dataclass
class DirectoryEntry:
    """Represents one 32-byte CP/M directory entry"""

    status: int = STATUS_LIVE
    name: bytes = b' ' * NAME_SIZE
    extension: bytes = b' ' * EXTENSION_SIZE
    extent: int = 0
    reserved: bytes = b'\x00\x00'
    record_count: int = 0
    allocation: List[int] = field(default_factory=lambda: [0] * ALLOCATION_MAP_SIZE)

    @property
    def is_live(self) -> bool:
        """True for STATUS_LIVE only; STATUS_DELETED and user areas 1-15 are skipped"""
        return self.status == STATUS_LIVE

    @property
    def records(self) -> int:
        """Number of 128-byte records this entry describes"""
        return RECORDS_PER_EXTENT if self.record_count == FULL_EXTENT else self.record_count

    @property
    def blocks(self) -> List[int]:
        return [block for block in self.allocation if block]

    @property
    def full_name(self) -> str:
        name = self.name.decode('ascii', errors='replace').rstrip()
        ext = self.extension.decode('ascii', errors='replace').rstrip()
        return f"{name}.{ext}" if ext else name

    def matches(self, name: bytes, extension: bytes) -> bool:
        return self.name == name and self.extension == extension

    def to_bytes(self) -> bytes:
        """Convert directory entry to 32-byte structure"""
        entry = bytearray(ENTRY_SIZE)
        entry[0] = self.status
        entry[1:9] = self.name[:NAME_SIZE].ljust(NAME_SIZE, b' ')
        entry[9:12] = self.extension[:EXTENSION_SIZE].ljust(EXTENSION_SIZE, b' ')
        entry[12] = self.extent
        entry[13:15] = self.reserved
        entry[15] = self.record_count
        entry[16:32] = bytes(self.allocation)
        return bytes(entry)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'DirectoryEntry':
        """Create DirectoryEntry from 32-byte directory entry data"""
        if len(data) < ENTRY_SIZE:
            raise ValueError(f"Directory entry data must be at least {ENTRY_SIZE} bytes")

        return cls(
            status=data[0],
            name=bytes(data[1:9]),
            extension=bytes(data[9:12]),
            extent=data[12],
            reserved=bytes(data[13:15]),
            record_count=data[15],
            allocation=list(data[16:32]),
        )


@dataclass(frozen=True)
class ScanResult:
    """Directory occupancy as seen by one scan"""
    duplicate_found: bool
    last_live_entry_index: Optional[int]
    last_used_block: int
    entries: Tuple[Tuple[int, DirectoryEntry], ...] = ()

    @property
    def next_entry_index(self) -> int:
        if self.last_live_entry_index is None:
            return 0
        return self.last_live_entry_index + 1

    @property
    def next_block(self) -> int:
        return self.last_used_block + 1


class DirectoryScanner:
    """Reads every directory slot and reports occupancy"""

    def __init__(self, image, geometry: DiskGeometry):
        self.image = image
        self.geometry = geometry

    def read_entry(self, index: int) -> DirectoryEntry:
        data = self.image.read_at(self.geometry.entry_addr(index), ENTRY_SIZE)
        return DirectoryEntry.from_bytes(data)

    def scan(self, name: bytes, extension: bytes) -> ScanResult:
        """
        Scan all directory slots for a name collision and the high-water mark.
        Every slot is read even after a duplicate is seen, so that
        last_used_block reflects the whole directory.
        """
        duplicate_found = False
        last_live = None
        # Blocks 0 and 1 hold the directory
        last_used_block = self.geometry.directory_blocks - 1
        live = []

        for index in range(self.geometry.directory_entries):
            entry = self.read_entry(index)
            if not entry.is_live:
                continue

            last_live = index
            live.append((index, entry))
            if entry.matches(name, extension):
                duplicate_found = True
            last_used_block = max(last_used_block, *entry.allocation)

        logger.debug("Directory scan: %d live entries, last entry %s, last block %d",
                     len(live), last_live, last_used_block)

        return ScanResult(
            duplicate_found=duplicate_found,
            last_live_entry_index=last_live,
            last_used_block=last_used_block,
            entries=tuple(live),
        )
