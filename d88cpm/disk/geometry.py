"""
disk/geometry.py
Disk Geometry and Address Translation
Maps CP/M logical disk addresses onto byte offsets inside a .d88 container
"""

from dataclasses import dataclass, fields
from typing import Any, Dict


class D88Error(Exception):
    """Base exception for d88cpm errors"""
    pass


class GeometryError(D88Error, ValueError):
    """Raised when a geometry description is not self-consistent"""
    pass


# Directory entry layout constants shared by the fs layer
ENTRY_SIZE = 32
ALLOCATION_MAP_SIZE = 16
RECORDS_PER_EXTENT = 128


@dataclass(frozen=True)
class DiskGeometry:
    """CP/M disk geometry stored in a .d88 container

    The defaults describe a 5.25" double-sided double-density disk:
    256 bytes/sector, 32 sectors per CP/M track (both sides), 40 tracks,
    2048-byte data blocks and a directory in the first two blocks.
    """

    sector_size: int = 256
    sectors_per_track: int = 32
    tracks: int = 40
    block_size: int = 2048
    record_size: int = 128
    reserved_tracks: int = 2
    directory_blocks: int = 2
    preamble_size: int = 0x2B0      # D88 disk header
    header_size: int = 16           # D88 per-sector header
    sides: int = 2
    fill_byte: int = 0x1A

    def __post_init__(self):
        self._validate()

    def _validate(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise GeometryError(f"{f.name} must be an integer, got {value!r}")
            if value < 0:
                raise GeometryError(f"{f.name} must not be negative")
        for name in ('sector_size', 'sectors_per_track', 'block_size', 'record_size'):
            if getattr(self, name) == 0:
                raise GeometryError(f"{name} must be positive")

        if self.sector_size < self.record_size or self.sector_size % self.record_size:
            raise GeometryError("Sector size must be a multiple of the record size")
        if self.sector_size & (self.sector_size - 1):
            raise GeometryError("Sector size must be a power of two")
        if self.block_size % self.record_size:
            raise GeometryError("Block size must be a multiple of the record size")
        if RECORDS_PER_EXTENT % self.records_per_block:
            raise GeometryError("An extent must cover a whole number of blocks")
        if RECORDS_PER_EXTENT // self.records_per_block > ALLOCATION_MAP_SIZE:
            raise GeometryError(
                f"An extent would need more than {ALLOCATION_MAP_SIZE} blocks")
        if self.sides < 1 or self.sectors_per_track % self.sides:
            raise GeometryError("Sectors per track must divide evenly between sides")
        if self.tracks <= self.reserved_tracks:
            raise GeometryError("No tracks left for the data area")
        if self.directory_blocks < 1 or self.directory_blocks >= self.total_blocks:
            raise GeometryError("Directory must occupy at least one block and leave room for data")
        if self.total_blocks > 256:
            raise GeometryError(
                f"{self.total_blocks} blocks do not fit in one-byte block numbers")
        if not 0 <= self.fill_byte <= 0xFF:
            raise GeometryError("Fill byte must be a single byte value")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiskGeometry':
        """Build a geometry from a config section, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    # Derived values
    @property
    def track_size(self) -> int:
        return self.sector_size * self.sectors_per_track

    @property
    def directory_base(self) -> int:
        """Logical address of block 0 (start of the directory)"""
        return self.track_size * self.reserved_tracks

    @property
    def records_per_block(self) -> int:
        return self.block_size // self.record_size

    @property
    def directory_entries(self) -> int:
        return self.directory_blocks * self.block_size // ENTRY_SIZE

    @property
    def total_blocks(self) -> int:
        return self.track_size * (self.tracks - self.reserved_tracks) // self.block_size

    @property
    def total_records(self) -> int:
        return self.total_blocks * self.records_per_block

    @property
    def total_sectors(self) -> int:
        return self.sectors_per_track * self.tracks

    @property
    def container_size(self) -> int:
        """Size in bytes of a complete .d88 file for this geometry"""
        return self.preamble_size + self.total_sectors * (self.header_size + self.sector_size)

    # Address translation
    def translate(self, logical_addr: int) -> int:
        """Logical disk address -> byte offset in the container file"""
        if logical_addr < 0:
            raise ValueError(f"Negative logical address: {logical_addr}")
        return (self.preamble_size + self.header_size + logical_addr
                + self.header_size * (logical_addr // self.sector_size))

    def block_addr(self, block_number: int) -> int:
        return self.directory_base + self.block_size * block_number

    def entry_addr(self, entry_index: int) -> int:
        return self.block_addr(0) + ENTRY_SIZE * entry_index

    def record_addr(self, record_index: int) -> int:
        block, offset = divmod(record_index, self.records_per_block)
        return self.block_addr(block) + self.record_size * offset

    def first_record_of_block(self, block_number: int) -> int:
        return block_number * self.records_per_block


DEFAULT_GEOMETRY = DiskGeometry()
