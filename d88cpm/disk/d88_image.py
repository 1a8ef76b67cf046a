"""
disk/d88_image.py
D88 Container Management Module
Handles image creation, opening, and logical-address reads and writes
"""

import os
import struct
from typing import Optional

from d88cpm.disk.geometry import D88Error, DiskGeometry, DEFAULT_GEOMETRY


# D88 header layout
D88_NAME_SIZE = 17
D88_WRITE_PROTECT_OFFSET = 0x1A
D88_MEDIA_TYPE_OFFSET = 0x1B
D88_DISK_SIZE_OFFSET = 0x1C
D88_TRACK_TABLE_OFFSET = 0x20
D88_MAX_TRACKS = 164
MEDIA_2D = 0x10
WRITE_PROTECTED = 0x10

FORMAT_FILL = 0xE5


class IoFailure(D88Error):
    """Raised when reading or writing a host file fails"""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class D88Image:
    """A CP/M filesystem inside a .d88 container file"""

    def __init__(self, filename: str, geometry: DiskGeometry = DEFAULT_GEOMETRY):
        self.filename = filename
        self.geometry = geometry
        self.file_handle = None
        self._is_open = False
        self._mode = None

    def create(self, name: bytes = b"") -> bool:
        """Create a blank, formatted .d88 image for this geometry"""
        g = self.geometry
        physical_tracks = g.tracks * g.sides
        sectors_per_side = g.sectors_per_track // g.sides
        size_code = (g.sector_size // 128).bit_length() - 1

        if physical_tracks > D88_MAX_TRACKS:
            raise ValueError(f"D88 supports at most {D88_MAX_TRACKS} tracks, need {physical_tracks}")
        if g.header_size != 16 or g.preamble_size < D88_TRACK_TABLE_OFFSET + 4 * physical_tracks:
            raise ValueError("Geometry does not describe a standard D88 layout")

        track_bytes = sectors_per_side * (g.header_size + g.sector_size)

        header = bytearray(g.preamble_size)
        header[0:D88_NAME_SIZE] = name[:D88_NAME_SIZE - 1].ljust(D88_NAME_SIZE, b'\x00')
        header[D88_WRITE_PROTECT_OFFSET] = 0x00
        header[D88_MEDIA_TYPE_OFFSET] = MEDIA_2D
        struct.pack_into('<I', header, D88_DISK_SIZE_OFFSET, g.container_size)
        for track in range(physical_tracks):
            struct.pack_into('<I', header, D88_TRACK_TABLE_OFFSET + 4 * track,
                             g.preamble_size + track * track_bytes)

        try:
            with open(self.filename, 'wb') as f:
                f.write(header)
                sector_data = bytes([FORMAT_FILL]) * g.sector_size
                for track in range(physical_tracks):
                    cylinder, head = divmod(track, g.sides)
                    chunk = bytearray()
                    for sector in range(sectors_per_side):
                        chunk += struct.pack('<BBBBHBBB5sH',
                                             cylinder, head, sector + 1, size_code,
                                             sectors_per_side, 0, 0, 0, b'\x00' * 5,
                                             g.sector_size)
                        chunk += sector_data
                    f.write(chunk)
        except OSError as e:
            raise IoFailure(f"Failed to create image: {e}", self.filename) from e

        return True

    def open(self, mode: str = 'r+b') -> bool:
        """Open the container for operations"""
        if self._is_open:
            return True
        try:
            self.file_handle = open(self.filename, mode)
        except OSError as e:
            raise IoFailure(f"Failed to open image: {e}", self.filename) from e
        self._is_open = True
        self._mode = mode
        return True

    def close(self):
        """Close the container"""
        if self.file_handle:
            self.file_handle.close()
            self.file_handle = None
            self._is_open = False
            self._mode = None

    def _check_span(self, logical_addr: int, size: int):
        g = self.geometry
        if size and logical_addr // g.sector_size != (logical_addr + size - 1) // g.sector_size:
            raise ValueError(
                f"Access of {size} bytes at 0x{logical_addr:X} crosses a sector boundary")

    def read_at(self, logical_addr: int, size: int) -> bytes:
        """Read bytes at a logical disk address"""
        if not self._is_open:
            self.open('rb')
        self._check_span(logical_addr, size)

        offset = self.geometry.translate(logical_addr)
        try:
            self.file_handle.seek(offset)
            data = self.file_handle.read(size)
        except OSError as e:
            raise IoFailure(f"Failed to read image at 0x{offset:X}: {e}", self.filename) from e
        if len(data) != size:
            raise IoFailure(f"Short read at 0x{offset:X}: image is truncated", self.filename)
        return data

    def write_at(self, logical_addr: int, data: bytes) -> bool:
        """Write bytes at a logical disk address"""
        if self._is_open and '+' not in self._mode:
            # read_at opened the handle read-only
            self.close()
        if not self._is_open:
            self.open()
        self._check_span(logical_addr, len(data))

        offset = self.geometry.translate(logical_addr)
        try:
            self.file_handle.seek(offset)
            self.file_handle.write(data)
            self.file_handle.flush()
        except OSError as e:
            raise IoFailure(f"Failed to write image at 0x{offset:X}: {e}", self.filename) from e
        return True

    def get_size(self) -> int:
        """Get the size of the container in bytes"""
        if not os.path.exists(self.filename):
            return 0
        return os.path.getsize(self.filename)

    def verify_integrity(self) -> dict:
        """Check the container against the geometry and return a status"""
        if not os.path.exists(self.filename):
            return {'status': 'error', 'message': 'Image file does not exist'}

        file_size = self.get_size()
        expected = self.geometry.container_size
        if file_size < expected:
            return {'status': 'error',
                    'message': f'Image is {file_size} bytes, geometry needs {expected}'}

        try:
            with open(self.filename, 'rb') as f:
                header = f.read(D88_TRACK_TABLE_OFFSET)
        except OSError as e:
            return {'status': 'error', 'message': f'Integrity check failed: {e}'}

        write_protected = bool(header[D88_WRITE_PROTECT_OFFSET] & WRITE_PROTECTED)
        recorded = struct.unpack_from('<I', header, D88_DISK_SIZE_OFFSET)[0]
        if recorded != file_size:
            return {'status': 'warning',
                    'message': f'Header records {recorded} bytes, file has {file_size}',
                    'write_protected': write_protected}
        if write_protected:
            return {'status': 'warning', 'message': 'Image is marked write-protected',
                    'write_protected': True}

        return {'status': 'ok', 'message': 'Image integrity verified', 'write_protected': False}

    def __enter__(self):
        """Context manager entry"""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()
