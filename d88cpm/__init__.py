"""
d88cpm
Append a file to the free space of a CP/M disk image in .d88 format
"""

from d88cpm.disk.d88_image import D88Image, IoFailure
from d88cpm.disk.geometry import D88Error, DiskGeometry, GeometryError, DEFAULT_GEOMETRY
from d88cpm.fs.allocation import AllocationEngine, WriteOutcome, WriteStatus
from d88cpm.fs.directory import (
    DirectoryEntry, DirectoryScanner, InvalidFilename, ScanResult, encode_filename
)
from d88cpm.fs.file_operations import FileOperations

__version__ = "0.2.0"

__all__ = [
    "AllocationEngine", "D88Error", "D88Image", "DEFAULT_GEOMETRY", "DirectoryEntry",
    "DirectoryScanner", "DiskGeometry", "FileOperations", "GeometryError",
    "InvalidFilename", "IoFailure", "ScanResult", "WriteOutcome", "WriteStatus",
    "encode_filename",
]
