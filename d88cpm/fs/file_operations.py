"""
fs/file_operations.py
File System Operations Module
Handles directory listing and reading files back through their extents
"""

from typing import Dict, List, Optional

from d88cpm.disk.geometry import DiskGeometry
from d88cpm.fs.directory import DirectoryEntry, DirectoryScanner, encode_filename


class FileOperations:
    """Read-side operations over a CP/M directory"""

    def __init__(self, image, geometry: DiskGeometry):
        self.image = image
        self.geometry = geometry
        self.scanner = DirectoryScanner(image, geometry)

    def _live_entries(self) -> List[DirectoryEntry]:
        entries = []
        for index in range(self.geometry.directory_entries):
            entry = self.scanner.read_entry(index)
            if entry.is_live:
                entries.append(entry)
        return entries

    def _extents_of(self, name: bytes, extension: bytes) -> List[DirectoryEntry]:
        extents = [e for e in self._live_entries() if e.matches(name, extension)]
        return sorted(extents, key=lambda e: e.extent)

    def list_directory(self) -> List[Dict]:
        """List live files with their extent and record totals"""
        files: Dict[bytes, Dict] = {}
        for entry in self._live_entries():
            key = entry.name + entry.extension
            info = files.setdefault(key, {
                'name': entry.full_name,
                'extents': 0,
                'records': 0,
                'blocks': [],
            })
            info['extents'] += 1
            info['records'] += entry.records
            info['blocks'].extend(entry.blocks)

        for info in files.values():
            info['size'] = info['records'] * self.geometry.record_size
        return list(files.values())

    def read_entry_records(self, entry: DirectoryEntry) -> bytes:
        """Read the records one directory entry describes"""
        g = self.geometry
        content = bytearray()
        blocks = entry.blocks
        for n in range(entry.records):
            block_index, offset = divmod(n, g.records_per_block)
            if block_index >= len(blocks):
                break
            record = g.first_record_of_block(blocks[block_index]) + offset
            content += self.image.read_at(g.record_addr(record), g.record_size)
        return bytes(content)

    def read_file(self, filename: str) -> Optional[bytes]:
        """Read file content, including the fill padding of the last record"""
        name, extension = encode_filename(filename)
        extents = self._extents_of(name, extension)
        if not extents:
            return None
        return b''.join(self.read_entry_records(entry) for entry in extents)

    def get_file_info(self, filename: str) -> Optional[Dict]:
        """Get entry-level information about a file"""
        name, extension = encode_filename(filename)
        extents = self._extents_of(name, extension)
        if not extents:
            return None
        return {
            'name': extents[0].full_name,
            'extents': [e.extent for e in extents],
            'records': sum(e.records for e in extents),
            'blocks': [b for e in extents for b in e.blocks],
        }
