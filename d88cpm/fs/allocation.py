"""
fs/allocation.py
Record Allocation Module
Splits a byte stream into records, writes them after the directory
high-water mark, and records the extents in directory entries
"""

import io
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Iterator, List, Optional, Tuple, Union

from d88cpm.disk.d88_image import IoFailure
from d88cpm.disk.geometry import RECORDS_PER_EXTENT, DiskGeometry
from d88cpm.fs.directory import FULL_EXTENT, STATUS_LIVE, DirectoryEntry, ScanResult

logger = logging.getLogger(__name__)

Source = Union[bytes, bytearray, memoryview, BinaryIO]


class WriteStatus(Enum):
    """Terminal state of a write"""
    SUCCESS = "success"
    NAME_CONFLICT = "name_conflict"
    CAPACITY_EXCEEDED = "capacity_exceeded"


@dataclass
class WriteOutcome:
    """Result of AllocationEngine.write

    CAPACITY_EXCEEDED in non-transactional mode means records_written records
    were committed and are described by entries_written.
    """
    status: WriteStatus
    records_written: int = 0
    entries_written: List[int] = field(default_factory=list)
    first_block: Optional[int] = None
    last_block: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status is WriteStatus.SUCCESS

    @property
    def partial(self) -> bool:
        return self.status is WriteStatus.CAPACITY_EXCEEDED and self.records_written > 0


class AllocationEngine:
    """Writes one file into the free space above the highest used block"""

    def __init__(self, image, geometry: DiskGeometry, transactional: bool = False):
        self.image = image
        self.geometry = geometry
        self.transactional = transactional

    def _read(self, stream: BinaryIO, size: int) -> bytes:
        try:
            return stream.read(size)
        except OSError as e:
            raise IoFailure(f"Failed to read source: {e}", getattr(stream, 'name', None)) from e

    def iter_records(self, source: Source) -> Iterator[bytes]:
        """Yield fixed-size records, padding the last one with the fill byte"""
        if isinstance(source, (bytes, bytearray, memoryview)):
            source = io.BytesIO(bytes(source))

        size = self.geometry.record_size
        fill = bytes([self.geometry.fill_byte])
        while True:
            chunk = self._read(source, size)
            if not chunk:
                return
            # Pipes may return short reads before EOF
            while len(chunk) < size:
                more = self._read(source, size - len(chunk))
                if not more:
                    break
                chunk += more
            yield chunk.ljust(size, fill)

    def required_capacity(self, size: int) -> Tuple[int, int]:
        """(records, directory entries) needed for a file of size bytes"""
        records = -(-size // self.geometry.record_size)
        entries = max(1, -(-records // RECORDS_PER_EXTENT))
        return records, entries

    def _source_size(self, source: Source) -> int:
        if isinstance(source, (bytes, bytearray, memoryview)):
            return len(source)
        try:
            position = source.tell()
            end = source.seek(0, os.SEEK_END)
            source.seek(position)
        except OSError as e:
            raise IoFailure(f"Cannot size source: {e}", getattr(source, 'name', None)) from e
        return end - position

    def fits(self, size: int, scan: ScanResult) -> bool:
        g = self.geometry
        records, entries = self.required_capacity(size)
        first_record = g.first_record_of_block(scan.next_block)
        return (scan.next_entry_index + entries <= g.directory_entries
                and first_record + records <= g.total_records)

    def _new_entry(self, name: bytes, extension: bytes, extent: int) -> DirectoryEntry:
        return DirectoryEntry(status=STATUS_LIVE, name=name, extension=extension, extent=extent)

    def _persist(self, slot: int, entry: DirectoryEntry, written: List[int]):
        self.image.write_at(self.geometry.entry_addr(slot), entry.to_bytes())
        if slot not in written:
            written.append(slot)
        logger.debug("Entry %d: extent %d, %d records, blocks %s",
                     slot, entry.extent, entry.records, entry.blocks)

    def write(self, source: Source, name: bytes, extension: bytes,
              scan: ScanResult) -> WriteOutcome:
        """
        Write source as a new file named name.extension.

        Records go to consecutive positions starting at the first record of
        block scan.last_used_block + 1; entries go to consecutive slots
        starting after scan.last_live_entry_index. Nothing already live is
        touched. Without transactional mode a capacity failure leaves the
        records written so far committed, with an entry describing them.
        """
        if scan.duplicate_found:
            logger.info("Name conflict, nothing written")
            return WriteOutcome(WriteStatus.NAME_CONFLICT)

        g = self.geometry
        first_block = scan.next_block
        first_record = g.first_record_of_block(first_block)

        if self.transactional and not self.fits(self._source_size(source), scan):
            logger.warning("File does not fit, nothing written")
            return WriteOutcome(WriteStatus.CAPACITY_EXCEEDED)

        rpb = g.records_per_block
        slot = scan.next_entry_index
        entry = self._new_entry(name, extension, 0)
        outcome = WriteOutcome(WriteStatus.SUCCESS)
        written = 0

        for record in self.iter_records(source):
            if written and written % RECORDS_PER_EXTENT == 0:
                slot += 1
                entry = self._new_entry(name, extension, written // RECORDS_PER_EXTENT)

            record_index = first_record + written
            if slot >= g.directory_entries or record_index >= g.total_records:
                logger.warning("Not enough capacity after %d records (slot %d, record %d)",
                               written, slot, record_index)
                if entry.record_count:
                    self._persist(slot, entry, outcome.entries_written)
                outcome.status = WriteStatus.CAPACITY_EXCEEDED
                return outcome

            self.image.write_at(g.record_addr(record_index), record)
            written += 1

            in_entry = written % RECORDS_PER_EXTENT or RECORDS_PER_EXTENT
            block = first_block + (written - 1) // rpb
            entry.record_count = in_entry if in_entry < RECORDS_PER_EXTENT else FULL_EXTENT
            entry.allocation[(in_entry - 1) // rpb] = block
            outcome.records_written = written
            outcome.first_block = first_block
            outcome.last_block = block

            if in_entry == RECORDS_PER_EXTENT:
                self._persist(slot, entry, outcome.entries_written)

        # Always commit the last extent; a just-flushed full entry is rewritten in place
        if slot >= g.directory_entries:
            logger.warning("No free directory entry")
            outcome.status = WriteStatus.CAPACITY_EXCEEDED
            return outcome
        self._persist(slot, entry, outcome.entries_written)

        return outcome
