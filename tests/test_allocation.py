import io
import logging

import pytest

from d88cpm.disk.d88_image import IoFailure
from d88cpm.fs.allocation import AllocationEngine, WriteStatus
from d88cpm.fs.directory import DirectoryEntry, encode_filename
from d88cpm.fs.file_operations import FileOperations

from tests.conftest import pattern, put_entry, scan_for


def write(image, filename, data, transactional=False):
    name, extension = encode_filename(filename)
    scan = scan_for(image, filename)
    engine = AllocationEngine(image, image.geometry, transactional=transactional)
    return engine.write(data, name, extension, scan)


def entry_at(image, index):
    return DirectoryEntry.from_bytes(image.read_at(image.geometry.entry_addr(index), 32))


def snapshot(image):
    image.file_handle.flush()
    with open(image.filename, "rb") as f:
        return f.read()


class TestIterRecords:

    def test_pads_last_record(self, image):
        engine = AllocationEngine(image, image.geometry)
        records = list(engine.iter_records(b"x" * 130))
        assert records == [b"x" * 128, b"x" * 2 + b"\x1A" * 126]

    def test_exact_multiple_has_no_padding_record(self, image):
        engine = AllocationEngine(image, image.geometry)
        assert len(list(engine.iter_records(b"x" * 256))) == 2

    def test_short_reads_are_joined(self, image):
        class Trickle(io.RawIOBase):
            def __init__(self, data):
                self.data = data

            def readable(self):
                return True

            def read(self, size=-1):
                chunk, self.data = self.data[:min(size, 50)], self.data[min(size, 50):]
                return chunk

        engine = AllocationEngine(image, image.geometry)
        records = list(engine.iter_records(Trickle(b"y" * 200)))
        assert records == [b"y" * 128, b"y" * 72 + b"\x1A" * 56]

    def test_required_capacity(self, image):
        engine = AllocationEngine(image, image.geometry)
        assert engine.required_capacity(0) == (0, 1)
        assert engine.required_capacity(1) == (1, 1)
        assert engine.required_capacity(16384) == (128, 1)
        assert engine.required_capacity(16385) == (129, 2)


class TestWrite:

    def test_small_file(self, image):
        data = pattern(300)
        outcome = write(image, "hello.txt", data)

        assert outcome.status is WriteStatus.SUCCESS
        assert outcome.ok
        assert outcome.records_written == 3
        assert outcome.entries_written == [0]
        assert (outcome.first_block, outcome.last_block) == (2, 2)

        entry = entry_at(image, 0)
        assert entry.is_live
        assert (entry.name, entry.extension) == (b"HELLO   ", b"TXT")
        assert entry.extent == 0
        assert entry.record_count == 3
        assert entry.allocation == [2] + [0] * 15

    def test_records_start_after_high_water_mark(self, image):
        put_entry(image, 0, "old.com", blocks=[2, 3, 4], record_count=40)
        data = pattern(128)
        outcome = write(image, "new.com", data)

        g = image.geometry
        assert outcome.first_block == 5
        assert image.read_at(g.record_addr(5 * 16), 128) == data
        assert entry_at(image, 1).allocation[0] == 5

    def test_round_trip_with_padding(self, image):
        data = pattern(5000)
        write(image, "data.bin", data)
        stored = FileOperations(image, image.geometry).read_file("data.bin")
        assert len(stored) == 40 * 128
        assert stored[:5000] == data
        assert stored[5000:] == b"\x1A" * (40 * 128 - 5000)

    def test_full_extent_uses_all_map_slots(self, small_image):
        outcome = write(small_image, "full.dat", pattern(16384))

        assert outcome.entries_written == [0]
        entry = entry_at(small_image, 0)
        assert entry.record_count == 0x80
        assert entry.allocation == list(range(2, 18))
        assert not entry_at(small_image, 1).is_live

    def test_full_extent_default_blocks(self, image):
        outcome = write(image, "full.dat", pattern(16384))

        assert outcome.entries_written == [0]
        entry = entry_at(image, 0)
        assert entry.record_count == 0x80
        assert entry.blocks == list(range(2, 10))
        assert not entry_at(image, 1).is_live

    def test_one_byte_over_an_extent(self, image):
        data = pattern(16385)
        outcome = write(image, "over.dat", data)

        assert outcome.entries_written == [0, 1]
        first, second = entry_at(image, 0), entry_at(image, 1)
        assert first.matches(second.name, second.extension)
        assert (first.extent, second.extent) == (0, 1)
        assert first.record_count == 0x80
        assert second.record_count == 1
        assert second.allocation == [10] + [0] * 15

    def test_three_extents_use_consecutive_slots(self, image):
        put_entry(image, 0, "old.com", blocks=[2], record_count=1)
        data = pattern(300 * 128 - 7)
        outcome = write(image, "three.dat", data)

        assert outcome.entries_written == [1, 2, 3]
        extents = [entry_at(image, i) for i in (1, 2, 3)]
        assert [e.extent for e in extents] == [0, 1, 2]
        assert [e.records for e in extents] == [128, 128, 44]
        assert entry_at(image, 0).full_name == "OLD.COM"

        stored = FileOperations(image, image.geometry).read_file("three.dat")
        assert stored[:len(data)] == data

    def test_empty_file_gets_one_entry(self, image):
        outcome = write(image, "empty.txt", b"")
        assert outcome.ok
        assert outcome.records_written == 0
        assert outcome.entries_written == [0]
        entry = entry_at(image, 0)
        assert entry.is_live and entry.record_count == 0 and entry.blocks == []

    def test_existing_entries_untouched(self, image):
        put_entry(image, 0, "a.com", blocks=[2, 3], record_count=30)
        put_entry(image, 1, "b.com", blocks=[4], record_count=2)
        before = [entry_at(image, i).to_bytes() for i in (0, 1)]
        write(image, "c.com", pattern(1000))
        assert [entry_at(image, i).to_bytes() for i in (0, 1)] == before

    def test_file_object_source(self, image):
        data = pattern(700)
        outcome = write(image, "stream.bin", io.BytesIO(data))
        assert outcome.records_written == 6
        assert FileOperations(image, image.geometry).read_file("stream.bin")[:700] == data

    def test_source_read_error(self, image):
        class Broken(io.RawIOBase):
            def readable(self):
                return True

            def read(self, size=-1):
                raise OSError("device gone")

        with pytest.raises(IoFailure):
            write(image, "bad.bin", Broken())


class TestNameConflict:

    def test_conflict_writes_nothing(self, image):
        put_entry(image, 0, "dup.txt", blocks=[2], record_count=1)
        before = snapshot(image)

        outcome = write(image, "DUP.TXT", pattern(500))

        assert outcome.status is WriteStatus.NAME_CONFLICT
        assert outcome.records_written == 0
        assert outcome.entries_written == []
        assert snapshot(image) == before


class TestCapacity:

    def test_data_area_exhausted(self, small_image, caplog):
        put_entry(small_image, 0, "big.dat", blocks=[70], record_count=8)
        data = pattern(100 * 128)

        with caplog.at_level(logging.WARNING, logger="d88cpm"):
            outcome = write(small_image, "new.dat", data)

        # blocks 71-79 remain: 9 blocks of 8 records
        assert outcome.status is WriteStatus.CAPACITY_EXCEEDED
        assert outcome.partial
        assert outcome.records_written == 72
        assert outcome.entries_written == [1]
        assert entry_at(small_image, 1).records == 72
        assert "Not enough capacity" in caplog.text

        stored = FileOperations(small_image, small_image.geometry).read_file("new.dat")
        assert stored == data[:72 * 128]

    def test_directory_exhausted_before_first_record(self, small_image):
        for i in range(64):
            put_entry(small_image, i, f"f{i}.txt")
        before = snapshot(small_image)

        outcome = write(small_image, "new.txt", pattern(10))

        assert outcome.status is WriteStatus.CAPACITY_EXCEEDED
        assert outcome.records_written == 0
        assert not outcome.partial
        assert snapshot(small_image) == before

    def test_directory_exhausted_between_extents(self, small_image):
        for i in range(63):
            put_entry(small_image, i, f"f{i}.txt")

        outcome = write(small_image, "new.txt", pattern(129 * 128))

        assert outcome.status is WriteStatus.CAPACITY_EXCEEDED
        assert outcome.records_written == 128
        assert outcome.entries_written == [63]
        assert entry_at(small_image, 63).record_count == 0x80

    def test_empty_file_with_full_directory(self, small_image):
        for i in range(64):
            put_entry(small_image, i, f"f{i}.txt")
        outcome = write(small_image, "empty.txt", b"")
        assert outcome.status is WriteStatus.CAPACITY_EXCEEDED

    def test_transactional_writes_nothing(self, small_image):
        put_entry(small_image, 0, "big.dat", blocks=[70], record_count=8)
        before = snapshot(small_image)

        outcome = write(small_image, "new.dat", pattern(100 * 128), transactional=True)

        assert outcome.status is WriteStatus.CAPACITY_EXCEEDED
        assert outcome.records_written == 0
        assert snapshot(small_image) == before

    def test_transactional_success_when_it_fits(self, small_image):
        outcome = write(small_image, "fits.dat", io.BytesIO(pattern(72 * 128)),
                        transactional=True)
        assert outcome.ok
        assert outcome.records_written == 72
