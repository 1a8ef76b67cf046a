import pytest

from d88cpm.disk.geometry import DiskGeometry, GeometryError, DEFAULT_GEOMETRY

from tests.conftest import SMALL_GEOMETRY


def legacy_convert_addr(addr):
    return 43 * 16 + 16 + addr + 16 * (addr // 256)


class TestTranslate:

    def test_first_byte_skips_preamble_and_first_header(self):
        assert DEFAULT_GEOMETRY.translate(0) == 0x2B0 + 16

    def test_last_byte_of_first_sector(self):
        assert DEFAULT_GEOMETRY.translate(255) == 0x2B0 + 16 + 255

    def test_each_sector_adds_a_header(self):
        assert DEFAULT_GEOMETRY.translate(256) == 0x2B0 + 16 + 256 + 16
        assert DEFAULT_GEOMETRY.translate(512) == 0x2B0 + 16 + 512 + 32

    @pytest.mark.parametrize("addr", [0, 1, 127, 128, 4095, 16384, 16416, 327679])
    def test_matches_d88_layout(self, addr):
        assert DEFAULT_GEOMETRY.translate(addr) == legacy_convert_addr(addr)

    def test_negative_address_rejected(self):
        with pytest.raises(ValueError):
            DEFAULT_GEOMETRY.translate(-1)


class TestDerivedAddresses:

    def test_directory_starts_after_reserved_tracks(self):
        assert DEFAULT_GEOMETRY.directory_base == 256 * 32 * 2
        assert DEFAULT_GEOMETRY.block_addr(0) == 16384

    def test_block_addr(self):
        assert DEFAULT_GEOMETRY.block_addr(2) == 16384 + 2 * 2048

    def test_entry_addr(self):
        assert DEFAULT_GEOMETRY.entry_addr(0) == 16384
        assert DEFAULT_GEOMETRY.entry_addr(127) == 16384 + 32 * 127

    def test_record_addr(self):
        g = DEFAULT_GEOMETRY
        assert g.record_addr(0) == g.block_addr(0)
        assert g.record_addr(15) == g.block_addr(0) + 15 * 128
        assert g.record_addr(16) == g.block_addr(1)
        assert g.record_addr(33) == g.block_addr(2) + 128

    def test_record_addr_small_blocks(self):
        g = SMALL_GEOMETRY
        assert g.records_per_block == 8
        assert g.record_addr(8) == g.block_addr(1)


class TestGeometry:

    def test_default_counts(self):
        g = DEFAULT_GEOMETRY
        assert g.records_per_block == 16
        assert g.directory_entries == 128
        assert g.total_blocks == 152
        assert g.total_records == 152 * 16
        assert g.container_size == 0x2B0 + 40 * 32 * (16 + 256)

    def test_small_counts(self):
        assert SMALL_GEOMETRY.directory_entries == 64
        assert SMALL_GEOMETRY.total_blocks == 80

    def test_from_dict_ignores_unknown_keys(self):
        g = DiskGeometry.from_dict({"tracks": 12, "block_size": 1024, "comment": "x"})
        assert g == SMALL_GEOMETRY

    @pytest.mark.parametrize("kwargs", [
        {"block_size": 1000},
        {"block_size": 512},          # an extent would need 32 blocks
        {"tracks": 80, "block_size": 1024},  # block numbers above 255
        {"sector_size": 384},
        {"sectors_per_track": 31},    # uneven split between two sides
        {"tracks": 2},
        {"record_size": 0},
        {"fill_byte": 256},
        {"tracks": "40"},
    ])
    def test_invalid_geometry(self, kwargs):
        with pytest.raises(GeometryError):
            DiskGeometry(**kwargs)

    def test_geometry_error_is_value_error(self):
        with pytest.raises(ValueError):
            DiskGeometry(block_size=1000)
