"""
Unit tests for the PAGE_INFO record encoder (abi_page_info.py).
"""

import struct

import pytest

from launchmeasure.measurement.abi_page_info import (
    PAGE_INFO_CONTENTS_START,
    PAGE_INFO_CURRENT_START,
    PAGE_INFO_GPA_START,
    PAGE_INFO_IMI_PAGE,
    PAGE_INFO_LENGTH_START,
    PAGE_INFO_PAGE_TYPE,
    PAGE_INFO_RESERVED_START,
    ZERO_PAGE_TYPES,
    _PAGE_INFO_FORMAT,
    PageInfo,
    PageType,
)
from launchmeasure.measurement.types import PAGE_INFO_SIZE, RecordEncodingError


CURRENT = bytes(range(48))
CONTENTS = bytes(range(48, 96))


# =============================================================================
# Encoding Tests
# =============================================================================

class TestEncode:
    """Test the 112-byte little-endian layout."""

    def test_exact_bytes(self):
        """Every field lands at its offset with the right width and byte order."""
        record = PageInfo(current=CURRENT, contents=CONTENTS, page_type=PageType.VMSA,
                          gpa=0x1122334455667788)

        expected = (
            CURRENT
            + CONTENTS
            + b'\x70\x00'                      # length
            + b'\x02'                          # page_type
            + b'\x00'                          # imi_page
            + b'\x00\x00\x00\x00'              # reserved
            + b'\x88\x77\x66\x55\x44\x33\x22\x11'  # gpa
        )
        assert record.to_bytes() == expected

    def test_format_size(self):
        assert struct.calcsize(_PAGE_INFO_FORMAT) == PAGE_INFO_SIZE

    def test_size_is_constant(self):
        """Records are always 112 bytes."""
        for page_type in PageType:
            record = PageInfo(current=bytes(48), contents=bytes(48), page_type=page_type, gpa=0)
            assert len(record.to_bytes()) == PAGE_INFO_SIZE

    def test_field_offsets(self):
        """Offsets used by the parser match the packed layout."""
        data = PageInfo(current=CURRENT, contents=CONTENTS, page_type=PageType.CPUID,
                        gpa=0xFFFFFFFFF000).to_bytes()

        assert data[PAGE_INFO_CURRENT_START:PAGE_INFO_CURRENT_START + 48] == CURRENT
        assert data[PAGE_INFO_CONTENTS_START:PAGE_INFO_CONTENTS_START + 48] == CONTENTS
        assert struct.unpack_from('<H', data, PAGE_INFO_LENGTH_START)[0] == 0x70
        assert data[PAGE_INFO_PAGE_TYPE] == PageType.CPUID
        assert data[PAGE_INFO_IMI_PAGE] == 0
        assert struct.unpack_from('<I', data, PAGE_INFO_RESERVED_START)[0] == 0
        assert struct.unpack_from('<Q', data, PAGE_INFO_GPA_START)[0] == 0xFFFFFFFFF000

    def test_matches_packed_structure(self, record_bytes):
        """The struct encoder agrees with a packed ctypes structure."""
        for page_type, gpa in ((PageType.NORMAL, 0xFFFF0000), (PageType.SECRETS, 0x5000),
                               (PageType.VMSA, 0xFFFFFFFFF000), (PageType.UNMEASURED, 0)):
            record = PageInfo(current=CURRENT, contents=CONTENTS, page_type=page_type, gpa=gpa)
            assert record.to_bytes() == record_bytes(CURRENT, CONTENTS, page_type, gpa)

    def test_accepts_bytearray(self):
        record = PageInfo(current=bytearray(CURRENT), contents=bytearray(48), page_type=1, gpa=0x1000)
        assert record.to_bytes()[:48] == CURRENT


class TestEncodeErrors:
    """Test that malformed records are rejected."""

    def test_short_current(self):
        record = PageInfo(current=bytes(47), contents=bytes(48), page_type=1, gpa=0)
        with pytest.raises(RecordEncodingError, match="current is 47 bytes"):
            record.to_bytes()

    def test_long_contents(self):
        record = PageInfo(current=bytes(48), contents=bytes(49), page_type=1, gpa=0)
        with pytest.raises(RecordEncodingError, match="contents is 49 bytes"):
            record.to_bytes()

    def test_contents_not_bytes(self):
        record = PageInfo(current=bytes(48), contents="00" * 48, page_type=1, gpa=0)
        with pytest.raises(RecordEncodingError, match="must be bytes"):
            record.to_bytes()

    def test_gpa_out_of_range(self):
        record = PageInfo(current=bytes(48), contents=bytes(48), page_type=1, gpa=1 << 64)
        with pytest.raises(RecordEncodingError, match="gpa"):
            record.to_bytes()

    def test_negative_gpa(self):
        record = PageInfo(current=bytes(48), contents=bytes(48), page_type=1, gpa=-4096)
        with pytest.raises(RecordEncodingError, match="gpa"):
            record.to_bytes()

    def test_page_type_too_wide(self):
        record = PageInfo(current=bytes(48), contents=bytes(48), page_type=0x100, gpa=0)
        with pytest.raises(RecordEncodingError, match="page_type"):
            record.to_bytes()


# =============================================================================
# Parsing Tests
# =============================================================================

class TestParse:
    """Test PageInfo.from_bytes."""

    def test_parse_record(self, record_bytes):
        data = record_bytes(CURRENT, CONTENTS, PageType.ZERO, 0x7000)
        record = PageInfo.from_bytes(data)

        assert record.current == CURRENT
        assert record.contents == CONTENTS
        assert record.length == PAGE_INFO_SIZE
        assert record.page_type == PageType.ZERO
        assert record.imi_page == 0
        assert record.reserved == 0
        assert record.gpa == 0x7000

    def test_parse_wrong_size(self):
        with pytest.raises(RecordEncodingError, match="expected 0x70"):
            PageInfo.from_bytes(bytes(PAGE_INFO_SIZE - 1))

    def test_str_representation(self):
        record = PageInfo(current=CURRENT, contents=CONTENTS, page_type=PageType.SECRETS, gpa=0x5000)
        str_repr = str(record)

        assert "gpa=0x5000" in str_repr
        assert "type=SECRETS" in str_repr

    def test_str_unknown_type(self):
        record = PageInfo(current=CURRENT, contents=CONTENTS, page_type=0x42, gpa=0)
        assert "type=0x42" in str(record)


class TestPageType:
    """Test page type values."""

    def test_values(self):
        assert PageType.NORMAL == 1
        assert PageType.VMSA == 2
        assert PageType.ZERO == 3
        assert PageType.UNMEASURED == 4
        assert PageType.SECRETS == 5
        assert PageType.CPUID == 6

    def test_zero_page_types(self):
        assert PageType.NORMAL not in ZERO_PAGE_TYPES
        assert PageType.VMSA not in ZERO_PAGE_TYPES
        assert set(ZERO_PAGE_TYPES) == {PageType.ZERO, PageType.UNMEASURED, PageType.SECRETS, PageType.CPUID}
