"""
SEV-SNP PAGE_INFO record layout.

Every page measured by SNP_LAUNCH_UPDATE is folded into the launch digest by
hashing a 112-byte PAGE_INFO record. The record is packed field by field here
so the byte sequence never depends on the host's native struct layout.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum

from .types import DIGEST_SIZE, MAX_GPA, PAGE_INFO_SIZE, RecordEncodingError

# =============================================================================
# Offsets
# =============================================================================

PAGE_INFO_CURRENT_START = 0x00
PAGE_INFO_CURRENT_END = 0x30
PAGE_INFO_CONTENTS_START = 0x30
PAGE_INFO_CONTENTS_END = 0x60
PAGE_INFO_LENGTH_START = 0x60
PAGE_INFO_LENGTH_END = 0x62
PAGE_INFO_PAGE_TYPE = 0x62
PAGE_INFO_IMI_PAGE = 0x63
PAGE_INFO_RESERVED_START = 0x64
PAGE_INFO_RESERVED_END = 0x68
PAGE_INFO_GPA_START = 0x68
PAGE_INFO_GPA_END = 0x70

# current, contents, length, page_type, imi_page, reserved, gpa
_PAGE_INFO_FORMAT = "<48s48sHBBIQ"


class PageType(IntEnum):
    """PAGE_TYPE values accepted by SNP_LAUNCH_UPDATE"""
    NORMAL = 0x01
    VMSA = 0x02
    ZERO = 0x03
    UNMEASURED = 0x04
    SECRETS = 0x05
    CPUID = 0x06


# Page types that describe memory with no measured contents
ZERO_PAGE_TYPES = (PageType.ZERO, PageType.UNMEASURED, PageType.SECRETS, PageType.CPUID)


@dataclass
class PageInfo:
    """
    One PAGE_INFO record (112 bytes).

    ``current`` is the launch digest before this page is folded in and
    ``contents`` the SHA-384 of the page, or zeros for pages whose contents
    are defined by the platform.
    """
    current: bytes  # 48 bytes
    contents: bytes  # 48 bytes
    page_type: int  # 1 byte
    gpa: int  # 8 bytes
    length: int = PAGE_INFO_SIZE  # 2 bytes - always 0x70
    imi_page: int = 0  # 1 byte
    reserved: int = 0  # 4 bytes - VMPL permissions, unused at launch

    def to_bytes(self) -> bytes:
        """Pack the record into its canonical 112-byte little-endian form."""
        _check_bytes("current", self.current, DIGEST_SIZE)
        _check_bytes("contents", self.contents, DIGEST_SIZE)
        _check_int("length", self.length, 0xFFFF)
        _check_int("page_type", self.page_type, 0xFF)
        _check_int("imi_page", self.imi_page, 0xFF)
        _check_int("reserved", self.reserved, 0xFFFFFFFF)
        _check_int("gpa", self.gpa, MAX_GPA)

        return struct.pack(
            _PAGE_INFO_FORMAT,
            bytes(self.current),
            bytes(self.contents),
            self.length,
            self.page_type,
            self.imi_page,
            self.reserved,
            self.gpa,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "PageInfo":
        """Parse a 112-byte PAGE_INFO record."""
        if len(data) != PAGE_INFO_SIZE:
            raise RecordEncodingError(
                f"PAGE_INFO is 0x{len(data):x} bytes, expected 0x{PAGE_INFO_SIZE:x}"
            )
        current, contents, length, page_type, imi_page, reserved, gpa = struct.unpack(
            _PAGE_INFO_FORMAT, data
        )
        return cls(
            current=current,
            contents=contents,
            page_type=page_type,
            gpa=gpa,
            length=length,
            imi_page=imi_page,
            reserved=reserved,
        )

    def __str__(self) -> str:
        try:
            type_name = PageType(self.page_type).name
        except ValueError:
            type_name = f"0x{self.page_type:02x}"
        return (
            f"PageInfo(gpa=0x{self.gpa:x}, type={type_name}, "
            f"current={bytes(self.current).hex()[:16]}..., "
            f"contents={bytes(self.contents).hex()[:16]}...)"
        )


## HELPER FUNCTIONS

def _check_bytes(name: str, value: bytes, size: int) -> None:
    if not isinstance(value, (bytes, bytearray)):
        raise RecordEncodingError(f"{name} must be bytes, got {type(value).__name__}")
    if len(value) != size:
        raise RecordEncodingError(f"{name} is {len(value)} bytes, expected {size}")

def _check_int(name: str, value: int, maximum: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise RecordEncodingError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value > maximum:
        raise RecordEncodingError(f"{name} 0x{value:x} out of range [0, 0x{maximum:x}]")
