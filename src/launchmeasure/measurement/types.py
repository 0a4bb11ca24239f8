"""
Shared types, errors, and constants for launch measurement.

This module has no intra-package dependencies, so any module
can import from it without risk of circular imports.
"""

from dataclasses import dataclass
from typing import Union


# =============================================================================
# Constants
# =============================================================================

PAGE_SIZE = 0x1000       # 4096 bytes
DIGEST_SIZE = 0x30       # SHA-384 (bytes)
PAGE_INFO_SIZE = 0x70    # 112 bytes

# Guest-physical address that tags the VMSA page. It lies above any RAM the
# guest can map, so it never collides with a measured page.
VMSA_GPA = 0xFFFFFFFFF000

MAX_GPA = (1 << 64) - 1


# =============================================================================
# Errors
# =============================================================================

class MeasurementError(Exception):
    """Base class for launch measurement errors"""
    pass

class ProviderError(MeasurementError):
    """Raised when a firmware provider cannot supply a blob"""
    pass

class ConfigurationError(MeasurementError):
    """Raised when a profile or CPU-state template is invalid"""
    pass

class RecordEncodingError(MeasurementError):
    """Raised when a page-info record cannot be encoded"""
    pass

class MeasurementMismatchError(MeasurementError):
    """Raised when a computed measurement differs from the expected one"""
    pass


# =============================================================================
# Data types
# =============================================================================

def parse_digest(value: Union[str, bytes]) -> bytes:
    """Normalize a 48-byte digest given as raw bytes or a hex string."""
    if isinstance(value, (bytes, bytearray)):
        digest = bytes(value)
    else:
        text = value.strip().lower()
        if text.startswith("0x"):
            text = text[2:]
        try:
            digest = bytes.fromhex(text)
        except ValueError as e:
            raise ValueError(f"Invalid hex digest: {value!r}") from e

    if len(digest) != DIGEST_SIZE:
        raise ValueError(f"Digest is {len(digest)} bytes, expected {DIGEST_SIZE}")
    return digest


@dataclass
class Measurement:
    """Represents a computed launch measurement"""
    digest: bytes
    profile: str
    template: str
    records: int

    def hex(self) -> str:
        return self.digest.hex()

    def assert_equal(self, expected: Union[str, bytes]) -> None:
        """
        Compares this measurement with an expected digest (bytes or hex).
        Raises MeasurementMismatchError if they don't match.
        """
        expected_digest = parse_digest(expected)
        if expected_digest != self.digest:
            raise MeasurementMismatchError(
                f"Measurement mismatch: expected {expected_digest.hex()}, got {self.hex()}"
            )

    def to_dict(self) -> dict:
        return {
            "measurement": self.hex(),
            "profile": self.profile,
            "template": self.template,
            "records": self.records,
        }

    def __str__(self) -> str:
        return f"Measurement(profile={self.profile}, template={self.template}, digest={self.hex()[:16]}...)"
