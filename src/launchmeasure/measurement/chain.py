"""
SEV-SNP launch digest chaining.

Each fold consumes the running 48-byte digest and returns the next one. The
functions are pure: the caller owns the digest and threads it through every
call in profile order.
"""

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from .abi_page_info import PageInfo, PageType
from .types import (
    DIGEST_SIZE,
    PAGE_SIZE,
    VMSA_GPA,
    ConfigurationError,
    RecordEncodingError,
)

logger = logging.getLogger(__name__)

ZERO_DIGEST = b"\x00" * DIGEST_SIZE


def sha384(data: bytes) -> bytes:
    return hashlib.sha384(data).digest()


def initial_digest() -> bytes:
    """Digest state before the first page is measured."""
    return ZERO_DIGEST


def fold_page(state: bytes, contents: bytes, gpa: int, page_type: int) -> bytes:
    """Fold a single PAGE_INFO record into the running digest."""
    if len(state) != DIGEST_SIZE:
        raise RecordEncodingError(f"Launch digest is {len(state)} bytes, expected {DIGEST_SIZE}")

    info = PageInfo(current=state, contents=contents, page_type=page_type, gpa=gpa)
    return sha384(info.to_bytes())


def page_digests(blob: bytes, workers: Optional[int] = None) -> List[bytes]:
    """
    Returns the SHA-384 of every 4 KiB page of *blob*, in offset order.

    The final page is hashed at its actual length, without padding. With
    ``workers > 1`` the pages are hashed on a thread pool; results are still
    returned in offset order.
    """
    view = memoryview(blob)
    pages = [view[offset:offset + PAGE_SIZE] for offset in range(0, len(view), PAGE_SIZE)]

    if workers is None or workers <= 1 or len(pages) <= 1:
        return [sha384(page) for page in pages]

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(sha384, pages))


def fold_content_region(blob: bytes, base_address: int, state: bytes,
                        workers: Optional[int] = None) -> bytes:
    """
    Measure *blob* as NORMAL pages mapped at *base_address*.

    An empty blob leaves the digest unchanged.
    """
    digests = page_digests(blob, workers)
    logger.debug(f"Measuring {len(blob)} bytes ({len(digests)} pages) at 0x{base_address:x}")

    for index, contents in enumerate(digests):
        state = fold_page(state, contents, base_address + index * PAGE_SIZE, PageType.NORMAL)
    return state


def fold_zero_region(base_address: int, size: int, page_type: int, state: bytes) -> bytes:
    """
    Measure *size* bytes at *base_address* as pages of *page_type* whose
    contents are not hashed (the PAGE_INFO contents field stays zero).
    """
    if size % PAGE_SIZE != 0:
        raise ConfigurationError(
            f"Region at 0x{base_address:x} has size 0x{size:x}, not a multiple of 0x{PAGE_SIZE:x}"
        )
    logger.debug(f"Measuring 0x{size:x} bytes of page type {int(page_type)} at 0x{base_address:x}")

    for offset in range(0, size, PAGE_SIZE):
        state = fold_page(state, ZERO_DIGEST, base_address + offset, page_type)
    return state


def fold_cpu_state(state: bytes, template: bytes, gpa: int = VMSA_GPA) -> bytes:
    """Measure the initial VMSA page described by *template*."""
    if len(template) != PAGE_SIZE:
        raise ConfigurationError(f"VMSA template is {len(template)} bytes, expected {PAGE_SIZE}")
    logger.debug(f"Measuring VMSA page at 0x{gpa:x}")

    return fold_page(state, sha384(template), gpa, PageType.VMSA)
