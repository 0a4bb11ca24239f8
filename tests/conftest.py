"""
Shared fixtures.

``SnpPageInfo`` is a second, independent description of the PAGE_INFO record
(a packed ctypes structure, the way IGVM tooling builds it). Tests hash it
directly to check the struct-based encoder and the full digest chain.
"""

import ctypes
import hashlib

import pytest


class SnpPageInfo(ctypes.LittleEndianStructure):
    _pack_ = 1
    _fields_ = [
        ("digest_current", ctypes.c_uint8 * 48),
        ("contents", ctypes.c_uint8 * 48),
        ("length", ctypes.c_uint16),
        ("page_type", ctypes.c_uint8),
        ("imi_page", ctypes.c_uint8),
        ("vmpl_permissions", ctypes.c_uint32),
        ("gpa", ctypes.c_uint64),
    ]


def page_info_bytes(current: bytes, contents: bytes, page_type: int, gpa: int) -> bytes:
    info = SnpPageInfo()
    info.digest_current = (ctypes.c_uint8 * 48)(*current)
    info.contents = (ctypes.c_uint8 * 48)(*contents)
    info.length = ctypes.sizeof(SnpPageInfo)
    info.page_type = int(page_type)
    info.imi_page = 0
    info.vmpl_permissions = 0
    info.gpa = int(gpa)
    return bytes(info)


def reference_chain(steps) -> bytes:
    """
    Fold *steps* with the ctypes record.

    Each step is ("content", blob, base), ("zero", base, size, page_type)
    or ("vmsa", page, gpa).
    """
    digest = bytes(48)
    for step in steps:
        if step[0] == "content":
            _, blob, base = step
            for offset in range(0, len(blob), 4096):
                contents = hashlib.sha384(blob[offset:offset + 4096]).digest()
                digest = hashlib.sha384(page_info_bytes(digest, contents, 1, base + offset)).digest()
        elif step[0] == "zero":
            _, base, size, page_type = step
            for offset in range(0, size, 4096):
                digest = hashlib.sha384(page_info_bytes(digest, bytes(48), page_type, base + offset)).digest()
        elif step[0] == "vmsa":
            _, page, gpa = step
            contents = hashlib.sha384(page).digest()
            digest = hashlib.sha384(page_info_bytes(digest, contents, 2, gpa)).digest()
        else:
            raise ValueError(f"unknown step {step[0]}")
    return digest


def make_blob(size: int, seed: int) -> bytes:
    """Deterministic non-repeating bytes."""
    out = bytearray()
    counter = 0
    while len(out) < size:
        out += hashlib.sha256(seed.to_bytes(4, "little") + counter.to_bytes(8, "little")).digest()
        counter += 1
    return bytes(out[:size])



@pytest.fixture
def blobs():
    """Firmware, kernel and initrd with partial trailing pages."""
    return {
        "firmware": make_blob(3 * 4096 + 512, seed=1),
        "kernel": make_blob(5 * 4096 + 100, seed=2),
        "initrd": make_blob(2 * 4096 + 1, seed=3),
    }


@pytest.fixture
def reference():
    return reference_chain


@pytest.fixture
def record_bytes():
    return page_info_bytes


@pytest.fixture
def blob_factory():
    return make_blob


@pytest.fixture
def template_dir(tmp_path):
    """A template directory holding the krun-bsp-v1 blueprint asset."""
    path = tmp_path / "templates"
    path.mkdir()
    (path / "krun-bsp-v1.bin").write_bytes(make_blob(4096, seed=100))
    return path


@pytest.fixture
def templates(template_dir):
    from launchmeasure.measurement.vmsa import TemplateStore
    return TemplateStore(str(template_dir))
