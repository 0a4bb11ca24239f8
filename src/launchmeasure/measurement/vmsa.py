"""
Initial vCPU save area (VMSA) templates.

The VMSA page is measured as the last launch record. Its contents are a
per-platform blueprint published with the VMM, installed in a template
directory as a raw 4096-byte ``<id>.bin`` file.

The ``synthetic-*`` templates are generated from reset-vector register
values. They never match a real VMM's blueprint and are meant for tests and
for experimenting with profiles.
"""

import logging
import os
import re
import struct
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .types import PAGE_SIZE, ConfigurationError

logger = logging.getLogger(__name__)

# =============================================================================
# Save area offsets (AMD APM vol. 2, SEV-ES save area)
# =============================================================================

VMSA_ES = 0x000
VMSA_CS = 0x010
VMSA_SS = 0x020
VMSA_DS = 0x030
VMSA_FS = 0x040
VMSA_GS = 0x050
VMSA_GDTR = 0x060
VMSA_LDTR = 0x070
VMSA_IDTR = 0x080
VMSA_TR = 0x090
VMSA_VMPL = 0x0CA
VMSA_CPL = 0x0CB
VMSA_EFER = 0x0D0
VMSA_CR4 = 0x148
VMSA_CR3 = 0x150
VMSA_CR0 = 0x158
VMSA_DR7 = 0x160
VMSA_DR6 = 0x168
VMSA_RFLAGS = 0x170
VMSA_RIP = 0x178
VMSA_RSP = 0x1D8
VMSA_RAX = 0x1F8
VMSA_G_PAT = 0x268
VMSA_RDX = 0x310
VMSA_SEV_FEATURES = 0x3B0
VMSA_XCR0 = 0x3E8
VMSA_MXCSR = 0x408
VMSA_X87_FCW = 0x410


# selector, attrib, limit, base
_SEGMENT_FORMAT = "<HHIQ"

_TEMPLATE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@dataclass
class Segment:
    """VMCB segment register (16 bytes)"""
    selector: int = 0
    attrib: int = 0
    limit: int = 0xFFFF
    base: int = 0


def cpu_signature(family: int, model: int, stepping: int) -> int:
    """Encode family/model/stepping the way CPUID Fn0000_0001_EAX reports them."""
    if family > 0xF:
        family_low = 0xF
        family_high = (family - 0xF) & 0xFF
    else:
        family_low = family
        family_high = 0
    return (
        (family_high << 20)
        | (((model >> 4) & 0xF) << 16)
        | (family_low << 8)
        | ((model & 0xF) << 4)
        | (stepping & 0xF)
    )


@dataclass
class VmsaRegisters:
    """Register state of a vCPU at the x86 reset vector"""
    rip: int = 0xFFF0
    cs: Segment = field(default_factory=lambda: Segment(selector=0xF000, attrib=0x9B, base=0xFFFF0000))
    data_segment_attrib: int = 0x93
    gdtr: Segment = field(default_factory=Segment)
    idtr: Segment = field(default_factory=Segment)
    ldtr: Segment = field(default_factory=lambda: Segment(attrib=0x82))
    tr: Segment = field(default_factory=lambda: Segment(attrib=0x8B))
    efer: int = 0x1000  # SVME
    cr0: int = 0x10
    cr4: int = 0x40  # MCE
    dr6: int = 0xFFFF0FF0
    dr7: int = 0x400
    rflags: int = 0x2
    g_pat: int = 0x0007040600070406
    rdx: int = 0  # CPUID signature at reset
    sev_features: int = 0x1  # SNPActive
    xcr0: int = 0x1
    mxcsr: int = 0x1F80
    x87_fcw: int = 0x37F

    @classmethod
    def reset_vector(cls, reset_address: int, signature: int) -> "VmsaRegisters":
        """Register state for a BSP starting at *reset_address* (e.g. 0xfffffff0)."""
        return cls(
            rip=reset_address & 0xFFFF,
            cs=Segment(selector=0xF000, attrib=0x9B, base=reset_address & 0xFFFF0000),
            rdx=signature,
        )


def build_vmsa_page(regs: VmsaRegisters) -> bytes:
    """Pack *regs* into a 4096-byte VMSA page."""
    page = bytearray(PAGE_SIZE)

    data_segment = Segment(attrib=regs.data_segment_attrib)
    for offset, seg in (
        (VMSA_ES, data_segment),
        (VMSA_CS, regs.cs),
        (VMSA_SS, data_segment),
        (VMSA_DS, data_segment),
        (VMSA_FS, data_segment),
        (VMSA_GS, data_segment),
        (VMSA_GDTR, regs.gdtr),
        (VMSA_LDTR, regs.ldtr),
        (VMSA_IDTR, regs.idtr),
        (VMSA_TR, regs.tr),
    ):
        struct.pack_into(_SEGMENT_FORMAT, page, offset, seg.selector, seg.attrib, seg.limit, seg.base)

    for offset, value in (
        (VMSA_EFER, regs.efer),
        (VMSA_CR4, regs.cr4),
        (VMSA_CR0, regs.cr0),
        (VMSA_DR7, regs.dr7),
        (VMSA_DR6, regs.dr6),
        (VMSA_RFLAGS, regs.rflags),
        (VMSA_RIP, regs.rip),
        (VMSA_G_PAT, regs.g_pat),
        (VMSA_RDX, regs.rdx),
        (VMSA_SEV_FEATURES, regs.sev_features),
        (VMSA_XCR0, regs.xcr0),
    ):
        struct.pack_into("<Q", page, offset, value)

    struct.pack_into("<I", page, VMSA_MXCSR, regs.mxcsr)
    struct.pack_into("<H", page, VMSA_X87_FCW, regs.x87_fcw)
    return bytes(page)


# Milan: family 0x19 model 0x01 stepping 1, Genoa: family 0x19 model 0x11 stepping 0
BUILTIN_TEMPLATES: Dict[str, VmsaRegisters] = {
    "synthetic-bsp-milan": VmsaRegisters.reset_vector(0xFFFFFFF0, cpu_signature(0x19, 0x01, 1)),
    "synthetic-bsp-genoa": VmsaRegisters.reset_vector(0xFFFFFFF0, cpu_signature(0x19, 0x11, 0)),
}


class TemplateStore:
    """Looks up VMSA templates by id: synthetic built-ins first, then *template_dir*."""

    def __init__(self, template_dir: Optional[str] = None,
                 builtins: Optional[Dict[str, VmsaRegisters]] = None):
        self.template_dir = template_dir
        self.builtins = BUILTIN_TEMPLATES if builtins is None else builtins
        self._cache: Dict[str, bytes] = {}

    def _template_path(self, template_id: str) -> Optional[str]:
        if not self.template_dir:
            return None
        return os.path.join(self.template_dir, f"{template_id}.bin")

    def ids(self) -> List[str]:
        found = set(self.builtins)
        if self.template_dir and os.path.isdir(self.template_dir):
            for name in os.listdir(self.template_dir):
                stem, ext = os.path.splitext(name)
                if ext == ".bin" and _TEMPLATE_ID_RE.match(stem):
                    found.add(stem)
        return sorted(found)

    def is_synthetic(self, template_id: str) -> bool:
        """True if *template_id* is generated here rather than read from a file."""
        return template_id in self.builtins

    def has(self, template_id: str) -> bool:
        if template_id in self.builtins:
            return True
        path = self._template_path(template_id)
        return bool(_TEMPLATE_ID_RE.match(template_id)) and path is not None and os.path.isfile(path)

    def get(self, template_id: str) -> bytes:
        """
        Returns the 4096-byte VMSA page for *template_id*.

        Raises:
            ConfigurationError: If the id is unknown or the file is malformed
        """
        if template_id in self._cache:
            return self._cache[template_id]

        if not _TEMPLATE_ID_RE.match(template_id):
            raise ConfigurationError(f"Invalid CPU-state template id: {template_id!r}")

        if template_id in self.builtins:
            page = build_vmsa_page(self.builtins[template_id])
        else:
            path = self._template_path(template_id)
            if path is None or not os.path.isfile(path):
                raise ConfigurationError(
                    f"Unknown CPU-state template {template_id!r}: install {template_id}.bin "
                    f"in {self.template_dir or 'a template directory'}. Available: {self.ids()}"
                )
            try:
                with open(path, "rb") as f:
                    page = f.read()
            except OSError as e:
                raise ConfigurationError(f"Failed to read CPU-state template {path}: {e}") from e
            if len(page) != PAGE_SIZE:
                raise ConfigurationError(
                    f"CPU-state template {path} is {len(page)} bytes, expected {PAGE_SIZE}"
                )
            logger.debug(f"Loaded CPU-state template {template_id} from {path}")

        self._cache[template_id] = page
        return page
