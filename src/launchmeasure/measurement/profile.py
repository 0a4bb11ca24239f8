"""
Measurement profiles.

A profile is the ordered list of regions a platform feeds to
SNP_LAUNCH_UPDATE. It is plain data so the same engine can be run against
several guest memory maps and against synthetic maps in tests.

Profile files are YAML (or JSON, which YAML accepts)::

    name: krun-sev-snp
    regions:
      - {kind: content, source: firmware, base: 0xffff0000}
      - {kind: content, source: kernel}
      - {kind: zero, base: 0x5000, size: 0x1000, page_type: secrets}
      - {kind: cpu_state, gpa: 0xfffffffff000, template: krun-bsp-v1}
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import yaml

from .abi_page_info import PageType, ZERO_PAGE_TYPES
from .types import MAX_GPA, PAGE_SIZE, VMSA_GPA, ConfigurationError

logger = logging.getLogger(__name__)

CONTENT_SOURCES = ("firmware", "kernel", "initrd")

# Sources whose provider reports a guest load address
PROVIDER_ADDRESSED = ("kernel",)


@dataclass
class ContentRegion:
    """A blob from the firmware provider, measured as NORMAL pages"""
    source: str
    base_address: Optional[int] = None  # None: use the provider's load address

    def describe(self) -> str:
        where = "provider load address" if self.base_address is None else f"0x{self.base_address:x}"
        return f"{self.source} at {where}"


@dataclass
class ZeroRegion:
    """Platform-initialized memory measured by address and type only"""
    base_address: int
    size: int
    page_type: PageType

    def __post_init__(self):
        try:
            self.page_type = PageType(self.page_type)
        except ValueError as e:
            raise ConfigurationError(f"Unknown page type {self.page_type!r}") from e

    def describe(self) -> str:
        return f"{self.page_type.name.lower()} 0x{self.size:x} bytes at 0x{self.base_address:x}"


@dataclass
class CpuStateRegion:
    """The initial VMSA page"""
    template: str
    gpa: int = VMSA_GPA

    def describe(self) -> str:
        return f"vmsa {self.template} at 0x{self.gpa:x}"


Region = Union[ContentRegion, ZeroRegion, CpuStateRegion]


@dataclass
class Profile:
    """Ordered launch regions for one deployment target"""
    name: str
    regions: List[Region]
    description: str = ""

    def validate(self) -> None:
        """
        Checks the profile before any page is measured.

        Raises:
            ConfigurationError: If the profile cannot describe a launch
        """
        if not self.regions:
            raise ConfigurationError(f"Profile {self.name!r} has no regions")

        cpu_state_indices = [i for i, r in enumerate(self.regions) if isinstance(r, CpuStateRegion)]
        if len(cpu_state_indices) != 1:
            raise ConfigurationError(
                f"Profile {self.name!r} must have exactly one cpu_state region, got {len(cpu_state_indices)}"
            )
        if cpu_state_indices[0] != len(self.regions) - 1:
            raise ConfigurationError(f"Profile {self.name!r}: cpu_state must be the last region")

        for index, region in enumerate(self.regions):
            where = f"Profile {self.name!r} region {index}"
            if isinstance(region, ContentRegion):
                if region.source not in CONTENT_SOURCES:
                    raise ConfigurationError(f"{where}: unknown source {region.source!r}")
                if region.base_address is None:
                    if region.source not in PROVIDER_ADDRESSED:
                        raise ConfigurationError(f"{where}: {region.source} needs an explicit base address")
                else:
                    _check_address(where, region.base_address)
                    if region.base_address % PAGE_SIZE:
                        raise ConfigurationError(
                            f"{where}: base 0x{region.base_address:x} is not aligned to 0x{PAGE_SIZE:x}"
                        )
            elif isinstance(region, ZeroRegion):
                _check_address(where, region.base_address)
                if region.page_type not in ZERO_PAGE_TYPES:
                    raise ConfigurationError(
                        f"{where}: page type {region.page_type!r} cannot describe a zero region"
                    )
                if region.size <= 0:
                    raise ConfigurationError(f"{where}: size must be positive, got {region.size}")
                if region.size % PAGE_SIZE or region.base_address % PAGE_SIZE:
                    raise ConfigurationError(
                        f"{where}: 0x{region.base_address:x}+0x{region.size:x} is not aligned to 0x{PAGE_SIZE:x}"
                    )
                _check_address(where, region.base_address + region.size - 1)
            elif isinstance(region, CpuStateRegion):
                _check_address(where, region.gpa)
                if region.gpa % PAGE_SIZE:
                    raise ConfigurationError(f"{where}: VMSA gpa 0x{region.gpa:x} is not page aligned")
            else:
                raise ConfigurationError(f"{where}: unsupported region {region!r}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        """Build a profile from its YAML/JSON representation."""
        if not isinstance(data, dict):
            raise ConfigurationError(f"Profile must be a mapping, got {type(data).__name__}")
        try:
            name = str(data["name"])
            raw_regions = data["regions"]
        except KeyError as e:
            raise ConfigurationError(f"Profile is missing required key {e}") from e
        if not isinstance(raw_regions, list):
            raise ConfigurationError(f"Profile {name!r}: regions must be a list")

        regions = [_region_from_dict(name, i, raw) for i, raw in enumerate(raw_regions)]
        profile = cls(name=name, regions=regions, description=str(data.get("description", "")))
        profile.validate()
        return profile

    def to_dict(self) -> Dict[str, Any]:
        regions: List[Dict[str, Any]] = []
        for region in self.regions:
            if isinstance(region, ContentRegion):
                entry: Dict[str, Any] = {"kind": "content", "source": region.source}
                if region.base_address is not None:
                    entry["base"] = region.base_address
            elif isinstance(region, ZeroRegion):
                entry = {
                    "kind": "zero",
                    "base": region.base_address,
                    "size": region.size,
                    "page_type": region.page_type.name.lower(),
                }
            else:
                entry = {"kind": "cpu_state", "gpa": region.gpa, "template": region.template}
            regions.append(entry)
        return {"name": self.name, "description": self.description, "regions": regions}


## BUILT-IN PROFILES

BUILTIN_PROFILES: Dict[str, Dict[str, Any]] = {
    # libkrun SEV-SNP guest: qboot, kernel, initrd, then the boot-time
    # structures libkrun places below 0x20000.
    "krun-sev-snp": {
        "name": "krun-sev-snp",
        "description": "libkrun SEV-SNP guest booted through qboot",
        "regions": [
            {"kind": "content", "source": "firmware", "base": 0xFFFF0000},
            {"kind": "content", "source": "kernel"},
            {"kind": "content", "source": "initrd", "base": 0xA00000},
            {"kind": "zero", "base": 0x0, "size": 0x1000, "page_type": "unmeasured"},
            {"kind": "zero", "base": 0x4000, "size": 0x1000, "page_type": "unmeasured"},
            {"kind": "zero", "base": 0x5000, "size": 0x1000, "page_type": "secrets"},
            {"kind": "zero", "base": 0x6000, "size": 0x1000, "page_type": "cpuid"},
            {"kind": "zero", "base": 0x7000, "size": 0x19000, "page_type": "unmeasured"},
            {"kind": "cpu_state", "gpa": VMSA_GPA, "template": "krun-bsp-v1"},
        ],
    },
}

DEFAULT_PROFILE = "krun-sev-snp"


def load_profile(path: str) -> Profile:
    """Load a profile from a YAML or JSON file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Failed to read profile {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse profile {path}: {e}") from e

    logger.debug(f"Loaded profile from {path}")
    return Profile.from_dict(data)


def _profile_files(profile_dir: Optional[str]) -> Dict[str, str]:
    files: Dict[str, str] = {}
    if profile_dir and os.path.isdir(profile_dir):
        for name in sorted(os.listdir(profile_dir)):
            stem, ext = os.path.splitext(name)
            if ext in (".yml", ".yaml", ".json"):
                files.setdefault(stem, os.path.join(profile_dir, name))
    return files


def get_profile(name_or_path: str, profile_dir: Optional[str] = None) -> Profile:
    """
    Resolve a profile by built-in name, by name in *profile_dir*, or by path.

    Raises:
        ConfigurationError: If no such profile exists or it is invalid
    """
    if name_or_path in BUILTIN_PROFILES:
        return Profile.from_dict(BUILTIN_PROFILES[name_or_path])

    files = _profile_files(profile_dir)
    if name_or_path in files:
        return load_profile(files[name_or_path])

    if os.path.isfile(name_or_path):
        return load_profile(name_or_path)

    raise ConfigurationError(
        f"Unknown profile {name_or_path!r}. Available: {list_profiles(profile_dir)}"
    )


def list_profiles(profile_dir: Optional[str] = None) -> List[str]:
    return sorted(set(BUILTIN_PROFILES) | set(_profile_files(profile_dir)))


## HELPER FUNCTIONS

def _parse_int(where: str, key: str, value: Any) -> int:
    """Accept ints or numeric strings such as "0xffff0000"."""
    if isinstance(value, bool):
        raise ConfigurationError(f"{where}: {key} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as e:
            raise ConfigurationError(f"{where}: {key} is not an integer: {value!r}") from e
    raise ConfigurationError(f"{where}: {key} must be an integer, got {value!r}")


def _parse_page_type(where: str, value: Any) -> PageType:
    if isinstance(value, str) and value.strip().upper() in PageType.__members__:
        return PageType[value.strip().upper()]
    try:
        return PageType(_parse_int(where, "page_type", value))
    except ValueError as e:
        raise ConfigurationError(f"{where}: unknown page type {value!r}") from e


def _region_from_dict(profile_name: str, index: int, raw: Any) -> Region:
    where = f"Profile {profile_name!r} region {index}"
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{where}: must be a mapping, got {raw!r}")

    kind = raw.get("kind")
    try:
        if kind == "content":
            base = raw.get("base")
            return ContentRegion(
                source=str(raw["source"]),
                base_address=None if base is None else _parse_int(where, "base", base),
            )
        if kind == "zero":
            return ZeroRegion(
                base_address=_parse_int(where, "base", raw["base"]),
                size=_parse_int(where, "size", raw["size"]),
                page_type=_parse_page_type(where, raw["page_type"]),
            )
        if kind == "cpu_state":
            return CpuStateRegion(
                template=str(raw["template"]),
                gpa=_parse_int(where, "gpa", raw.get("gpa", VMSA_GPA)),
            )
    except KeyError as e:
        raise ConfigurationError(f"{where}: missing required key {e}") from e

    raise ConfigurationError(f"{where}: unknown region kind {kind!r}")


def _check_address(where: str, address: int) -> None:
    if address < 0 or address > MAX_GPA:
        raise ConfigurationError(f"{where}: address 0x{address:x} is outside the guest physical range")
