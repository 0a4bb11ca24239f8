"""
Launch measurement orchestration.

Validates the profile, resolves the CPU-state template and fetches every
blob before the first page is folded, so a failure never leaves a partial
digest behind.
"""

import logging
from typing import Dict, Optional, Tuple

from ..provider import BlobSource
from .chain import (
    fold_content_region,
    fold_cpu_state,
    fold_zero_region,
    initial_digest,
)
from .profile import ContentRegion, CpuStateRegion, Profile, ZeroRegion
from .types import (
    MAX_GPA,
    PAGE_SIZE,
    ConfigurationError,
    Measurement,
    MeasurementError,
    ProviderError,
)
from .vmsa import TemplateStore

logger = logging.getLogger(__name__)


def fetch_blobs(source: BlobSource, profile: Profile) -> Dict[str, Tuple[bytes, Optional[int]]]:
    """
    Pull every blob the profile references from *source*.

    Returns a mapping of source name to (blob, provider load address).

    Raises:
        ProviderError: If a blob is missing or empty
    """
    wanted = {r.source for r in profile.regions if isinstance(r, ContentRegion)}
    blobs: Dict[str, Tuple[bytes, Optional[int]]] = {}

    for name in sorted(wanted):
        try:
            if name == "kernel":
                blob, load_address = source.kernel()
            elif name == "firmware":
                blob, load_address = source.firmware(), None
            else:
                blob, load_address = source.initrd(), None
        except MeasurementError:
            raise
        except Exception as e:
            raise ProviderError(f"Firmware provider failed to supply {name}: {e}") from e

        if not isinstance(blob, (bytes, bytearray, memoryview)):
            raise ProviderError(f"Firmware provider returned {type(blob).__name__} for {name}, expected bytes")
        if len(blob) == 0:
            raise ProviderError(f"Firmware provider returned an empty {name} image")
        blobs[name] = (bytes(blob), load_address)
        logger.info(f"Loaded {name}: {len(blob)} bytes")

    return blobs


def _resolve_base(region: ContentRegion, load_address: Optional[int]) -> int:
    if region.base_address is not None:
        return region.base_address
    if load_address is None:
        raise ProviderError(f"No load address available for {region.source}")
    if load_address < 0 or load_address % PAGE_SIZE:
        raise ProviderError(f"{region.source} load address 0x{load_address:x} is not page aligned")
    return load_address


def measure(profile: Profile, source: BlobSource, templates: Optional[TemplateStore] = None,
            workers: Optional[int] = None) -> Measurement:
    """
    Compute the SEV-SNP launch measurement for *profile*.

    Args:
        profile: Ordered launch regions
        source: Firmware provider
        templates: CPU-state template store; synthetic built-ins only if None
        workers: Threads used to hash content pages (sequential if None)

    Raises:
        ConfigurationError: If the profile or template is invalid
        ProviderError: If a blob cannot be supplied
    """
    templates = templates if templates is not None else TemplateStore()

    profile.validate()
    cpu_state = profile.regions[-1]
    template = templates.get(cpu_state.template)
    if templates.is_synthetic(cpu_state.template):
        logger.warning(
            f"CPU-state template {cpu_state.template} is synthetic; "
            "the measurement will not match a real launch"
        )

    blobs = fetch_blobs(source, profile)
    bases = {}
    for index, region in enumerate(profile.regions):
        if isinstance(region, ContentRegion):
            blob, load_address = blobs[region.source]
            base = _resolve_base(region, load_address)
            if base + len(blob) - 1 > MAX_GPA:
                raise ConfigurationError(
                    f"Profile {profile.name!r} region {index}: {region.source} (0x{len(blob):x} bytes) "
                    f"at 0x{base:x} runs past the guest physical range"
                )
            bases[index] = base

    logger.info(f"Measuring profile {profile.name} ({len(profile.regions)} regions)")
    digest = initial_digest()
    records = 0
    for index, region in enumerate(profile.regions):
        logger.debug(f"Region {index}: {region.describe()}")
        if isinstance(region, ContentRegion):
            blob = blobs[region.source][0]
            digest = fold_content_region(blob, bases[index], digest, workers=workers)
            records += (len(blob) + PAGE_SIZE - 1) // PAGE_SIZE
        elif isinstance(region, ZeroRegion):
            digest = fold_zero_region(region.base_address, region.size, region.page_type, digest)
            records += region.size // PAGE_SIZE
        elif isinstance(region, CpuStateRegion):
            digest = fold_cpu_state(digest, template, region.gpa)
            records += 1

    measurement = Measurement(
        digest=digest,
        profile=profile.name,
        template=cpu_state.template,
        records=records,
    )
    logger.info(f"Folded {records} records")
    return measurement
