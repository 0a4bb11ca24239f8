from .abi_page_info import PageInfo, PageType
from .chain import (
    fold_content_region,
    fold_cpu_state,
    fold_zero_region,
    initial_digest,
    page_digests,
)
from .measure import measure
from .profile import (
    BUILTIN_PROFILES,
    DEFAULT_PROFILE,
    ContentRegion,
    CpuStateRegion,
    Profile,
    ZeroRegion,
    get_profile,
    list_profiles,
    load_profile,
)
from .report import report_measurement
from .types import (
    PAGE_SIZE,
    VMSA_GPA,
    ConfigurationError,
    Measurement,
    MeasurementError,
    MeasurementMismatchError,
    ProviderError,
    RecordEncodingError,
)
from .vmsa import TemplateStore, VmsaRegisters, build_vmsa_page

__all__ = [
    # Records
    'PageInfo',
    'PageType',
    # Chain
    'initial_digest',
    'page_digests',
    'fold_content_region',
    'fold_zero_region',
    'fold_cpu_state',
    # Profiles
    'Profile',
    'ContentRegion',
    'ZeroRegion',
    'CpuStateRegion',
    'BUILTIN_PROFILES',
    'DEFAULT_PROFILE',
    'get_profile',
    'list_profiles',
    'load_profile',
    # CPU state
    'TemplateStore',
    'VmsaRegisters',
    'build_vmsa_page',
    # Driver
    'measure',
    'report_measurement',
    'Measurement',
    'PAGE_SIZE',
    'VMSA_GPA',
    # Errors
    'MeasurementError',
    'ProviderError',
    'ConfigurationError',
    'RecordEncodingError',
    'MeasurementMismatchError',
]
