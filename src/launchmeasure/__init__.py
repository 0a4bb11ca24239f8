from .measurement import (
    ConfigurationError,
    Measurement,
    MeasurementError,
    MeasurementMismatchError,
    Profile,
    ProviderError,
    TemplateStore,
    get_profile,
    measure,
)
from .provider import BlobSource, FileBlobSource, KrunfwBlobSource, StaticBlobSource

__version__ = "0.1.0"

__all__ = [
    'measure',
    'get_profile',
    'Profile',
    'TemplateStore',
    'Measurement',
    'BlobSource',
    'StaticBlobSource',
    'FileBlobSource',
    'KrunfwBlobSource',
    'MeasurementError',
    'ProviderError',
    'ConfigurationError',
    'MeasurementMismatchError',
]
