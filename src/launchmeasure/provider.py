"""
Firmware providers.

The measurement engine never locates firmware itself; it asks a BlobSource
for the boot firmware, the kernel with its guest load address, and the
initrd. Any failure to supply a blob is fatal before measuring starts.
"""

import ctypes
import ctypes.util
import hashlib
import logging
import os
import posixpath
import shutil
import urllib.parse
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import requests

from .measurement.types import ProviderError

logger = logging.getLogger(__name__)

KRUNFW_LIBRARY = "krunfw-sev"


class BlobSource(ABC):
    """Supplies the images measured into the guest"""

    @abstractmethod
    def firmware(self) -> bytes:
        """Boot firmware image."""

    @abstractmethod
    def kernel(self) -> Tuple[bytes, int]:
        """Kernel image and its guest-physical load address."""

    @abstractmethod
    def initrd(self) -> bytes:
        """Initial ramdisk image."""


class StaticBlobSource(BlobSource):
    """Serves blobs that are already in memory"""

    def __init__(self, firmware: bytes, kernel: bytes, kernel_load_address: int, initrd: bytes):
        self._firmware = firmware
        self._kernel = kernel
        self._kernel_load_address = kernel_load_address
        self._initrd = initrd

    def firmware(self) -> bytes:
        return self._firmware

    def kernel(self) -> Tuple[bytes, int]:
        return self._kernel, self._kernel_load_address

    def initrd(self) -> bytes:
        return self._initrd


class FileBlobSource(BlobSource):
    """Reads blobs from files on disk"""

    def __init__(self, firmware_path: str, kernel_path: str, kernel_load_address: int, initrd_path: str):
        self.firmware_path = firmware_path
        self.kernel_path = kernel_path
        self.kernel_load_address = kernel_load_address
        self.initrd_path = initrd_path

    @staticmethod
    def _read(name: str, path: str) -> bytes:
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise ProviderError(f"Failed to read {name} image {path}: {e}") from e

    def firmware(self) -> bytes:
        return self._read("firmware", self.firmware_path)

    def kernel(self) -> Tuple[bytes, int]:
        return self._read("kernel", self.kernel_path), self.kernel_load_address

    def initrd(self) -> bytes:
        return self._read("initrd", self.initrd_path)


class KrunfwBlobSource(BlobSource):
    """
    Reads the bundled qboot, kernel and initrd out of a libkrunfw shared
    library, the way libkrun itself obtains them.
    """

    def __init__(self, library_path: Optional[str] = None):
        path = library_path or ctypes.util.find_library(KRUNFW_LIBRARY)
        if not path:
            raise ProviderError(f"Could not locate lib{KRUNFW_LIBRARY}; pass its path explicitly")
        try:
            self._lib = ctypes.CDLL(path)
        except OSError as e:
            raise ProviderError(f"Failed to load {path}: {e}") from e
        self.library_path = path

        try:
            for name in ("krunfw_get_qboot", "krunfw_get_initrd"):
                func = getattr(self._lib, name)
                func.restype = ctypes.c_void_p
                func.argtypes = [ctypes.POINTER(ctypes.c_size_t)]
            self._lib.krunfw_get_kernel.restype = ctypes.c_void_p
            self._lib.krunfw_get_kernel.argtypes = [
                ctypes.POINTER(ctypes.c_uint64),
                ctypes.POINTER(ctypes.c_size_t),
            ]
        except AttributeError as e:
            raise ProviderError(f"{path} is not a libkrunfw library: {e}") from e

    def _copy(self, name: str, address: Optional[int], size: ctypes.c_size_t) -> bytes:
        if not address:
            raise ProviderError(f"lib{KRUNFW_LIBRARY} returned no {name} image")
        return ctypes.string_at(address, size.value)

    def firmware(self) -> bytes:
        size = ctypes.c_size_t(0)
        address = self._lib.krunfw_get_qboot(ctypes.byref(size))
        return self._copy("firmware", address, size)

    def kernel(self) -> Tuple[bytes, int]:
        size = ctypes.c_size_t(0)
        load_address = ctypes.c_uint64(0)
        address = self._lib.krunfw_get_kernel(ctypes.byref(load_address), ctypes.byref(size))
        return self._copy("kernel", address, size), load_address.value

    def initrd(self) -> bytes:
        size = ctypes.c_size_t(0)
        address = self._lib.krunfw_get_initrd(ctypes.byref(size))
        return self._copy("initrd", address, size)


def sha256sum(filename: str) -> str:
    sha256_hash = hashlib.sha256()

    with open(filename, 'rb') as f:
        for chunk in iter(lambda: f.read(4096), b''):
            sha256_hash.update(chunk)

    return sha256_hash.hexdigest()


def fetch_blob(url: str, cache_dir: str, sha256: Optional[str] = None, timeout: int = 60) -> str:
    """
    Download *url* into *cache_dir* and return the local path.

    A cached copy is reused. When *sha256* is given the file must match it;
    a mismatching cached copy is discarded and fetched again.

    Raises:
        ProviderError: If the download fails or the digest does not match
    """
    file_name = posixpath.basename(urllib.parse.urlparse(url).path)
    if not file_name:
        raise ProviderError(f"Cannot derive a file name from {url}")
    file_path = os.path.join(cache_dir, file_name)

    if os.path.exists(file_path):
        if sha256 is None or sha256sum(file_path) == sha256.lower():
            logger.info(f"Using cached file {file_path}")
            return file_path
        logger.warning(f"Cached file {file_path} does not match expected digest, fetching again")
        os.remove(file_path)

    os.makedirs(cache_dir, exist_ok=True)

    logger.info(f"Fetching {url}...")
    partial_path = file_path + ".part"
    try:
        with requests.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            with open(partial_path, 'wb') as out_file:
                shutil.copyfileobj(response.raw, out_file)
    except (requests.RequestException, OSError) as e:
        if os.path.exists(partial_path):
            os.remove(partial_path)
        raise ProviderError(f"Failed to fetch {url}: {e}") from e

    if sha256 is not None:
        actual = sha256sum(partial_path)
        if actual != sha256.lower():
            os.remove(partial_path)
            raise ProviderError(f"Digest mismatch for {url}: expected {sha256.lower()}, got {actual}")

    os.replace(partial_path, file_path)
    return file_path
