"""
Runtime settings.

Paths default to the platform's user directories and can be overridden
through environment variables.
"""

import os
from typing import Optional

import platformdirs

APP_NAME = "launch-measure"

ENV_CACHE_DIR = "LAUNCH_MEASURE_CACHE_DIR"
ENV_TEMPLATE_DIR = "LAUNCH_MEASURE_TEMPLATE_DIR"
ENV_PROFILE_DIR = "LAUNCH_MEASURE_PROFILE_DIR"
ENV_WORKERS = "LAUNCH_MEASURE_WORKERS"


def cache_dir() -> str:
    """Directory for downloaded firmware artifacts."""
    return os.environ.get(ENV_CACHE_DIR) or platformdirs.user_cache_dir(APP_NAME, APP_NAME)


def template_dir() -> str:
    """Directory searched for ``<id>.bin`` CPU-state templates."""
    return os.environ.get(ENV_TEMPLATE_DIR) or os.path.join(
        platformdirs.user_data_dir(APP_NAME, APP_NAME), "templates"
    )


def profile_dir() -> str:
    """Directory searched for ``<name>.yml`` measurement profiles."""
    return os.environ.get(ENV_PROFILE_DIR) or os.path.join(
        platformdirs.user_config_dir(APP_NAME, APP_NAME), "profiles"
    )


def default_workers() -> Optional[int]:
    """Page hashing threads; None hashes on the calling thread."""
    value = os.environ.get(ENV_WORKERS)
    if not value:
        return None
    try:
        workers = int(value)
    except ValueError as e:
        raise ValueError(f"{ENV_WORKERS} must be an integer, got {value!r}") from e
    if workers < 1:
        raise ValueError(f"{ENV_WORKERS} must be at least 1, got {workers}")
    return workers
