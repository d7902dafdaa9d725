# SPDX-License-Identifier: MIT
"""Newsletter Sync - Consistent cached views under optimistic and bulk updates."""

from importlib.metadata import PackageNotFoundError, version


__all__: list[str] = ["__version__"]

# Get version from installed package metadata
__version__: str
try:
    __version__ = version("newsletter-sync")
except PackageNotFoundError:
    # Package is not installed, use development fallback
    __version__ = "development"
