"""
WimDeploy Platform Abstraction Layer.

Provides the platform implementation of the imaging backend.
"""

from __future__ import annotations

import platform
from typing import TYPE_CHECKING

from wimdeploy.platform.base import CommandResult, ImagingBackend

if TYPE_CHECKING:
    from wimdeploy.core.config import ImagingConfig


def get_platform_backend(config: ImagingConfig | None = None) -> ImagingBackend:
    """Get the imaging backend for the current OS."""
    system = platform.system().lower()

    if system == "windows":
        from wimdeploy.platform.windows import WindowsBackend

        return WindowsBackend(config)

    raise RuntimeError(f"Unsupported platform: {system}. Windows imaging tools are required.")


__all__ = [
    "CommandResult",
    "ImagingBackend",
    "get_platform_backend",
]
