"""
WimDeploy - Windows image deployment onto pre-partitioned disks.

Resolves an ISO or WIM source, applies an image index to the OS partition,
customizes the offline image, writes boot files and registers recovery images.
"""

__version__ = "1.0.0"
__author__ = "WimDeploy Team"

from wimdeploy.core.config import WimDeployConfig
from wimdeploy.core.session import Session

__all__ = ["WimDeployConfig", "Session", "__version__"]
