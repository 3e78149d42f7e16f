"""
WimDeploy Windows Platform Backend.

Implements imaging operations using Windows tools:
- PowerShell Storage cmdlets for disks, partitions and disk images
- DISM for image apply, mount and servicing
- BCDBoot/BCDEdit for boot configuration
- ReAgentC for recovery registration
"""

from wimdeploy.platform.windows.backend import WindowsBackend
from wimdeploy.platform.windows.parsers import (
    parse_partitions,
    parse_powershell_json,
)

__all__ = [
    "WindowsBackend",
    "parse_partitions",
    "parse_powershell_json",
]
