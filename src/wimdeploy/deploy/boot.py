"""
Boot file creation for the applied image.
"""

from __future__ import annotations

from pathlib import PureWindowsPath

from wimdeploy.core.logging import get_logger
from wimdeploy.core.models import DiskLayout, PartitionMap
from wimdeploy.platform.base import ImagingBackend

logger = get_logger(__name__)

# BIOS stores pin entries to the MBR disk signature, which changes when a
# differencing disk is booted. "locate" finds the partition at boot instead.
LOCATE_FIXUPS = (
    ("{bootmgr}", "device"),
    ("{default}", "device"),
    ("{default}", "osdevice"),
)


class BootWriter:
    """Runs BCDBoot against the applied tree with layout-specific firmware flags."""

    def __init__(self, backend: ImagingBackend) -> None:
        self.backend = backend

    def firmware_flag(self, partition_map: PartitionMap) -> str | None:
        layout = partition_map.layout
        if layout == DiskLayout.UEFI:
            return "UEFI"
        if layout == DiskLayout.BIOS:
            return "BIOS"

        efi_boot_manager = partition_map.windows.root / "Windows" / "Boot" / "EFI" / "bootmgfw.efi"
        if self.backend.path_exists(efi_boot_manager):
            return "ALL"
        logger.info("No EFI boot manager in image; writing default boot files only")
        return None

    def write(self, partition_map: PartitionMap, native_boot: bool = False) -> bool:
        """Write boot files. Returns False when skipped for native boot."""
        if native_boot:
            logger.info("Native boot requested; skipping boot file creation")
            return False

        windows_dir = partition_map.windows.root / "Windows"
        system = partition_map.system
        firmware = self.firmware_flag(partition_map)

        logger.info(
            "Writing boot files",
            windows_dir=str(windows_dir),
            system_volume=system.volume,
            firmware=firmware,
        )
        self.backend.write_boot_files(windows_dir, system.volume, firmware)

        if partition_map.layout == DiskLayout.BIOS:
            self.fix_locate_entries(system.root / "boot" / "bcd")

        return True

    def fix_locate_entries(self, store: PureWindowsPath) -> None:
        for entry, element in LOCATE_FIXUPS:
            self.backend.set_boot_element(store, entry, element, "locate")
