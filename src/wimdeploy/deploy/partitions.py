"""
Partition classification and drive-letter lifecycle.

Roles are derived from partition types only. The rules, in order:

* System is the first ``System`` partition, Windows the first ``Basic`` one.
* Without either, Windows and System are both the first ``IFS`` partition
  (legacy single-partition BIOS layout). A missing Windows falls back to the
  first IFS partition, a missing System to the Windows partition.
* Recovery tools live on the first ``Recovery`` partition. A recovery image
  partition exists only when there are two or more, and it is the last one.
  This is an ordinal tie-break; nothing on disk marks which is which.
* Layout is UEFI when distinct System and Windows partitions exist, BIOS
  otherwise, and WindowsToGo whenever a FAT32 partition is present. A
  WindowsToGo disk without a System partition boots from its FAT32 partition.
"""

from __future__ import annotations

from typing import Any

from wimdeploy.core.exceptions import DeployError, NoOSPartition
from wimdeploy.core.logging import get_logger
from wimdeploy.core.models import DiskLayout, Partition, PartitionMap, PartitionType
from wimdeploy.platform.base import ImagingBackend

logger = get_logger(__name__)


def _first(partitions: list[Partition], part_type: PartitionType) -> Partition | None:
    return next((p for p in partitions if p.partition_type == part_type), None)


def classify_partitions(disk_number: int, partitions: list[Partition]) -> PartitionMap:
    """Assign deployment roles to the partitions of a disk."""
    system = _first(partitions, PartitionType.SYSTEM)
    windows = _first(partitions, PartitionType.BASIC)
    first_ifs = _first(partitions, PartitionType.IFS)

    distinct_pair = system is not None and windows is not None

    if windows is None:
        windows = first_ifs
    if windows is None:
        raise NoOSPartition(
            "No Basic or IFS partition found to receive the operating system",
            disk_number,
        )
    if system is None:
        system = windows

    fat32 = _first(partitions, PartitionType.FAT32)
    if fat32 is not None:
        layout = DiskLayout.WINDOWS_TO_GO
        if system is windows:
            system = fat32
    elif distinct_pair:
        layout = DiskLayout.UEFI
    else:
        layout = DiskLayout.BIOS

    recovery = [p for p in partitions if p.partition_type == PartitionType.RECOVERY]
    recovery_tools = recovery[0] if recovery else None
    recovery_image = recovery[-1] if len(recovery) > 1 else None

    partition_map = PartitionMap(
        disk_number=disk_number,
        partitions=partitions,
        layout=layout,
        windows=windows,
        system=system,
        recovery_tools=recovery_tools,
        recovery_image=recovery_image,
    )

    logger.info(
        "Classified partitions",
        disk_number=disk_number,
        layout=layout.value,
        system=system.number,
        windows=windows.number,
        recovery_tools=recovery_tools.number if recovery_tools else None,
        recovery_image=recovery_image.number if recovery_image else None,
    )
    return partition_map


class DriveLetterScope:
    """
    Assigns temporary drive letters for the duration of a ``with`` block.

    Every non-Reserved partition without a letter gets one on entry. On exit,
    whatever the outcome, the added letters are removed again except on Basic
    and IFS partitions, whose letter stays so the applied OS remains reachable.
    """

    def __init__(self, backend: ImagingBackend, partition_map: PartitionMap) -> None:
        self.backend = backend
        self.partition_map = partition_map
        self.assigned: list[tuple[Partition, str]] = []
        self.removed: list[tuple[Partition, str]] = []

    def __enter__(self) -> DriveLetterScope:
        try:
            for partition in self.partition_map.partitions:
                if partition.is_reserved or partition.drive_letter:
                    continue
                letter = self.backend.assign_drive_letter(
                    partition.disk_number, partition.number
                )
                partition.drive_letter = letter
                self.assigned.append((partition, letter))
                logger.debug(
                    "Assigned drive letter",
                    disk_number=partition.disk_number,
                    partition=partition.number,
                    letter=letter,
                )
        except BaseException:
            self.release()
            raise
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()

    def release(self) -> None:
        """Remove the letters added on entry. Failures are logged, never raised."""
        while self.assigned:
            partition, letter = self.assigned.pop()
            if partition.keeps_drive_letter:
                logger.info(
                    "Leaving drive letter assigned",
                    partition=partition.number,
                    letter=letter,
                )
                continue
            try:
                self.backend.remove_drive_letter(partition.disk_number, partition.number, letter)
            except DeployError as e:
                logger.error(
                    "Failed to remove drive letter",
                    partition=partition.number,
                    letter=letter,
                    error=str(e),
                )
                continue
            partition.drive_letter = None
            self.removed.append((partition, letter))
