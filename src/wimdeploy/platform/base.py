"""
WimDeploy Platform Backend Base.

Defines the narrow capability interface over the platform's privileged
imaging tools. Deployment stages talk only to this interface, so they can be
exercised against a fake backend without an elevated Windows host.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path, PureWindowsPath
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from wimdeploy.core.models import (
        DiskInfo,
        ImageIndexInfo,
        OptionalFeature,
        Partition,
    )

AnyPath = Union[str, Path, PureWindowsPath]


class CommandResult:
    """Result of a command execution."""

    def __init__(
        self,
        returncode: int,
        stdout: str,
        stderr: str,
        command: str | list[str],
        duration_seconds: float = 0.0,
    ) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.command = command
        self.duration_seconds = duration_seconds

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def __repr__(self) -> str:
        cmd = self.command if isinstance(self.command, str) else " ".join(self.command)
        return f"CommandResult(rc={self.returncode}, cmd='{cmd[:50]}...')"


class ImagingBackend(ABC):
    """Abstract base class for the privileged imaging operations."""

    @abstractmethod
    def is_admin(self) -> bool:
        """Check if running with admin privileges."""

    # ==================== Disk Inventory ====================

    @abstractmethod
    def get_disk(self, disk_number: int) -> DiskInfo | None:
        """Get a disk by number, or None if it does not exist."""

    @abstractmethod
    def get_partitions(self, disk_number: int) -> list[Partition]:
        """Enumerate the partitions of a disk in partition-number order."""

    @abstractmethod
    def assign_drive_letter(self, disk_number: int, partition_number: int) -> str:
        """Assign the next free drive letter to a partition and return it."""

    @abstractmethod
    def remove_drive_letter(self, disk_number: int, partition_number: int, letter: str) -> None:
        """Remove a drive-letter access path from a partition."""

    # ==================== Source Media ====================

    @abstractmethod
    def mount_disk_image(self, iso_path: AnyPath) -> PureWindowsPath:
        """Attach an ISO and return the root of its volume, e.g. ``E:\\``."""

    @abstractmethod
    def dismount_disk_image(self, iso_path: AnyPath) -> None:
        """Detach a previously attached ISO."""

    @abstractmethod
    def is_remote_path(self, path: AnyPath) -> bool:
        """Whether a path lives on a network location."""

    @abstractmethod
    def copy_file(self, source: AnyPath, destination_dir: AnyPath, name: str | None = None) -> str:
        """
        Copy a single file into a directory with the resumable bulk copy tool.
        Returns the destination file path.
        """

    @abstractmethod
    def copy_tree(self, source: AnyPath, destination: AnyPath) -> None:
        """Recursively copy a directory tree."""

    # ==================== Image Operations ====================

    @abstractmethod
    def get_image_indexes(self, wim_path: AnyPath) -> list[ImageIndexInfo]:
        """List the images stored in a WIM."""

    @abstractmethod
    def apply_image(self, wim_path: AnyPath, index: int, apply_dir: AnyPath) -> None:
        """Expand an image index onto a directory (normally a volume root)."""

    @abstractmethod
    def mount_image(
        self,
        wim_path: AnyPath,
        index: int,
        mount_dir: AnyPath,
        read_only: bool = True,
    ) -> None:
        """Mount a WIM index at an empty directory."""

    @abstractmethod
    def unmount_image(self, mount_dir: AnyPath, commit: bool = False) -> None:
        """Unmount a WIM, discarding changes unless ``commit`` is set."""

    # ==================== Offline Servicing ====================

    @abstractmethod
    def add_driver(self, image_root: AnyPath, driver_path: AnyPath) -> None:
        """Inject drivers (recursively for folders) into an offline image."""

    @abstractmethod
    def add_package(self, image_root: AnyPath, package_path: AnyPath) -> None:
        """Install a package into an offline image."""

    @abstractmethod
    def get_optional_features(self, image_root: AnyPath) -> list[OptionalFeature]:
        """List optional features of an offline image with their states."""

    @abstractmethod
    def enable_features(
        self,
        image_root: AnyPath,
        feature_names: Sequence[str],
        sources: Sequence[AnyPath] = (),
    ) -> None:
        """Enable optional features, searching ``sources`` for payload if given."""

    @abstractmethod
    def disable_feature(self, image_root: AnyPath, feature_name: str) -> None:
        """Disable an optional feature in an offline image."""

    # ==================== Boot & Recovery ====================

    @abstractmethod
    def write_boot_files(
        self,
        windows_dir: AnyPath,
        system_volume: str,
        firmware: str | None = None,
    ) -> None:
        """Create boot files and BCD store on the system volume."""

    @abstractmethod
    def set_boot_element(self, store: AnyPath, entry: str, element: str, value: str) -> None:
        """Set one element of a BCD store entry."""

    @abstractmethod
    def set_os_image(self, path: AnyPath, index: int, target: AnyPath) -> None:
        """Register an install image with the recovery agent of an offline OS."""

    @abstractmethod
    def set_re_image(self, path: AnyPath, target: AnyPath) -> None:
        """Register a recovery environment image with the recovery agent."""

    # ==================== Filesystem Helpers ====================

    def path_exists(self, path: AnyPath) -> bool:
        return os.path.exists(str(path))

    def is_directory(self, path: AnyPath) -> bool:
        return os.path.isdir(str(path))

    def make_directory(self, path: AnyPath) -> None:
        os.makedirs(str(path), exist_ok=True)
