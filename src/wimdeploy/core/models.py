"""
WimDeploy data models.

Defines the disks, partitions, image sources and requests that flow through a
deployment. Everything here lives for a single invocation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from pathlib import Path, PureWindowsPath
from typing import Any


class PartitionType(Enum):
    """Partition type attribute as reported by the Storage cmdlets."""

    SYSTEM = "System"
    BASIC = "Basic"
    IFS = "IFS"
    RECOVERY = "Recovery"
    RESERVED = "Reserved"
    FAT32 = "FAT32"
    UNKNOWN = "Unknown"

    @classmethod
    def from_string(cls, value: str | None) -> PartitionType:
        """Create PartitionType from the platform's type string."""
        if not value:
            return cls.UNKNOWN
        value_lower = value.strip().lower()
        for part_type in cls:
            if part_type.value.lower() == value_lower:
                return part_type
        # MBR reports "FAT32 XINT13" for LBA-mapped FAT32 partitions
        if value_lower.startswith("fat32"):
            return cls.FAT32
        return cls.UNKNOWN


class PartitionRole(Enum):
    """Role a partition plays in the deployment."""

    SYSTEM = auto()
    WINDOWS = auto()
    RECOVERY_IMAGE = auto()
    RECOVERY_TOOLS = auto()
    OTHER = auto()


class DiskLayout(Enum):
    """Boot layout inferred from the partition roles present."""

    UEFI = "UEFI"
    BIOS = "BIOS"
    WINDOWS_TO_GO = "WindowsToGo"


# Partitions whose temporary drive letter is left assigned after deployment
PERSISTENT_LETTER_TYPES = frozenset({PartitionType.BASIC, PartitionType.IFS})


@dataclass
class DiskInfo:
    """Represents a physical or virtual disk."""

    number: int
    friendly_name: str = "Unknown"
    size_bytes: int = 0
    partition_style: str = "Unknown"
    is_system: bool = False
    is_boot: bool = False
    is_offline: bool = False
    is_read_only: bool = False

    @property
    def device_path(self) -> str:
        return f"\\\\.\\PhysicalDrive{self.number}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "device_path": self.device_path,
            "friendly_name": self.friendly_name,
            "size_bytes": self.size_bytes,
            "partition_style": self.partition_style,
            "is_system": self.is_system,
            "is_boot": self.is_boot,
            "is_offline": self.is_offline,
            "is_read_only": self.is_read_only,
        }


@dataclass
class Partition:
    """Represents a partition on the target disk."""

    disk_number: int
    number: int
    partition_type: PartitionType
    size_bytes: int = 0
    offset_bytes: int = 0
    drive_letter: str | None = None
    gpt_type: str | None = None
    is_hidden: bool = False

    @property
    def volume(self) -> str:
        """Drive designator such as ``S:``."""
        if not self.drive_letter:
            raise ValueError(
                f"Partition {self.number} on disk {self.disk_number} has no drive letter"
            )
        return f"{self.drive_letter}:"

    @property
    def root(self) -> PureWindowsPath:
        """Root directory of the mounted volume, e.g. ``W:\\``."""
        return PureWindowsPath(f"{self.volume}\\")

    @property
    def is_reserved(self) -> bool:
        return self.partition_type == PartitionType.RESERVED

    @property
    def keeps_drive_letter(self) -> bool:
        return self.partition_type in PERSISTENT_LETTER_TYPES

    def to_dict(self) -> dict[str, Any]:
        return {
            "disk_number": self.disk_number,
            "number": self.number,
            "type": self.partition_type.value,
            "size_bytes": self.size_bytes,
            "offset_bytes": self.offset_bytes,
            "drive_letter": self.drive_letter,
            "gpt_type": self.gpt_type,
            "is_hidden": self.is_hidden,
        }


@dataclass
class PartitionMap:
    """Partitions of the target disk annotated with their deployment roles."""

    disk_number: int
    partitions: list[Partition]
    layout: DiskLayout
    windows: Partition
    system: Partition
    recovery_tools: Partition | None = None
    recovery_image: Partition | None = None

    def roles_of(self, partition: Partition) -> list[PartitionRole]:
        """All roles held by a partition (System and Windows may coincide)."""
        roles = []
        if partition is self.system:
            roles.append(PartitionRole.SYSTEM)
        if partition is self.windows:
            roles.append(PartitionRole.WINDOWS)
        if partition is self.recovery_tools:
            roles.append(PartitionRole.RECOVERY_TOOLS)
        if partition is self.recovery_image:
            roles.append(PartitionRole.RECOVERY_IMAGE)
        return roles or [PartitionRole.OTHER]

    def to_dict(self) -> dict[str, Any]:
        return {
            "disk_number": self.disk_number,
            "layout": self.layout.value,
            "partitions": [
                {**p.to_dict(), "roles": [r.name for r in self.roles_of(p)]}
                for p in self.partitions
            ],
        }


@dataclass
class ImageIndexInfo:
    """One image stored inside a WIM file."""

    index: int
    name: str = ""
    description: str = ""
    size_bytes: int = 0


@dataclass
class OptionalFeature:
    """An optional feature of an offline Windows image."""

    name: str
    state: str

    @property
    def payload_removed(self) -> bool:
        return self.state.replace(" ", "").lower() == "disabledwithpayloadremoved"


@dataclass
class ResolvedSource:
    """Local WIM resolved from the user-supplied ISO or WIM path."""

    original_path: Path
    wim_path: Path
    index: int = 1
    is_iso: bool = False
    iso_path: Path | None = None  # ISO that is attached and must be dismounted
    iso_root: PureWindowsPath | None = None
    staged_copy: Path | None = None

    @property
    def sxs_path(self) -> PureWindowsPath | None:
        """Feature payload folder on installation media."""
        if self.iso_root is None:
            return None
        return self.iso_root / "sources" / "sxs"


@dataclass
class CustomizationRequest:
    """Optional changes applied to the image after it has been expanded."""

    drivers: list[Path] = field(default_factory=list)
    files: list[Path] = field(default_factory=list)
    packages: list[Path] = field(default_factory=list)
    features: list[str] = field(default_factory=list)
    remove_features: list[str] = field(default_factory=list)
    unattend: Path | None = None
    feature_source: Path | None = None
    feature_source_index: int = 1
    add_payload_for_removed_features: bool = False

    @property
    def is_empty(self) -> bool:
        return not (
            self.drivers
            or self.files
            or self.packages
            or self.features
            or self.remove_features
            or self.unattend
            or self.add_payload_for_removed_features
        )


@dataclass
class DeploymentRequest:
    """Everything needed to deploy one image onto one disk."""

    disk_number: int
    source: Path
    index: int = 1
    native_boot: bool = False
    force: bool = False
    customization: CustomizationRequest = field(default_factory=CustomizationRequest)

    def to_dict(self) -> dict[str, Any]:
        c = self.customization
        return {
            "disk_number": self.disk_number,
            "source": str(self.source),
            "index": self.index,
            "native_boot": self.native_boot,
            "drivers": [str(p) for p in c.drivers],
            "files": [str(p) for p in c.files],
            "packages": [str(p) for p in c.packages],
            "features": list(c.features),
            "remove_features": list(c.remove_features),
            "unattend": str(c.unattend) if c.unattend else None,
            "feature_source": str(c.feature_source) if c.feature_source else None,
            "feature_source_index": c.feature_source_index,
            "add_payload_for_removed_features": c.add_payload_for_removed_features,
        }


@dataclass
class DeploymentResult:
    """Outcome of a finished deployment."""

    disk_number: int
    layout: DiskLayout
    windows_root: PureWindowsPath | None = None
    stages: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "disk_number": self.disk_number,
            "layout": self.layout.value,
            "windows_root": str(self.windows_root) if self.windows_root else None,
            "stages": list(self.stages),
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": self.duration_seconds,
        }
