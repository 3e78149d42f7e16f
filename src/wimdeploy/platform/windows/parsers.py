"""
Windows output parsers.

Parsers for the JSON emitted by Storage and DISM PowerShell cmdlets.
"""

from __future__ import annotations

import json
from typing import Any

from wimdeploy.core.models import (
    DiskInfo,
    ImageIndexInfo,
    OptionalFeature,
    Partition,
    PartitionType,
)


def parse_powershell_json(output: str) -> list[dict[str, Any]]:
    """Parse JSON output from PowerShell commands."""
    output = output.strip()
    if not output:
        return []

    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        return []

    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict):
        return [data]
    return []


def parse_drive_letter(value: Any) -> str | None:
    """
    Normalize a DriveLetter property.

    Partitions without a letter serialize as null, an empty string, the NUL
    character, or the integer 0 depending on the PowerShell version.
    """
    if value is None:
        return None
    if isinstance(value, int):
        return chr(value).upper() if 65 <= value <= 90 or 97 <= value <= 122 else None

    letter = str(value).strip().rstrip(":\\").strip("\x00")
    if len(letter) == 1 and letter.isalpha():
        return letter.upper()
    return None


def parse_partition_style(style: str | int | None) -> str:
    """Parse partition style from a Get-Disk property."""
    if style is None:
        return "Unknown"

    if isinstance(style, int):
        return {0: "RAW", 1: "MBR", 2: "GPT"}.get(style, "Unknown")

    style_upper = str(style).upper()
    for known in ("GPT", "MBR", "RAW"):
        if known in style_upper:
            return known
    return "Unknown"


def build_disk_info(data: dict[str, Any]) -> DiskInfo:
    """Build a DiskInfo from Get-Disk output."""
    return DiskInfo(
        number=int(data.get("Number", data.get("DiskNumber", 0))),
        friendly_name=data.get("FriendlyName") or "Unknown",
        size_bytes=int(data.get("Size") or 0),
        partition_style=parse_partition_style(data.get("PartitionStyle")),
        is_system=bool(data.get("IsSystem", False)),
        is_boot=bool(data.get("IsBoot", False)),
        is_offline=bool(data.get("IsOffline", False)),
        is_read_only=bool(data.get("IsReadOnly", False)),
    )


def build_partition(data: dict[str, Any]) -> Partition:
    """Build a Partition from Get-Partition output."""
    return Partition(
        disk_number=int(data.get("DiskNumber", 0)),
        number=int(data.get("PartitionNumber", 0)),
        partition_type=PartitionType.from_string(data.get("Type")),
        size_bytes=int(data.get("Size") or 0),
        offset_bytes=int(data.get("Offset") or 0),
        drive_letter=parse_drive_letter(data.get("DriveLetter")),
        gpt_type=data.get("GptType") or None,
        is_hidden=bool(data.get("IsHidden", False)),
    )


def parse_partitions(output: str) -> list[Partition]:
    """Parse Get-Partition JSON into partitions ordered by partition number."""
    partitions = [build_partition(item) for item in parse_powershell_json(output)]
    return sorted(partitions, key=lambda p: p.number)


def parse_image_indexes(output: str) -> list[ImageIndexInfo]:
    """Parse Get-WindowsImage JSON."""
    images = [
        ImageIndexInfo(
            index=int(item.get("ImageIndex", 0)),
            name=item.get("ImageName") or "",
            description=item.get("ImageDescription") or "",
            size_bytes=int(item.get("ImageSize") or 0),
        )
        for item in parse_powershell_json(output)
    ]
    return sorted(images, key=lambda i: i.index)


def parse_optional_features(output: str) -> list[OptionalFeature]:
    """Parse Get-WindowsOptionalFeature JSON."""
    return [
        OptionalFeature(name=item["FeatureName"], state=str(item.get("State", "")))
        for item in parse_powershell_json(output)
        if item.get("FeatureName")
    ]
