"""
Windows Platform Backend Implementation.

Implements the imaging capabilities using Windows tools:
- PowerShell Storage cmdlets for disks, partitions, drive letters and ISOs
- DISM for applying, mounting and servicing images
- BCDBoot and BCDEdit for boot files
- ReAgentC for recovery registration
- Robocopy for restartable bulk copies
"""

from __future__ import annotations

import ctypes
import os
import subprocess
import time
from collections.abc import Collection, Sequence
from pathlib import PureWindowsPath

import psutil

from wimdeploy.core.config import ImagingConfig
from wimdeploy.core.exceptions import CommandError, OperationFailed
from wimdeploy.core.logging import get_logger
from wimdeploy.core.models import DiskInfo, ImageIndexInfo, OptionalFeature, Partition
from wimdeploy.platform.base import AnyPath, CommandResult, ImagingBackend
from wimdeploy.platform.windows.parsers import (
    build_disk_info,
    parse_drive_letter,
    parse_image_indexes,
    parse_optional_features,
    parse_partitions,
    parse_powershell_json,
)

logger = get_logger(__name__)

# Robocopy reports partial success with exit codes 1-7
ROBOCOPY_SUCCESS_CODES = frozenset(range(8))


def ps_quote(value: AnyPath) -> str:
    """Quote a value as a PowerShell single-quoted string literal."""
    return "'" + str(value).replace("'", "''") + "'"


class WindowsBackend(ImagingBackend):
    """Windows implementation of the imaging operations."""

    def __init__(self, config: ImagingConfig | None = None) -> None:
        self.config = config or ImagingConfig()

    def is_admin(self) -> bool:
        try:
            return ctypes.windll.shell32.IsUserAnAdmin() != 0
        except (AttributeError, OSError):
            return False

    def run_command(
        self,
        command: list[str],
        check: bool = True,
        ok_codes: Collection[int] = (0,),
    ) -> CommandResult:
        """Run a native tool, raising CommandError on failure when ``check`` is set."""
        logger.debug("Running command", command=command)
        start_time = time.time()

        startupinfo = None
        if hasattr(subprocess, "STARTUPINFO"):
            startupinfo = subprocess.STARTUPINFO()
            startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW
            startupinfo.wShowWindow = subprocess.SW_HIDE

        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.config.command_timeout_seconds,
                startupinfo=startupinfo,
            )
            result = CommandResult(
                returncode=completed.returncode,
                stdout=completed.stdout or "",
                stderr=completed.stderr or "",
                command=command,
                duration_seconds=time.time() - start_time,
            )
        except subprocess.TimeoutExpired:
            result = CommandResult(
                returncode=-1,
                stdout="",
                stderr=f"Command timed out after {self.config.command_timeout_seconds}s",
                command=command,
                duration_seconds=time.time() - start_time,
            )
        except OSError as e:
            result = CommandResult(
                returncode=-1,
                stdout="",
                stderr=str(e),
                command=command,
                duration_seconds=time.time() - start_time,
            )

        if result.returncode not in ok_codes:
            logger.warning(
                "Command failed",
                command=command,
                returncode=result.returncode,
                stderr=result.stderr[:500],
            )
            if check:
                # DISM and BCDBoot write their errors to stdout
                raise CommandError(command, result.returncode, result.stderr or result.stdout)

        return result

    def _run_powershell(self, script: str, check: bool = True) -> CommandResult:
        """Run a PowerShell script."""
        cmd = [
            self.config.powershell,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy", "Bypass",
            "-Command", f"$ErrorActionPreference = 'Stop'; {script}",
        ]
        return self.run_command(cmd, check=check)

    def _run_dism(self, *args: str) -> CommandResult:
        return self.run_command([self.config.dism, *args, "/English"])

    # ==================== Disk Inventory ====================

    def get_disk(self, disk_number: int) -> DiskInfo | None:
        script = f"""
        Get-Disk -Number {int(disk_number)} | Select-Object Number, FriendlyName, Size,
            PartitionStyle, IsSystem, IsBoot, IsOffline, IsReadOnly |
        ConvertTo-Json -Compress
        """
        result = self._run_powershell(script, check=False)
        if not result.success:
            return None

        disks = parse_powershell_json(result.stdout)
        return build_disk_info(disks[0]) if disks else None

    def get_partitions(self, disk_number: int) -> list[Partition]:
        script = f"""
        Get-Partition -DiskNumber {int(disk_number)} | Select-Object DiskNumber, PartitionNumber,
            Type, Size, Offset, GptType, IsHidden,
            @{{Name='DriveLetter'; Expression={{"$($_.DriveLetter)"}}}} |
        ConvertTo-Json -Compress
        """
        result = self._run_powershell(script)
        return parse_partitions(result.stdout)

    def assign_drive_letter(self, disk_number: int, partition_number: int) -> str:
        script = f"""
        Add-PartitionAccessPath -DiskNumber {int(disk_number)} -PartitionNumber {int(partition_number)} -AssignDriveLetter
        "$((Get-Partition -DiskNumber {int(disk_number)} -PartitionNumber {int(partition_number)}).DriveLetter)"
        """
        result = self._run_powershell(script)
        letter = parse_drive_letter(result.stdout.strip().splitlines()[-1] if result.stdout.strip() else None)
        if letter is None:
            raise OperationFailed(
                f"No drive letter was assigned to partition {partition_number}",
                disk_number,
            )
        return letter

    def remove_drive_letter(self, disk_number: int, partition_number: int, letter: str) -> None:
        access_path = ps_quote(PureWindowsPath(f"{letter}:\\"))
        script = (
            f"Remove-PartitionAccessPath -DiskNumber {int(disk_number)} "
            f"-PartitionNumber {int(partition_number)} -AccessPath {access_path}"
        )
        self._run_powershell(script)

    # ==================== Source Media ====================

    def mount_disk_image(self, iso_path: AnyPath) -> PureWindowsPath:
        script = f"""
        $image = Mount-DiskImage -ImagePath {ps_quote(iso_path)} -StorageType ISO -PassThru
        "$(($image | Get-Volume).DriveLetter)"
        """
        result = self._run_powershell(script)
        letter = parse_drive_letter(result.stdout.strip().splitlines()[-1] if result.stdout.strip() else None)
        if letter is None:
            raise OperationFailed(f"Could not determine the drive letter of mounted ISO {iso_path}")
        return PureWindowsPath(f"{letter}:\\")

    def dismount_disk_image(self, iso_path: AnyPath) -> None:
        self._run_powershell(f"Dismount-DiskImage -ImagePath {ps_quote(iso_path)} | Out-Null")

    def is_remote_path(self, path: AnyPath) -> bool:
        drive = PureWindowsPath(str(path)).drive
        if drive.startswith("\\\\"):
            return True
        if not drive:
            return False

        for part in psutil.disk_partitions(all=True):
            if part.mountpoint.rstrip("\\").upper() == drive.upper():
                return "remote" in part.opts.split(",")
        return False

    def _robocopy(self, source_dir: AnyPath, destination_dir: AnyPath, *args: str) -> None:
        cmd = [
            self.config.robocopy,
            str(source_dir),
            str(destination_dir),
            *args,
            "/Z",
            f"/R:{self.config.copy_retries}",
            f"/W:{self.config.copy_retry_wait_seconds}",
            "/NP",
            "/NJH",
        ]
        self.run_command(cmd, ok_codes=ROBOCOPY_SUCCESS_CODES)

    def copy_file(self, source: AnyPath, destination_dir: AnyPath, name: str | None = None) -> str:
        source_path = PureWindowsPath(str(source))
        destination = PureWindowsPath(str(destination_dir))
        self._robocopy(source_path.parent, destination, source_path.name)

        copied = destination / source_path.name
        if name and name.lower() != source_path.name.lower():
            target = destination / name
            os.replace(str(copied), str(target))
            return str(target)
        return str(copied)

    def copy_tree(self, source: AnyPath, destination: AnyPath) -> None:
        self._robocopy(source, destination, "/E")

    # ==================== Image Operations ====================

    def get_image_indexes(self, wim_path: AnyPath) -> list[ImageIndexInfo]:
        script = f"""
        Get-WindowsImage -ImagePath {ps_quote(wim_path)} |
            Select-Object ImageIndex, ImageName, ImageDescription, ImageSize |
        ConvertTo-Json -Compress
        """
        result = self._run_powershell(script)
        return parse_image_indexes(result.stdout)

    def apply_image(self, wim_path: AnyPath, index: int, apply_dir: AnyPath) -> None:
        self._run_dism(
            "/Apply-Image",
            f"/ImageFile:{wim_path}",
            f"/Index:{index}",
            f"/ApplyDir:{apply_dir}",
        )

    def mount_image(
        self,
        wim_path: AnyPath,
        index: int,
        mount_dir: AnyPath,
        read_only: bool = True,
    ) -> None:
        args = [
            "/Mount-Image",
            f"/ImageFile:{wim_path}",
            f"/Index:{index}",
            f"/MountDir:{mount_dir}",
        ]
        if read_only:
            args.append("/ReadOnly")
        self._run_dism(*args)

    def unmount_image(self, mount_dir: AnyPath, commit: bool = False) -> None:
        self._run_dism("/Unmount-Image", f"/MountDir:{mount_dir}", "/Commit" if commit else "/Discard")

    # ==================== Offline Servicing ====================

    def add_driver(self, image_root: AnyPath, driver_path: AnyPath) -> None:
        self._run_dism(f"/Image:{image_root}", "/Add-Driver", f"/Driver:{driver_path}", "/Recurse")

    def add_package(self, image_root: AnyPath, package_path: AnyPath) -> None:
        self._run_dism(f"/Image:{image_root}", "/Add-Package", f"/PackagePath:{package_path}")

    def get_optional_features(self, image_root: AnyPath) -> list[OptionalFeature]:
        script = f"""
        Get-WindowsOptionalFeature -Path {ps_quote(image_root)} |
            Select-Object FeatureName, @{{Name='State'; Expression={{"$($_.State)"}}}} |
        ConvertTo-Json -Compress
        """
        result = self._run_powershell(script)
        return parse_optional_features(result.stdout)

    def enable_features(
        self,
        image_root: AnyPath,
        feature_names: Sequence[str],
        sources: Sequence[AnyPath] = (),
    ) -> None:
        args = [f"/Image:{image_root}", "/Enable-Feature"]
        args.extend(f"/FeatureName:{name}" for name in feature_names)
        args.append("/All")
        if sources:
            args.extend(f"/Source:{source}" for source in sources)
            args.append("/LimitAccess")
        self._run_dism(*args)

    def disable_feature(self, image_root: AnyPath, feature_name: str) -> None:
        self._run_dism(f"/Image:{image_root}", "/Disable-Feature", f"/FeatureName:{feature_name}")

    # ==================== Boot & Recovery ====================

    def write_boot_files(
        self,
        windows_dir: AnyPath,
        system_volume: str,
        firmware: str | None = None,
    ) -> None:
        cmd = [self.config.bcdboot, str(windows_dir), "/s", system_volume, "/v"]
        if firmware:
            cmd.extend(["/f", firmware])
        self.run_command(cmd)

    def set_boot_element(self, store: AnyPath, entry: str, element: str, value: str) -> None:
        self.run_command([self.config.bcdedit, "/store", str(store), "/set", entry, element, value])

    def set_os_image(self, path: AnyPath, index: int, target: AnyPath) -> None:
        self.run_command(
            [
                self.config.reagentc,
                "/setosimage",
                "/path", str(path),
                "/index", str(index),
                "/target", str(target),
            ]
        )

    def set_re_image(self, path: AnyPath, target: AnyPath) -> None:
        self.run_command(
            [self.config.reagentc, "/setreimage", "/path", str(path), "/target", str(target)]
        )
