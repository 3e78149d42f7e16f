"""
Pytest configuration and fixtures for WimDeploy tests.
"""

import os
import shutil
import sys
import tempfile
from collections.abc import Sequence
from pathlib import Path, PureWindowsPath
from typing import Any, Generator
from unittest.mock import patch

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from wimdeploy.core.models import (  # noqa: E402
    DiskInfo,
    ImageIndexInfo,
    OptionalFeature,
    Partition,
    PartitionType,
)
from wimdeploy.platform.base import AnyPath, ImagingBackend  # noqa: E402


class FakeImagingBackend(ImagingBackend):
    """
    Records every privileged call instead of running native tools.

    ``fail_on`` maps a method name to the exception that method raises.
    ``existing_paths`` holds target-side paths (ISO roots, applied trees)
    that ``path_exists`` reports as present in addition to the local disk.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.disks: dict[int, DiskInfo] = {}
        self.partitions: dict[int, list[Partition]] = {}
        self.free_letters = list("EFGHIJKLMNOPQRSTUVWXYZ")
        self.existing_paths: set[str] = set()
        self.directories: set[str] = set()
        self.remote_paths: set[str] = set()
        self.image_indexes: list[ImageIndexInfo] = [ImageIndexInfo(index=1, name="Windows")]
        self.optional_features: list[OptionalFeature] = []
        self.iso_letter = "D"
        self.fail_on: dict[str, BaseException] = {}
        self.admin = True

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, *args))
        if method in self.fail_on:
            raise self.fail_on[method]

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == method]

    def add_disk(self, number: int, *types: PartitionType, **disk_fields: Any) -> list[Partition]:
        self.disks[number] = DiskInfo(number=number, friendly_name=f"Fake Disk {number}", **disk_fields)
        self.partitions[number] = [
            Partition(disk_number=number, number=i, partition_type=t, size_bytes=(i + 1) * 1024**3)
            for i, t in enumerate(types, 1)
        ]
        return self.partitions[number]

    def is_admin(self) -> bool:
        return self.admin

    def get_disk(self, disk_number: int) -> DiskInfo | None:
        return self.disks.get(disk_number)

    def get_partitions(self, disk_number: int) -> list[Partition]:
        self._record("get_partitions", disk_number)
        return list(self.partitions.get(disk_number, []))

    def assign_drive_letter(self, disk_number: int, partition_number: int) -> str:
        self._record("assign_drive_letter", disk_number, partition_number)
        return self.free_letters.pop(0)

    def remove_drive_letter(self, disk_number: int, partition_number: int, letter: str) -> None:
        self._record("remove_drive_letter", disk_number, partition_number, letter)
        self.free_letters.insert(0, letter)

    def mount_disk_image(self, iso_path: AnyPath) -> PureWindowsPath:
        self._record("mount_disk_image", str(iso_path))
        return PureWindowsPath(f"{self.iso_letter}:\\")

    def dismount_disk_image(self, iso_path: AnyPath) -> None:
        self._record("dismount_disk_image", str(iso_path))

    def is_remote_path(self, path: AnyPath) -> bool:
        return str(path) in self.remote_paths

    def copy_file(self, source: AnyPath, destination_dir: AnyPath, name: str | None = None) -> str:
        self._record("copy_file", str(source), str(destination_dir), name)
        file_name = name or PureWindowsPath(str(source)).name
        if isinstance(destination_dir, Path) and os.path.isfile(str(source)):
            target = destination_dir / file_name
            shutil.copyfile(str(source), target)
            return str(target)
        return str(PureWindowsPath(str(destination_dir)) / file_name)

    def copy_tree(self, source: AnyPath, destination: AnyPath) -> None:
        self._record("copy_tree", str(source), str(destination))

    def get_image_indexes(self, wim_path: AnyPath) -> list[ImageIndexInfo]:
        self._record("get_image_indexes", str(wim_path))
        return list(self.image_indexes)

    def apply_image(self, wim_path: AnyPath, index: int, apply_dir: AnyPath) -> None:
        self._record("apply_image", str(wim_path), index, str(apply_dir))

    def mount_image(
        self,
        wim_path: AnyPath,
        index: int,
        mount_dir: AnyPath,
        read_only: bool = True,
    ) -> None:
        self._record("mount_image", str(wim_path), index, str(mount_dir), read_only)

    def unmount_image(self, mount_dir: AnyPath, commit: bool = False) -> None:
        self._record("unmount_image", str(mount_dir), commit)

    def add_driver(self, image_root: AnyPath, driver_path: AnyPath) -> None:
        self._record("add_driver", str(image_root), str(driver_path))

    def add_package(self, image_root: AnyPath, package_path: AnyPath) -> None:
        self._record("add_package", str(image_root), str(package_path))

    def get_optional_features(self, image_root: AnyPath) -> list[OptionalFeature]:
        self._record("get_optional_features", str(image_root))
        return list(self.optional_features)

    def enable_features(
        self,
        image_root: AnyPath,
        feature_names: Sequence[str],
        sources: Sequence[AnyPath] = (),
    ) -> None:
        self._record("enable_features", str(image_root), list(feature_names), [str(s) for s in sources])

    def disable_feature(self, image_root: AnyPath, feature_name: str) -> None:
        self._record("disable_feature", str(image_root), feature_name)

    def write_boot_files(
        self,
        windows_dir: AnyPath,
        system_volume: str,
        firmware: str | None = None,
    ) -> None:
        self._record("write_boot_files", str(windows_dir), system_volume, firmware)

    def set_boot_element(self, store: AnyPath, entry: str, element: str, value: str) -> None:
        self._record("set_boot_element", str(store), entry, element, value)

    def set_os_image(self, path: AnyPath, index: int, target: AnyPath) -> None:
        self._record("set_os_image", str(path), index, str(target))

    def set_re_image(self, path: AnyPath, target: AnyPath) -> None:
        self._record("set_re_image", str(path), str(target))

    def path_exists(self, path: AnyPath) -> bool:
        return str(path) in self.existing_paths or os.path.exists(str(path))

    def is_directory(self, path: AnyPath) -> bool:
        return str(path) in self.directories or os.path.isdir(str(path))

    def make_directory(self, path: AnyPath) -> None:
        self._record("make_directory", str(path))


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_backend() -> FakeImagingBackend:
    """Create a recording fake imaging backend."""
    return FakeImagingBackend()


@pytest.fixture
def sample_config(temp_dir: Path) -> "WimDeployConfig":
    """Create a sample configuration for testing."""
    from wimdeploy.core.config import WimDeployConfig

    config = WimDeployConfig(
        session_directory=temp_dir / "sessions",
    )
    config.logging.log_directory = temp_dir / "logs"
    config.logging.console_enabled = False
    config.staging.directory = temp_dir / "staging"
    config.ensure_directories()
    return config


@pytest.fixture
def wim_file(temp_dir: Path) -> Path:
    """A local file standing in for an install image."""
    path = temp_dir / "media" / "install.wim"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"MSWIM\x00\x00\x00")
    return path


@pytest.fixture
def iso_file(temp_dir: Path) -> Path:
    """A local file standing in for installation media."""
    path = temp_dir / "media" / "Win11.iso"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"CD001")
    return path


@pytest.fixture
def no_battery() -> Generator[None, None, None]:
    """Make the power preflight check see a desktop machine."""
    with patch("wimdeploy.core.safety.psutil.sensors_battery", return_value=None):
        yield


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "slow: Slow running tests")
