"""
Offline customization of the applied image.

Steps run in a fixed order: drivers, injected files, unattend, payload
restoration for stripped features, feature enablement, packages, feature
removal. Each batch is all-or-nothing: the first failing item aborts the
deployment.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path, PureWindowsPath
from typing import Any

from wimdeploy.core.config import StagingConfig
from wimdeploy.core.exceptions import (
    DeployError,
    FeatureInstallError,
    FeatureRemoveError,
    UnattendError,
)
from wimdeploy.core.logging import OperationLogger, get_logger
from wimdeploy.core.models import CustomizationRequest, ResolvedSource
from wimdeploy.platform.base import AnyPath, ImagingBackend

logger = get_logger(__name__)

MINIMAL_ENVIRONMENT_DRIVE = "X:"


def is_minimal_environment(staging_directory: AnyPath) -> bool:
    """WinPE runs from a RAM disk mounted as X:, where DISM cannot mount images."""
    return PureWindowsPath(str(staging_directory)).drive.upper() == MINIMAL_ENVIRONMENT_DRIVE


def winsxs(root: AnyPath) -> PureWindowsPath:
    return PureWindowsPath(str(root)) / "Windows" / "WinSxS"


class FeatureSourceMounts:
    """
    Read-only WIM mounts used as feature payload sources.

    Each mount gets its own fresh temporary directory. On exit every mount is
    discarded and its directory removed, whether or not the enable succeeded.
    """

    def __init__(self, backend: ImagingBackend, staging_directory: Path) -> None:
        self.backend = backend
        self.staging_directory = staging_directory
        self.mount_dirs: list[Path] = []

    def mount(self, wim_path: AnyPath, index: int) -> PureWindowsPath:
        """Mount one image index and return its WinSxS folder."""
        self.staging_directory.mkdir(parents=True, exist_ok=True)
        mount_dir = Path(tempfile.mkdtemp(prefix="wimmount_", dir=self.staging_directory))
        try:
            self.backend.mount_image(wim_path, index, mount_dir, read_only=True)
        except BaseException:
            shutil.rmtree(mount_dir, ignore_errors=True)
            raise
        self.mount_dirs.append(mount_dir)
        logger.debug("Mounted feature source", wim_path=str(wim_path), index=index, mount_dir=str(mount_dir))
        return winsxs(mount_dir)

    def __enter__(self) -> FeatureSourceMounts:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        while self.mount_dirs:
            mount_dir = self.mount_dirs.pop()
            try:
                self.backend.unmount_image(mount_dir, commit=False)
            except DeployError as e:
                # Removing the directory of a live mount would fail half way
                logger.error("Failed to discard feature source mount", mount_dir=str(mount_dir), error=str(e))
                continue
            shutil.rmtree(mount_dir, ignore_errors=True)


class CustomizationPipeline:
    """Applies a CustomizationRequest to the expanded OS tree."""

    def __init__(self, backend: ImagingBackend, staging: StagingConfig) -> None:
        self.backend = backend
        self.staging = staging

    def run(
        self,
        request: CustomizationRequest,
        source: ResolvedSource,
        os_root: PureWindowsPath,
    ) -> list[str]:
        """Run every requested step. Returns the names of the steps performed."""
        completed: list[str] = []

        if request.drivers:
            with OperationLogger("add drivers", logger, count=len(request.drivers)):
                self.add_drivers(request.drivers, os_root)
            completed.append("drivers")

        if request.files:
            with OperationLogger("inject files", logger, count=len(request.files)):
                self.inject_files(request.files, os_root)
            completed.append("files")

        if request.unattend:
            with OperationLogger("copy unattend", logger, unattend=str(request.unattend)):
                self.copy_unattend(request.unattend, os_root)
            completed.append("unattend")

        features = list(request.features)
        if request.add_payload_for_removed_features:
            for name in self.features_with_removed_payload(os_root):
                if name not in features:
                    features.append(name)

        if features:
            with OperationLogger("enable features", logger, features=features):
                self.enable_features(features, request, source, os_root)
            completed.append("features")

        if request.packages:
            with OperationLogger("add packages", logger, count=len(request.packages)):
                self.add_packages(request.packages, os_root)
            completed.append("packages")

        if request.remove_features:
            with OperationLogger("remove features", logger, features=request.remove_features):
                self.remove_features(request.remove_features, os_root)
            completed.append("remove_features")

        return completed

    def add_drivers(self, drivers: list[Path], os_root: PureWindowsPath) -> None:
        for driver in drivers:
            logger.info("Adding driver", driver=str(driver))
            self.backend.add_driver(os_root, driver)

    def inject_files(self, files: list[Path], os_root: PureWindowsPath) -> None:
        for item in files:
            name = PureWindowsPath(str(item)).name
            if self.backend.is_directory(item):
                logger.info("Injecting folder", source=str(item), destination=str(os_root / name))
                self.backend.copy_tree(item, os_root / name)
            else:
                logger.info("Injecting file", source=str(item), destination=str(os_root))
                self.backend.copy_file(item, os_root)

    def copy_unattend(self, unattend: Path, os_root: PureWindowsPath) -> None:
        try:
            self.backend.copy_file(unattend, os_root, name="unattend.xml")
        except (DeployError, OSError) as e:
            raise UnattendError(f"Failed to copy unattend file {unattend}: {e}") from e

    def features_with_removed_payload(self, os_root: PureWindowsPath) -> list[str]:
        names = [f.name for f in self.backend.get_optional_features(os_root) if f.payload_removed]
        logger.info("Found features with removed payload", features=names)
        return names

    def enable_features(
        self,
        features: list[str],
        request: CustomizationRequest,
        source: ResolvedSource,
        os_root: PureWindowsPath,
    ) -> None:
        try:
            with FeatureSourceMounts(self.backend, self.staging.directory) as mounts:
                sources = self._collect_feature_sources(request, source, mounts)
                logger.info("Enabling features", features=features, sources=[str(s) for s in sources])
                self.backend.enable_features(os_root, features, sources)
        except FeatureInstallError:
            raise
        except (DeployError, OSError) as e:
            raise FeatureInstallError(f"Failed to install features {', '.join(features)}: {e}") from e

    def _collect_feature_sources(
        self,
        request: CustomizationRequest,
        source: ResolvedSource,
        mounts: FeatureSourceMounts,
    ) -> list[PureWindowsPath]:
        sources: list[PureWindowsPath] = []

        if source.sxs_path is not None:
            sources.append(source.sxs_path)

        minimal = is_minimal_environment(self.staging.directory)
        if minimal:
            logger.warning("Mounting images is not supported in WinPE; using only non-WIM feature sources")

        override = request.feature_source
        if override is not None:
            if self.backend.is_directory(override):
                sources.append(PureWindowsPath(str(override)))
            elif override.suffix.lower() == ".wim" and not minimal:
                sources.append(mounts.mount(override, request.feature_source_index))
            else:
                logger.warning("Ignoring unsupported feature source", feature_source=str(override))
        elif not minimal:
            for image in self.backend.get_image_indexes(source.wim_path):
                sources.append(mounts.mount(source.wim_path, image.index))

        return sources

    def add_packages(self, packages: list[Path], os_root: PureWindowsPath) -> None:
        for package in packages:
            logger.info("Adding package", package=str(package))
            self.backend.add_package(os_root, package)

    def remove_features(self, features: list[str], os_root: PureWindowsPath) -> None:
        for name in features:
            try:
                self.backend.disable_feature(os_root, name)
            except DeployError as e:
                raise FeatureRemoveError(f"Failed to remove feature {name}: {e}") from e
