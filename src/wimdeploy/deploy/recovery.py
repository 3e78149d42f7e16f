"""
Recovery partition population and registration.
"""

from __future__ import annotations

from wimdeploy.core.logging import get_logger
from wimdeploy.core.models import PartitionMap, ResolvedSource
from wimdeploy.platform.base import ImagingBackend

logger = get_logger(__name__)


class RecoveryRegistrar:
    """Copies recovery images onto recovery partitions and registers them."""

    def __init__(self, backend: ImagingBackend) -> None:
        self.backend = backend

    def stage_install_image(self, partition_map: PartitionMap, source: ResolvedSource) -> bool:
        """Copy the install image to the recovery image partition, if there is one."""
        partition = partition_map.recovery_image
        if partition is None:
            return False

        folder = partition.root / "Recovery"
        logger.info("Copying install image to recovery partition", destination=str(folder))
        self.backend.make_directory(folder)
        self.backend.copy_file(source.wim_path, folder, name="install.wim")
        return True

    def register(self, partition_map: PartitionMap, index: int) -> bool:
        """Register recovery images with the applied OS. Runs after boot files exist."""
        tools = partition_map.recovery_tools
        if tools is None:
            return False

        windows_dir = partition_map.windows.root / "Windows"

        if partition_map.recovery_image is not None:
            image_folder = partition_map.recovery_image.root / "Recovery"
            logger.info("Registering recovery install image", path=str(image_folder), index=index)
            self.backend.set_os_image(image_folder, index, windows_dir)

        re_folder = tools.root / "Recovery" / "WindowsRE"
        self.backend.make_directory(re_folder)
        winre = windows_dir / "System32" / "Recovery" / "winre.wim"
        logger.info("Copying recovery environment", source=str(winre), destination=str(re_folder))
        self.backend.copy_file(winre, re_folder)
        self.backend.set_re_image(re_folder, windows_dir)
        return True
