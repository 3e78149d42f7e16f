"""
Deployment orchestration.

Sequences the stages strictly top to bottom: classify partitions, resolve the
source, assign drive letters, stage the recovery image, apply, customize,
write boot files, register recovery. There are no retries. Whatever happens,
drive letters are released and the source is dismounted before an error
reaches the caller.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from wimdeploy.core.config import WimDeployConfig
from wimdeploy.core.exceptions import DeployError, DiskNotFound, OperationFailed
from wimdeploy.core.logging import OperationLogger, get_logger
from wimdeploy.core.models import (
    DeploymentRequest,
    DeploymentResult,
    DiskInfo,
    DiskLayout,
    PartitionMap,
    ResolvedSource,
)
from wimdeploy.deploy.boot import LOCATE_FIXUPS, BootWriter
from wimdeploy.deploy.customize import CustomizationPipeline
from wimdeploy.deploy.image import ImageApplier
from wimdeploy.deploy.partitions import DriveLetterScope, classify_partitions
from wimdeploy.deploy.recovery import RecoveryRegistrar
from wimdeploy.deploy.source import SourceResolver, is_iso
from wimdeploy.platform.base import ImagingBackend

logger = get_logger(__name__)


class Deployer:
    """Deploys a Windows image onto a pre-partitioned disk."""

    def __init__(self, backend: ImagingBackend, config: WimDeployConfig) -> None:
        self.backend = backend
        self.config = config
        self.resolver = SourceResolver(backend, config.staging)
        self.applier = ImageApplier(backend)
        self.pipeline = CustomizationPipeline(backend, config.staging)
        self.boot_writer = BootWriter(backend)
        self.recovery = RecoveryRegistrar(backend)

    def get_disk(self, disk_number: int) -> DiskInfo:
        disk = self.backend.get_disk(disk_number)
        if disk is None:
            raise DiskNotFound(f"Disk {disk_number} does not exist", disk_number)
        return disk

    def inspect(self, disk_number: int) -> PartitionMap:
        """Classify the partitions of a disk without changing anything."""
        self.get_disk(disk_number)
        return classify_partitions(disk_number, self.backend.get_partitions(disk_number))

    def _stage(self, operation: str, disk_number: int, **context: Any) -> OperationLogger:
        return OperationLogger(operation, logger, disk_number=disk_number, **context)

    def deploy(self, request: DeploymentRequest) -> DeploymentResult:
        disk_number = request.disk_number
        bound = logger.bind(disk_number=disk_number)
        resolved: ResolvedSource | None = None

        try:
            partition_map = self.inspect(disk_number)
            result = DeploymentResult(disk_number=disk_number, layout=partition_map.layout)

            # The source is released before the failure is reported
            try:
                with self._stage("resolve source", disk_number, source=str(request.source)):
                    resolved = self.resolver.resolve(request.source, request.index)

                with DriveLetterScope(self.backend, partition_map):
                    result.windows_root = partition_map.windows.root

                    with self._stage("stage recovery image", disk_number):
                        if self.recovery.stage_install_image(partition_map, resolved):
                            result.stages.append("recovery_image")

                    with self._stage("apply image", disk_number, index=request.index):
                        self.applier.apply(resolved, partition_map)
                    result.stages.append("apply")

                    if not request.customization.is_empty:
                        with self._stage("customize image", disk_number):
                            result.stages.extend(
                                self.pipeline.run(request.customization, resolved, partition_map.windows.root)
                            )

                    with self._stage("write boot files", disk_number, layout=partition_map.layout.value):
                        if self.boot_writer.write(partition_map, request.native_boot):
                            result.stages.append("boot")

                    with self._stage("register recovery", disk_number):
                        if self.recovery.register(partition_map, request.index):
                            result.stages.append("recovery")
            finally:
                if resolved is not None:
                    self.resolver.release(resolved)

        except DeployError as e:
            if e.disk_number is None:
                e.disk_number = disk_number
            bound.error("Deployment failed", error_type=type(e).__name__, error=str(e))
            raise
        except Exception as e:
            bound.exception("Deployment failed unexpectedly")
            raise OperationFailed(f"Deployment failed: {e}", disk_number) from e

        result.ended_at = datetime.now()
        bound.info("Deployment completed", stages=result.stages, duration_seconds=result.duration_seconds)
        return result

    def describe_steps(self, request: DeploymentRequest, partition_map: PartitionMap) -> list[str]:
        """Human-readable steps for an execution plan."""
        c = request.customization
        windows = partition_map.windows
        steps = []

        if is_iso(request.source):
            steps.append(f"Mount ISO {request.source} and locate sources\\install.wim")
        else:
            steps.append(f"Use WIM {request.source}")
        steps.append("Assign temporary drive letters to all non-reserved partitions")
        if partition_map.recovery_image is not None:
            steps.append(
                f"Copy install image to Recovery\\install.wim on partition {partition_map.recovery_image.number}"
            )
        steps.append(f"Apply image index {request.index} to partition {windows.number}")
        if c.drivers:
            steps.append(f"Add {len(c.drivers)} driver path(s)")
        if c.files:
            steps.append(f"Inject {len(c.files)} file(s)/folder(s) into the image root")
        if c.unattend:
            steps.append(f"Copy {c.unattend} to unattend.xml")
        if c.add_payload_for_removed_features:
            steps.append("Restore payload of features whose payload was removed")
        if c.features:
            steps.append(f"Enable features: {', '.join(c.features)}")
        if c.packages:
            steps.append(f"Add {len(c.packages)} package(s)")
        if c.remove_features:
            steps.append(f"Disable features: {', '.join(c.remove_features)}")
        if request.native_boot:
            steps.append("Skip boot files (native boot)")
        else:
            steps.append(
                f"Write {partition_map.layout.value} boot files to partition {partition_map.system.number}"
            )
            if partition_map.layout == DiskLayout.BIOS:
                steps.append(f"Switch {len(LOCATE_FIXUPS)} BCD entries to locate devices")
        if partition_map.recovery_tools is not None:
            steps.append(
                f"Register recovery environment on partition {partition_map.recovery_tools.number}"
            )
        steps.append("Remove temporary drive letters and dismount sources")
        return steps
