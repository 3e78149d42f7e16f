"""
WimDeploy Session Management.

Ties together configuration, logging, the safety gate and the platform
backend, and keeps an audit report of every deployment attempted.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from wimdeploy.core.config import WimDeployConfig, load_config
from wimdeploy.core.exceptions import ConfirmationDeclined, DeployError
from wimdeploy.core.logging import SessionLogger, get_logger, setup_logging
from wimdeploy.core.models import (
    DeploymentRequest,
    DeploymentResult,
    DiskInfo,
    ImageIndexInfo,
    PartitionMap,
)
from wimdeploy.core.safety import ExecutionPlan, SafetyManager
from wimdeploy.deploy.deployer import Deployer
from wimdeploy.platform.base import ImagingBackend

logger = get_logger(__name__)


@dataclass
class SessionReport:
    """Session report for audit and review."""

    session_id: str
    started_at: datetime
    ended_at: datetime | None = None
    deployments: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    config_snapshot: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": (
                (self.ended_at - self.started_at).total_seconds()
                if self.ended_at
                else None
            ),
            "deployments": self.deployments,
            "errors": self.errors,
            "warnings": self.warnings,
            "config_snapshot": self.config_snapshot,
            "summary": {
                "total_deployments": len(self.deployments),
                "successful_deployments": sum(
                    1 for d in self.deployments if d.get("success", False)
                ),
                "failed_deployments": sum(
                    1 for d in self.deployments if not d.get("success", True)
                ),
                "total_errors": len(self.errors),
            },
        }

    def save(self, path: Path) -> None:
        """Save report to file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2, default=str)


class Session:
    """
    Manages a WimDeploy session with configuration, safety, and deployment.

    This is the main entry point for all WimDeploy operations.
    """

    def __init__(
        self,
        config: WimDeployConfig | None = None,
        session_id: str | None = None,
        backend: ImagingBackend | None = None,
    ) -> None:
        self.id = session_id or str(uuid.uuid4())
        self.config = config or load_config()
        self.started_at = datetime.now()

        setup_logging(self.config.logging)

        self.safety = SafetyManager(self.config.safety)
        self.session_logger = SessionLogger(
            self.config.get_session_file(),
            self.id,
            get_logger("wimdeploy.session"),
        )
        self._report = SessionReport(
            session_id=self.id,
            started_at=self.started_at,
            config_snapshot=self.config.model_dump(mode="json"),
        )

        # Platform backend (lazily loaded)
        self._platform_backend = backend
        self._deployer: Deployer | None = None

        logger.info("Session started", session_id=self.id)
        self.session_logger.info("Session started")

    @property
    def platform(self) -> ImagingBackend:
        """Get the platform-specific backend."""
        if self._platform_backend is None:
            from wimdeploy.platform import get_platform_backend

            self._platform_backend = get_platform_backend(self.config.imaging)
        return self._platform_backend

    @property
    def deployer(self) -> Deployer:
        if self._deployer is None:
            self._deployer = Deployer(self.platform, self.config)
        return self._deployer

    def inspect_disk(self, disk_number: int) -> tuple[DiskInfo, PartitionMap]:
        """Get a disk and the roles of its partitions."""
        disk = self.deployer.get_disk(disk_number)
        return disk, self.deployer.inspect(disk_number)

    def list_images(self, source: Path) -> list[ImageIndexInfo]:
        """List image indexes of an ISO or WIM without staging remote files."""
        resolver = self.deployer.resolver
        resolved = resolver.resolve(source, stage_remote=False)
        try:
            return self.platform.get_image_indexes(resolved.wim_path)
        finally:
            resolver.release(resolved)

    def plan_deployment(self, request: DeploymentRequest) -> ExecutionPlan:
        """Run preflight checks and build the plan shown to the operator."""
        disk, partition_map = self.inspect_disk(request.disk_number)
        preflight = self.safety.run_preflight(
            {
                "disk_number": request.disk_number,
                "disk": disk,
                "is_admin": self.platform.is_admin(),
            }
        )

        warnings = [
            f"All data on partition {partition_map.windows.number} of disk {disk.number} "
            f"({disk.friendly_name}) will be overwritten"
        ]
        warnings.extend(c.message for c in preflight.checks if not c.passed)

        return self.safety.create_execution_plan(
            description=f"Deploy {request.source} (index {request.index})",
            target=f"Disk {disk.number} ({partition_map.layout.value} layout)",
            steps=self.deployer.describe_steps(request, partition_map),
            warnings=warnings,
            preflight_report=preflight,
            disk_number=disk.number,
        )

    def deploy(
        self,
        request: DeploymentRequest,
        confirm: Callable[[ExecutionPlan], bool] | None = None,
    ) -> DeploymentResult:
        """
        Deploy after preflight checks and operator confirmation.

        ``confirm`` receives the execution plan and returns True to proceed.
        It is skipped when ``request.force`` is set or confirmation is
        disabled in the configuration.
        """
        record: dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "request": request.to_dict(),
        }

        try:
            plan = self.plan_deployment(request)
            self.session_logger.info("Deployment planned", request.disk_number, steps=plan.steps)

            if self.safety.requires_confirmation(request.force):
                if confirm is None or not confirm(plan):
                    raise ConfirmationDeclined(
                        "Deployment was not confirmed", request.disk_number
                    )

            result = self.deployer.deploy(request)
        except DeployError as e:
            record["success"] = False
            record["error"] = str(e)
            self._report.errors.append(
                {
                    "timestamp": datetime.now().isoformat(),
                    "disk_number": request.disk_number,
                    "error_type": type(e).__name__,
                    "error": str(e),
                }
            )
            self._report.deployments.append(record)
            self.session_logger.error(
                "Deployment failed",
                disk_number=request.disk_number,
                error=str(e),
            )
            raise

        record["success"] = True
        record["result"] = result.to_dict()
        self._report.deployments.append(record)
        self.session_logger.info(
            "Deployment completed",
            disk_number=request.disk_number,
            stages=result.stages,
        )
        return result

    def close(self) -> Path:
        """Close the session and save reports."""
        self._report.ended_at = datetime.now()

        self.session_logger.save()

        report_path = self.config.session_directory / f"report_{self.id[:8]}.json"
        self._report.save(report_path)

        logger.info(
            "Session closed",
            session_id=self.id,
            duration_seconds=(self._report.ended_at - self.started_at).total_seconds(),
            report_path=str(report_path),
        )

        return report_path

    def get_report(self) -> SessionReport:
        """Get the current session report."""
        return self._report

    def __enter__(self) -> Session:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
