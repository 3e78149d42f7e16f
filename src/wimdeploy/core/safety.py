"""
WimDeploy Safety Manager.

Implements the confirmation gate, execution plans and preflight checks that
stand between the operator and an overwritten disk.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import psutil

from wimdeploy.core.exceptions import PreflightFailed
from wimdeploy.core.logging import get_logger

if TYPE_CHECKING:
    from wimdeploy.core.config import SafetyConfig

logger = get_logger(__name__)


@dataclass
class PreflightCheck:
    """Result of a single preflight check."""

    name: str
    passed: bool
    message: str
    severity: str = "info"  # info, warning, error, critical
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class PreflightReport:
    """Complete preflight check report."""

    checks: list[PreflightCheck] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def all_passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def has_errors(self) -> bool:
        return any(c.severity in ("error", "critical") and not c.passed for c in self.checks)

    @property
    def failed_checks(self) -> list[PreflightCheck]:
        return [c for c in self.checks if not c.passed]

    def get_summary(self) -> str:
        """Get human-readable summary."""
        lines = [f"Preflight Check Report ({self.timestamp.isoformat()})"]
        lines.append("=" * 60)

        passed = sum(1 for c in self.checks if c.passed)
        lines.append(f"Results: {passed}/{len(self.checks)} checks passed")
        lines.append("")

        for check in self.checks:
            status = "✓" if check.passed else "✗"
            lines.append(f"[{status}] {check.name}: {check.message}")
            for key, value in check.details.items():
                lines.append(f"    {key}: {value}")

        return "\n".join(lines)


@dataclass
class ExecutionPlan:
    """Human-readable plan of a deployment."""

    description: str
    target: str
    steps: list[str]
    warnings: list[str] = field(default_factory=list)
    preflight_report: PreflightReport | None = None
    confirmation_string: str | None = None

    def get_plan_text(self) -> str:
        """Get human-readable plan text."""
        lines = ["=" * 60]
        lines.append(f"OPERATION: {self.description}")
        lines.append(f"TARGET: {self.target}")
        lines.append("=" * 60)

        if self.warnings:
            lines.append("")
            lines.append("⚠️  WARNINGS:")
            for warning in self.warnings:
                lines.append(f"   • {warning}")

        lines.append("")
        lines.append("EXECUTION STEPS:")
        for i, step in enumerate(self.steps, 1):
            lines.append(f"   {i}. {step}")

        if self.preflight_report:
            lines.append("")
            lines.append(self.preflight_report.get_summary())

        if self.confirmation_string:
            lines.append("")
            lines.append("=" * 60)
            lines.append("To proceed, type the following confirmation string:")
            lines.append(f"  {self.confirmation_string}")
            lines.append("=" * 60)

        return "\n".join(lines)


class SafetyManager:
    """Manages the confirmation gate and preflight checks."""

    def __init__(self, config: SafetyConfig) -> None:
        self.config = config

    def requires_confirmation(self, force: bool = False) -> bool:
        """Whether the operator must confirm before the disk is touched."""
        return self.config.require_confirmation and not force

    def generate_confirmation_string(self, disk_number: int | str) -> str:
        """Generate the data-loss confirmation string for a disk."""
        safe_target = re.sub(r"[^a-zA-Z0-9_-]", "", str(disk_number))
        return f"DESTROY-DISK{safe_target.upper()}"

    def verify_confirmation(self, disk_number: int | str, user_input: str) -> tuple[bool, str]:
        """
        Verify the data-loss confirmation for a disk.
        Returns (verified, message).
        """
        expected = self.generate_confirmation_string(disk_number)

        if user_input.strip() != expected:
            logger.warning(
                "Confirmation verification failed",
                expected=expected,
                received=user_input,
                disk_number=disk_number,
            )
            return False, f"Confirmation mismatch. Expected: {expected}"

        logger.info("Deployment confirmed", disk_number=disk_number)
        return True, "Confirmation verified"

    def create_execution_plan(
        self,
        description: str,
        target: str,
        steps: list[str],
        warnings: list[str] | None = None,
        preflight_report: PreflightReport | None = None,
        disk_number: int | None = None,
    ) -> ExecutionPlan:
        """Create an execution plan for operator review."""
        confirmation_string = None
        if disk_number is not None and self.config.require_confirmation:
            confirmation_string = self.generate_confirmation_string(disk_number)

        return ExecutionPlan(
            description=description,
            target=target,
            steps=steps,
            warnings=warnings or [],
            preflight_report=preflight_report,
            confirmation_string=confirmation_string,
        )

    def run_preflight(self, context: dict[str, Any]) -> PreflightReport:
        """Run the standard checks and raise if any error-severity check fails."""
        if not self.config.preflight_checks_enabled:
            return PreflightReport()

        checker = create_standard_preflight_checker(self.config)
        report = checker.run_checks(context)

        for check in report.failed_checks:
            logger.warning(
                "Preflight check failed",
                check=check.name,
                message=check.message,
                severity=check.severity,
            )

        if report.has_errors:
            failed = "; ".join(
                c.message for c in report.failed_checks if c.severity in ("error", "critical")
            )
            raise PreflightFailed(f"Preflight checks failed: {failed}", context.get("disk_number"))

        return report


class PreflightChecker:
    """Performs preflight checks before a deployment."""

    def __init__(self) -> None:
        self._checks: list[tuple[str, Any]] = []

    def add_check(self, name: str, check_func: Any) -> None:
        """Add a preflight check function."""
        self._checks.append((name, check_func))

    def run_checks(self, context: dict[str, Any]) -> PreflightReport:
        """Run all preflight checks and return report."""
        report = PreflightReport()

        for name, check_func in self._checks:
            try:
                result = check_func(context)
                if isinstance(result, PreflightCheck):
                    report.checks.append(result)
                elif isinstance(result, bool):
                    report.checks.append(
                        PreflightCheck(
                            name=name,
                            passed=result,
                            message="Passed" if result else "Failed",
                        )
                    )
            except Exception as e:
                report.checks.append(
                    PreflightCheck(
                        name=name,
                        passed=False,
                        message=f"Check failed with error: {e}",
                        severity="error",
                    )
                )

        return report


def check_power_status(context: dict[str, Any]) -> PreflightCheck:
    """Check if system is on AC power (not battery)."""
    try:
        battery = psutil.sensors_battery()
    except (AttributeError, NotImplementedError, OSError) as e:
        return PreflightCheck(
            name="Power Status",
            passed=True,
            message=f"Could not check power status: {e}",
        )

    if battery is None:
        return PreflightCheck(
            name="Power Status",
            passed=True,
            message="No battery detected (desktop/server)",
        )

    if battery.power_plugged:
        return PreflightCheck(
            name="Power Status",
            passed=True,
            message="System is on AC power",
            details={"battery_percent": battery.percent},
        )

    return PreflightCheck(
        name="Power Status",
        passed=battery.percent > 50,
        message=f"System on battery ({battery.percent}%)",
        severity="warning" if battery.percent > 50 else "error",
        details={"battery_percent": battery.percent},
    )


def check_admin(context: dict[str, Any]) -> PreflightCheck:
    """Imaging and boot tools refuse to run unelevated."""
    if context.get("is_admin", False):
        return PreflightCheck(
            name="Administrator",
            passed=True,
            message="Running with administrative privileges",
        )
    return PreflightCheck(
        name="Administrator",
        passed=False,
        message="Administrative privileges are required",
        severity="error",
    )


def check_not_system_disk(context: dict[str, Any]) -> PreflightCheck:
    """Refuse to overwrite the disk the running OS boots from."""
    disk = context.get("disk")
    if disk is None:
        return PreflightCheck(
            name="Target Disk",
            passed=False,
            message="Target disk information unavailable",
            severity="error",
        )

    if disk.is_system or disk.is_boot:
        return PreflightCheck(
            name="Target Disk",
            passed=False,
            message=f"Disk {disk.number} hosts the running operating system",
            severity="error",
            details={"is_system": disk.is_system, "is_boot": disk.is_boot},
        )

    return PreflightCheck(
        name="Target Disk",
        passed=True,
        message=f"Disk {disk.number} is not the system disk",
    )


def check_disk_writable(context: dict[str, Any]) -> PreflightCheck:
    """Offline or read-only disks cannot receive drive letters."""
    disk = context.get("disk")
    if disk is None:
        return PreflightCheck(
            name="Disk Writable",
            passed=False,
            message="Target disk information unavailable",
            severity="error",
        )

    if disk.is_offline or disk.is_read_only:
        return PreflightCheck(
            name="Disk Writable",
            passed=False,
            message=f"Disk {disk.number} is offline or read-only",
            severity="error",
            details={"is_offline": disk.is_offline, "is_read_only": disk.is_read_only},
        )

    return PreflightCheck(name="Disk Writable", passed=True, message="Disk is online and writable")


def create_standard_preflight_checker(config: SafetyConfig | None = None) -> PreflightChecker:
    """Create a preflight checker with the deployment checks."""
    checker = PreflightChecker()
    if config is None or config.admin_required:
        checker.add_check("Administrator", check_admin)
    checker.add_check("Power Status", check_power_status)
    checker.add_check("Disk Writable", check_disk_writable)
    if config is None or config.system_disk_protection:
        checker.add_check("Target Disk", check_not_system_disk)
    return checker
