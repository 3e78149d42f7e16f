"""
WimDeploy exceptions.

Every failure surfaced to the caller is a DeployError. Errors raised inside a
deployment get the target disk number attached before they propagate.
"""

from __future__ import annotations

from collections.abc import Sequence


class DeployError(Exception):
    """Base exception for WimDeploy errors."""

    def __init__(self, message: str, disk_number: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.disk_number = disk_number

    def __str__(self) -> str:
        if self.disk_number is None:
            return self.message
        return f"Disk {self.disk_number}: {self.message}"


class DiskNotFound(DeployError):
    """The requested disk number does not exist."""


class InvalidSourceMedia(DeployError):
    """The source is missing, or an ISO does not contain sources\\install.wim."""


class NoOSPartition(DeployError):
    """No partition on the target disk can hold the operating system."""


class FeatureInstallError(DeployError):
    """Optional feature source resolution, mounting or enablement failed."""


class UnattendError(FeatureInstallError):
    """The unattend answer file could not be copied into the applied image."""


class FeatureRemoveError(DeployError):
    """Disabling an optional feature failed."""


class OperationFailed(DeployError):
    """Image apply, boot write or recovery registration failed."""


class CommandError(OperationFailed):
    """A native tool exited with a failure code."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: int,
        stderr: str = "",
        disk_number: int | None = None,
    ) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        tool = self.command[0] if self.command else "command"
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no error output"
        super().__init__(f"{tool} exited with code {returncode}: {detail}", disk_number)


class PreflightFailed(DeployError):
    """A preflight check with error severity did not pass."""


class ConfirmationDeclined(DeployError):
    """The operator did not confirm the destructive operation."""
