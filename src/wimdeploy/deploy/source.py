"""
Source resolution.

Turns the user-supplied ISO or WIM path into a local WIM the imaging tools can
read for the whole deployment.
"""

from __future__ import annotations

from pathlib import Path

from wimdeploy.core.config import StagingConfig
from wimdeploy.core.exceptions import DeployError, InvalidSourceMedia
from wimdeploy.core.logging import get_logger
from wimdeploy.core.models import ResolvedSource
from wimdeploy.platform.base import ImagingBackend

logger = get_logger(__name__)


def is_iso(path: Path) -> bool:
    return path.suffix.lower() == ".iso"


class SourceResolver:
    """Mounts ISOs, stages remote sources and locates the install image."""

    def __init__(self, backend: ImagingBackend, staging: StagingConfig) -> None:
        self.backend = backend
        self.staging = staging

    def resolve(self, source: Path, index: int = 1, stage_remote: bool = True) -> ResolvedSource:
        """
        Resolve ``source`` to a local WIM.

        Remote sources are copied to the staging directory first so the
        multi-minute apply does not hold a handle open across the network. An
        attached ISO is recorded on the result; call :meth:`release` on every
        exit path.
        """
        original = Path(source).expanduser().resolve()
        if not self.backend.path_exists(original):
            raise InvalidSourceMedia(f"Source not found: {original}")

        local_path = original
        staged_copy = None
        if stage_remote and self.staging.copy_remote_sources and self.backend.is_remote_path(original):
            self.staging.directory.mkdir(parents=True, exist_ok=True)
            logger.info(
                "Staging remote source",
                source=str(original),
                staging_directory=str(self.staging.directory),
            )
            local_path = Path(self.backend.copy_file(original, self.staging.directory))
            staged_copy = local_path

        resolved = ResolvedSource(
            original_path=original,
            wim_path=local_path,
            index=index,
            staged_copy=staged_copy,
        )

        if not is_iso(local_path):
            logger.info("Using WIM source", wim_path=str(local_path), index=index)
            return resolved

        resolved.is_iso = True
        try:
            resolved.iso_root = self.backend.mount_disk_image(local_path)
            resolved.iso_path = local_path
            wim_path = resolved.iso_root / "sources" / "install.wim"
            logger.info("Mounted ISO", iso=str(local_path), root=str(resolved.iso_root))

            if not self.backend.path_exists(wim_path):
                raise InvalidSourceMedia(
                    f"{original} is not valid installation media: {wim_path} not found"
                )
        except BaseException:
            self.release(resolved)
            raise

        resolved.wim_path = Path(str(wim_path))
        return resolved

    def release(self, resolved: ResolvedSource) -> None:
        """Dismount the ISO and drop the staged copy. Never raises."""
        if resolved.iso_path is not None:
            try:
                self.backend.dismount_disk_image(resolved.iso_path)
                logger.info("Dismounted ISO", iso=str(resolved.iso_path))
            except DeployError as e:
                logger.error("Failed to dismount ISO", iso=str(resolved.iso_path), error=str(e))
            else:
                resolved.iso_path = None

        if resolved.staged_copy is not None and not self.staging.keep_staged_copies:
            try:
                resolved.staged_copy.unlink(missing_ok=True)
                logger.info("Removed staged source", path=str(resolved.staged_copy))
            except OSError as e:
                logger.error(
                    "Failed to remove staged source",
                    path=str(resolved.staged_copy),
                    error=str(e),
                )
            else:
                resolved.staged_copy = None
