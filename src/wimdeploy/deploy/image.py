"""
Image application onto the Windows partition.
"""

from __future__ import annotations

from wimdeploy.core.exceptions import DeployError, OperationFailed
from wimdeploy.core.logging import get_logger
from wimdeploy.core.models import PartitionMap, ResolvedSource
from wimdeploy.platform.base import ImagingBackend

logger = get_logger(__name__)


class ImageApplier:
    """Expands one image index onto the root of the Windows partition."""

    def __init__(self, backend: ImagingBackend) -> None:
        self.backend = backend

    def apply(self, source: ResolvedSource, partition_map: PartitionMap) -> None:
        # A half-applied tree cannot be repaired by retrying, so there is one attempt
        target = partition_map.windows.root
        logger.info(
            "Applying image",
            wim_path=str(source.wim_path),
            index=source.index,
            apply_dir=str(target),
        )
        try:
            self.backend.apply_image(source.wim_path, source.index, target)
        except OperationFailed:
            raise
        except DeployError as e:
            raise OperationFailed(f"Failed to apply image index {source.index}: {e}") from e
