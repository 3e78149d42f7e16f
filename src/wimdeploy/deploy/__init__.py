"""
WimDeploy deployment stages.

Source resolution, partition classification, image application, offline
customization, boot file creation and recovery registration.
"""

from wimdeploy.deploy.boot import BootWriter
from wimdeploy.deploy.customize import CustomizationPipeline
from wimdeploy.deploy.deployer import Deployer
from wimdeploy.deploy.image import ImageApplier
from wimdeploy.deploy.partitions import DriveLetterScope, classify_partitions
from wimdeploy.deploy.recovery import RecoveryRegistrar
from wimdeploy.deploy.source import SourceResolver

__all__ = [
    "BootWriter",
    "CustomizationPipeline",
    "Deployer",
    "DriveLetterScope",
    "ImageApplier",
    "RecoveryRegistrar",
    "SourceResolver",
    "classify_partitions",
]
