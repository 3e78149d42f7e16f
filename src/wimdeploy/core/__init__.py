"""
WimDeploy Core - configuration, logging, safety and session management.
"""

from wimdeploy.core.config import WimDeployConfig
from wimdeploy.core.logging import get_logger, setup_logging
from wimdeploy.core.safety import SafetyManager
from wimdeploy.core.session import Session

__all__ = [
    "WimDeployConfig",
    "Session",
    "get_logger",
    "setup_logging",
    "SafetyManager",
]
