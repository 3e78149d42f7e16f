"""
WimDeploy CLI Module.

Provides command-line interface for WimDeploy operations.
"""

from wimdeploy.cli.main import main, cli

__all__ = ["main", "cli"]
