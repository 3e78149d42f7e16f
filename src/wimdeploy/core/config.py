"""
WimDeploy configuration management.

Provides centralized configuration with validation using Pydantic.
"""

from __future__ import annotations

import json
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    file_enabled: bool = True
    console_enabled: bool = True
    json_format: bool = False
    log_directory: Path = Field(default_factory=lambda: Path.home() / ".wimdeploy" / "logs")

    @field_validator("log_directory", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser().resolve()


class SafetyConfig(BaseModel):
    """Configuration for safety features."""

    require_confirmation: bool = True
    preflight_checks_enabled: bool = True
    system_disk_protection: bool = True
    admin_required: bool = True


class StagingConfig(BaseModel):
    """Configuration for local staging of remote sources and temporary mounts."""

    directory: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()) / "wimdeploy")
    copy_remote_sources: bool = True
    keep_staged_copies: bool = False

    @field_validator("directory", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser()


class ImagingConfig(BaseModel):
    """Native tool locations and invocation settings."""

    dism: str = "dism.exe"
    bcdboot: str = "bcdboot.exe"
    bcdedit: str = "bcdedit.exe"
    reagentc: str = "reagentc.exe"
    robocopy: str = "robocopy.exe"
    powershell: str = "powershell.exe"
    # None waits for the tool to exit, however long that takes
    command_timeout_seconds: int | None = Field(default=None, ge=1)
    copy_retries: int = Field(default=5, ge=0, le=1000)
    copy_retry_wait_seconds: int = Field(default=10, ge=0, le=3600)


class WimDeployConfig(BaseModel):
    """Main WimDeploy configuration."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    staging: StagingConfig = Field(default_factory=StagingConfig)
    imaging: ImagingConfig = Field(default_factory=ImagingConfig)
    session_directory: Path = Field(default_factory=lambda: Path.home() / ".wimdeploy" / "sessions")

    @field_validator("session_directory", mode="before")
    @classmethod
    def expand_session_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser().resolve()

    @classmethod
    def load(cls, config_path: Path | None = None) -> WimDeployConfig:
        """Load configuration from file or create default."""
        if config_path is None:
            config_path = Path.home() / ".wimdeploy" / "config.json"

        if config_path.exists():
            with open(config_path) as f:
                data = json.load(f)
            return cls.model_validate(data)

        return cls()

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to file."""
        if config_path is None:
            config_path = Path.home() / ".wimdeploy" / "config.json"

        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

    def ensure_directories(self) -> None:
        """Create all required directories."""
        self.logging.log_directory.mkdir(parents=True, exist_ok=True)
        self.session_directory.mkdir(parents=True, exist_ok=True)
        self.staging.directory.mkdir(parents=True, exist_ok=True)

    def get_session_file(self) -> Path:
        """Get path for a new session log file."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return self.session_directory / f"session_{timestamp}.json"


def get_default_config() -> WimDeployConfig:
    """Get the default configuration."""
    return WimDeployConfig()


def load_config(config_path: Path | None = None) -> WimDeployConfig:
    """Load or create configuration."""
    config = WimDeployConfig.load(config_path)
    config.ensure_directories()
    return config
