"""
Configuration management for Auto-Xcode.
"""

import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Automation bridge settings
    script_host: str = Field(default="osascript", json_schema_extra={"env": "AUTO_XCODE_SCRIPT_HOST"})
    script_dialect: str = Field(default="JavaScript", json_schema_extra={"env": "AUTO_XCODE_SCRIPT_DIALECT"})
    bridge_timeout: float = Field(default=30.0, json_schema_extra={"env": "AUTO_XCODE_BRIDGE_TIMEOUT"})
    # Test and clean scripts block inside the IDE until the action completes
    action_timeout: float = Field(default=3600.0, json_schema_extra={"env": "AUTO_XCODE_ACTION_TIMEOUT"})

    # External tools
    log_decoder_command: str = Field(default="xclogparser", json_schema_extra={"env": "AUTO_XCODE_LOG_DECODER_COMMAND"})
    result_tool_command: List[str] = Field(default_factory=lambda: ["xcrun", "xcresulttool"])
    defaults_command: str = Field(default="defaults", json_schema_extra={"env": "AUTO_XCODE_DEFAULTS_COMMAND"})
    frame_extractor_candidates: List[str] = Field(
        default_factory=lambda: [
            "/opt/homebrew/bin/ffmpeg",  # Homebrew on Apple Silicon
            "/usr/local/bin/ffmpeg",  # Homebrew on Intel
            "ffmpeg",
        ]
    )

    # Artifact locations
    artifact_root_override: Optional[str] = Field(default=None, json_schema_extra={"env": "AUTO_XCODE_ARTIFACT_ROOT"})
    attachment_export_dir: str = Field(
        default_factory=lambda: str(Path(tempfile.gettempdir()) / "xcode-mcp-attachments"),
        json_schema_extra={"env": "AUTO_XCODE_ATTACHMENT_EXPORT_DIR"},
    )

    # Attachment selection
    screenshot_order_threshold: float = Field(default=60.0, json_schema_extra={"env": "AUTO_XCODE_SCREENSHOT_ORDER_THRESHOLD"})

    # Logging settings
    log_level: str = Field(default="INFO", json_schema_extra={"env": "AUTO_XCODE_LOG_LEVEL"})

    model_config = SettingsConfigDict(
        env_prefix="AUTO_XCODE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore unexpected environment variables
    )


# Global settings instance with error handling to prevent import-time failures
try:
    _settings = Settings()
except Exception as e:
    # A malformed environment must not stop the CLI from showing help
    import warnings

    warnings.warn(f"Failed to load settings: {e}. Using default configuration.")
    _settings = Settings.model_construct()

settings: Settings = _settings
