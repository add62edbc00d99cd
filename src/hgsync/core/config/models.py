"""
Configuration data models for hgsync.

These models define the structure of .hgsync.json and
~/.config/hgsync/config.json files, with validation via Pydantic.
"""

import sys

from pydantic import BaseModel, ConfigDict, Field


class TimeoutConfig(BaseModel):
    """
    Time budgets, in seconds, per class of hg invocation.

    Local operations are generous because slow disks and virus scanners can
    stall hg for minutes. Network operations get a larger ceiling still.
    Clone has no ceiling at all (it stays cancellable).
    """
    local_seconds: int = Field(
        default=15 * 60,
        ge=1,
        description="Working-copy and query operations"
    )
    merge_seconds: int = Field(
        default=15 * 60,
        ge=1,
        description="hg merge"
    )
    remote_seconds: int = Field(
        default=40 * 60,
        ge=1,
        description="pull and push"
    )
    verify_seconds: int = Field(
        default=60 * 60,
        ge=1,
        description="hg verify"
    )
    diagnostic_seconds: int = Field(
        default=30,
        ge=1,
        description="Queries made while gathering diagnostics"
    )
    init_seconds: int = Field(
        default=20,
        ge=1,
        description="hg init and hg root"
    )


class NetworkConfig(BaseModel):
    """Settings for reachability checks and proxy discovery."""
    proxy_probe_url: str = Field(
        default="https://www.mercurial-scm.org",
        description="Known-good URL fetched to discover an active proxy"
    )
    control_host: str = Field(
        default="google.com",
        description="Public host pinged to tell 'ping is blocked' from 'network is down'"
    )
    ping_timeout_seconds: int = Field(
        default=3,
        ge=1,
        description="Wait for each ping"
    )


class HgSyncConfig(BaseModel):
    """
    Top-level hgsync configuration.

    Loaded from defaults, user config, project config, and env vars.

    Example:
        >>> config = HgSyncConfig(timeouts=TimeoutConfig(remote_seconds=600))
        >>> config.timeouts.remote_seconds
        600
    """
    hg_executable: str = Field(
        default="hg",
        description="Name or path of the Mercurial executable"
    )
    timeouts: TimeoutConfig = Field(
        default_factory=TimeoutConfig,
        description="Time budgets per class of operation"
    )
    network: NetworkConfig = Field(
        default_factory=NetworkConfig,
        description="Reachability and proxy settings"
    )
    diagnostics: bool = Field(
        default=False,
        description="Probe for locks before and after every hg invocation"
    )
    lock_process_name: str = Field(
        default="hg.exe" if sys.platform == "win32" else "hg",
        description="Process whose presence means a lock may still be in use"
    )
    max_log_lines: int = Field(
        default=2_000_000,
        ge=1,
        description="Upper bound on lines read from a single log query"
    )

    model_config = ConfigDict(
        extra="allow",  # Allow extra fields for forward compatibility
        validate_assignment=True,
    )
