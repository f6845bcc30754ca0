"""Shared configuration classes for punchlist.

This module defines configuration classes used by the offline client
(API connection, sync tuning) and read from the CLI config file.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any


@dataclass
class ServerConfig:
    """Configuration for connecting to a punchlist API server.

    Attributes:
        server_url: Base URL of the server (e.g., "https://punch.example.com").
        token: Optional bearer token forwarded on every request.
        timeout: Request/connection timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str | None = None
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")


@dataclass
class SyncSettings:
    """Tuning knobs for the offline sync engine.

    Attributes:
        max_retries: Retry ceiling given to newly queued operations.
        initial_backoff: Delay before the first retry of a failed upload (0 disables).
        max_backoff: Upper bound for the upload retry delay.
        backoff_multiplier: Growth factor between consecutive retry delays.
        jitter: Proportional random spread applied to each delay (0.1 = +/-10%).
        fetch_retries: In-call retries for network failures while downloading.
        fetch_backoff: Initial delay between those in-call retries.
        connectivity_interval: Seconds between reachability probes.
    """

    max_retries: int = 3
    initial_backoff: float = 2.0
    max_backoff: float = 300.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.1
    fetch_retries: int = 2
    fetch_backoff: float = 0.5
    connectivity_interval: float = 5.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_backoff < 0 or self.max_backoff < 0:
            raise ValueError("backoff delays must be >= 0")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncSettings:
        """Build settings from a config mapping, ignoring unknown keys."""
        values: dict[str, Any] = {}
        for f in fields(cls):
            if data.get(f.name) is not None:
                # Coerce to the default's type (config files store strings)
                values[f.name] = type(f.default)(data[f.name])
        return cls(**values)
