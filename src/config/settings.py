"""
Configuration settings for the HaasOnline lab client.

**Conceptual**: This module provides strongly-typed configuration objects that
load from environment variables (via .env files). Settings are validated at
construction, so a missing server address or credential fails at startup
rather than halfway through a lab run.

**Why centralized config?**
  - Single source of truth for server address and credentials.
  - Easy to test (inject fake settings instead of reading from environment).
  - Secrets management (passwords loaded from .env, never hardcoded).

This module uses python-dotenv to load .env files and dataclasses for type safety.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env from project root (no-op if the file does not exist)
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


SUPPORTED_PROTOCOLS = ("http", "https")


@dataclass(frozen=True)
class HaasSettings:
    """
    Connection settings for a HaasOnline trade server.

    **Conceptual**: The server is addressed by protocol, host and port, and
    a session is opened with an email/password pair. Everything downstream
    (accessors, labs, results) runs against one authenticated session built
    from these values.

    **Security note**: The password is a secret and should:
      - Be loaded from environment variables (HAAS_PASSWORD).
      - Never be hardcoded or committed (use .env in .gitignore).
      - Never be logged (it is excluded from repr).

    Attributes:
        address: Server host name or IP (e.g., "127.0.0.1").
        port: Server port, 1..65535 (default 8090).
        protocol: "http" or "https" (default "http").
        email: Account email used to log in. REQUIRED.
        password: Account password. REQUIRED.
        timeout_seconds: HTTP request timeout in seconds (default 30).
    """
    address: str
    email: str
    password: str
    port: int = 8090
    protocol: str = "http"
    timeout_seconds: int = 30

    def __post_init__(self):
        """Validate settings after initialization."""
        if not self.address:
            raise ValueError(
                "HAAS_ADDRESS is required but not set. "
                "Please set it in your .env file or environment variables."
            )
        if not self.email or not self.password:
            raise ValueError(
                "HAAS_EMAIL and HAAS_PASSWORD are required but not set. "
                "Please set them in your .env file or environment variables."
            )
        if not 0 < self.port < 65536:
            raise ValueError(f"HAAS_PORT must be in 1..65535, got: {self.port}")
        if self.protocol not in SUPPORTED_PROTOCOLS:
            raise ValueError(
                f"HAAS_PROTOCOL must be one of {SUPPORTED_PROTOCOLS}, got: {self.protocol}"
            )
        if self.timeout_seconds <= 0:
            raise ValueError(
                f"HAAS_TIMEOUT_SECONDS must be positive, got: {self.timeout_seconds}"
            )

    def __repr__(self) -> str:
        return (
            f"HaasSettings(address={self.address!r}, port={self.port}, "
            f"protocol={self.protocol!r}, email={self.email!r}, "
            f"timeout_seconds={self.timeout_seconds})"
        )

    @property
    def base_url(self) -> str:
        """Server root URL, e.g. "http://127.0.0.1:8090"."""
        return f"{self.protocol}://{self.address}:{self.port}"

    @classmethod
    def from_env(cls) -> "HaasSettings":
        """
        Load HaasOnline settings from environment variables.

        **Environment variables**:
          - HAAS_ADDRESS (required): Server host.
          - HAAS_EMAIL (required): Login email.
          - HAAS_PASSWORD (required): Login password.
          - HAAS_PORT (optional): Server port. Defaults to 8090.
          - HAAS_PROTOCOL (optional): "http" or "https". Defaults to "http".
          - HAAS_TIMEOUT_SECONDS (optional): HTTP timeout. Defaults to 30.

        Returns:
            HaasSettings object with values loaded from environment.

        Raises:
            ValueError: If a required variable is missing or a value is invalid.

        Usage example:
            >>> # In .env file:
            >>> # HAAS_ADDRESS=127.0.0.1
            >>> # HAAS_EMAIL=me@example.com
            >>> # HAAS_PASSWORD=secret
            >>>
            >>> settings = HaasSettings.from_env()
            >>> print(settings.base_url)  # "http://127.0.0.1:8090"
        """
        port_str = os.getenv("HAAS_PORT", "8090")
        timeout_str = os.getenv("HAAS_TIMEOUT_SECONDS", "30")

        try:
            port = int(port_str)
        except ValueError:
            raise ValueError(f"HAAS_PORT must be an integer, got: {port_str}")

        try:
            timeout_seconds = int(timeout_str)
        except ValueError:
            raise ValueError(
                f"HAAS_TIMEOUT_SECONDS must be an integer, got: {timeout_str}"
            )

        return cls(
            address=os.getenv("HAAS_ADDRESS", ""),
            email=os.getenv("HAAS_EMAIL", ""),
            password=os.getenv("HAAS_PASSWORD", ""),
            port=port,
            protocol=os.getenv("HAAS_PROTOCOL", "http").lower(),
            timeout_seconds=timeout_seconds,
        )


@dataclass(frozen=True)
class Settings:
    """
    Top-level settings object.

    Attributes:
        haas: HaasOnline server settings. None if the server is not configured.
        log_level: Level name passed to init_logger (HAAS_LOG_LEVEL, default "INFO").
    """
    haas: Optional[HaasSettings] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, require_haas: bool = False) -> "Settings":
        """
        Load global settings from environment variables.

        Args:
            require_haas: If True, raise error if server settings are missing.

        Raises:
            ValueError: If require_haas=True and the server is not configured.
        """
        haas_settings = None
        try:
            haas_settings = HaasSettings.from_env()
        except ValueError as e:
            if require_haas:
                raise ValueError(
                    f"HaasOnline settings are required but could not be loaded: {e}"
                )

        return cls(
            haas=haas_settings,
            log_level=os.getenv("HAAS_LOG_LEVEL", "INFO").upper(),
        )


_default_settings: Optional[Settings] = None


def get_settings(require_haas: bool = False) -> Settings:
    """
    Get the global settings singleton.

    Settings are loaded from environment on first call, then cached. Tests
    should build their own HaasSettings instead of going through here.

    Raises:
        ValueError: If require_haas=True and the server is not configured.
    """
    global _default_settings

    if _default_settings is None:
        _default_settings = Settings.from_env(require_haas=require_haas)

    if require_haas and _default_settings.haas is None:
        raise ValueError(
            "HaasOnline settings are required but not configured. "
            "Please set HAAS_ADDRESS, HAAS_EMAIL and HAAS_PASSWORD in your .env file."
        )

    return _default_settings


def reset_settings():
    """Reset the global settings singleton (for testing)."""
    global _default_settings
    _default_settings = None
