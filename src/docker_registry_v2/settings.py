"""
Settings and configuration for the registry client.

Centralizes configuration values and provides validation with fail-fast behavior.
Loads settings from environment variables at client construction time.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Tuple

__all__ = ["ClientSettings", "create_settings_from_env", "VERSION", "DEFAULT_USER_AGENT"]

VERSION = "0.1.0"
DEFAULT_USER_AGENT = f"docker-registry-v2/{VERSION}"


@dataclass(frozen=True)
class ClientSettings:
    """
    Configuration settings for a RegistryClientV2.

    Credentials:
        username: Username for Basic auth or the token endpoint
        password: Password for Basic auth or the token endpoint
        token: Pre-acquired Bearer token, sent until the first login replaces it

    Transport:
        insecure: Skip TLS verification and default realms to http
        scheme: Force "http" or "https" for the registry index
        user_agent: User-Agent header sent on every request
        http_timeout_s: Read/write timeout in seconds
        connect_timeout_s: Connect timeout in seconds
        http_retry: Connect-failure retries for GET/HEAD (0=no retry)
        max_redirects: Maximum requests per blob redirect chain (at least 1)

    Manifest negotiation:
        accept_manifest_lists: Accept manifest lists / OCI indexes
        accept_oci_manifests: Accept OCI image manifests
        max_schema_version: Highest manifest schemaVersion accepted
            (None: 2 when OCI manifests are accepted, else 1)
        scopes: Default actions for the repository auth scope
    """
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    insecure: bool = False
    scheme: Optional[str] = None
    accept_manifest_lists: bool = False
    accept_oci_manifests: bool = False
    max_schema_version: Optional[int] = None
    user_agent: str = DEFAULT_USER_AGENT
    scopes: Tuple[str, ...] = ("pull",)
    http_timeout_s: float = 30.0
    connect_timeout_s: float = 10.0
    http_retry: int = 0
    max_redirects: int = 3

    def __post_init__(self):
        """Validate settings on construction."""
        if self.scheme is not None and self.scheme not in ("http", "https"):
            raise ValueError(f"scheme must be 'http' or 'https', got {self.scheme!r}")

        if self.max_schema_version is not None and self.max_schema_version not in (1, 2):
            raise ValueError(f"max_schema_version must be 1 or 2, got {self.max_schema_version}")

        if not self.scopes:
            raise ValueError("scopes must not be empty")

        if self.http_timeout_s <= 0:
            raise ValueError(f"http_timeout_s must be positive, got {self.http_timeout_s}")

        if self.connect_timeout_s <= 0:
            raise ValueError(f"connect_timeout_s must be positive, got {self.connect_timeout_s}")

        if self.http_retry < 0:
            raise ValueError(f"http_retry must be non-negative, got {self.http_retry}")

        if self.max_redirects < 1:
            raise ValueError(f"max_redirects must be at least 1, got {self.max_redirects}")

    @property
    def effective_max_schema_version(self) -> int:
        if self.max_schema_version is not None:
            return self.max_schema_version
        return 2 if self.accept_oci_manifests else 1


def create_settings_from_env() -> ClientSettings:
    """
    Load client settings from environment variables.

    Environment Variables:
        - REGISTRY_USERNAME (optional)
        - REGISTRY_PASSWORD (optional)
        - REGISTRY_TOKEN (optional)
        - REGISTRY_INSECURE (default: false)
        - REGISTRY_SCHEME (optional, http|https)
        - REGISTRY_ACCEPT_MANIFEST_LISTS (default: false)
        - REGISTRY_ACCEPT_OCI_MANIFESTS (default: false)
        - REGISTRY_MAX_SCHEMA_VERSION (optional, 1|2)
        - REGISTRY_USER_AGENT (default: docker-registry-v2/<version>)
        - REGISTRY_SCOPES (default: pull, comma separated)
        - REGISTRY_HTTP_TIMEOUT (default: 30.0)
        - REGISTRY_CONNECT_TIMEOUT (default: 10.0)
        - REGISTRY_HTTP_RETRY (default: 0)
        - REGISTRY_MAX_REDIRECTS (default: 3)

    Returns:
        ClientSettings object with validated configuration

    Raises:
        ValueError: If configuration is invalid

    Note:
        Creates a fresh ClientSettings instance every time (no caching).
    """
    def str_to_bool(value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    def get_float(key: str, default: float) -> float:
        value = os.getenv(key)
        return float(value) if value else default

    def get_int(key: str, default: int) -> int:
        value = os.getenv(key)
        return int(value) if value else default

    max_schema = os.getenv("REGISTRY_MAX_SCHEMA_VERSION")
    scopes_env = os.getenv("REGISTRY_SCOPES")
    scopes = tuple(s.strip() for s in scopes_env.split(",") if s.strip()) if scopes_env else ("pull",)

    return ClientSettings(
        username=os.getenv("REGISTRY_USERNAME"),
        password=os.getenv("REGISTRY_PASSWORD"),
        token=os.getenv("REGISTRY_TOKEN"),
        insecure=str_to_bool(os.getenv("REGISTRY_INSECURE", "false")),
        scheme=os.getenv("REGISTRY_SCHEME") or None,
        accept_manifest_lists=str_to_bool(os.getenv("REGISTRY_ACCEPT_MANIFEST_LISTS", "false")),
        accept_oci_manifests=str_to_bool(os.getenv("REGISTRY_ACCEPT_OCI_MANIFESTS", "false")),
        max_schema_version=int(max_schema) if max_schema else None,
        user_agent=os.getenv("REGISTRY_USER_AGENT") or DEFAULT_USER_AGENT,
        scopes=scopes,
        http_timeout_s=get_float("REGISTRY_HTTP_TIMEOUT", 30.0),
        connect_timeout_s=get_float("REGISTRY_CONNECT_TIMEOUT", 10.0),
        http_retry=get_int("REGISTRY_HTTP_RETRY", 0),
        max_redirects=get_int("REGISTRY_MAX_REDIRECTS", 3),
    )
