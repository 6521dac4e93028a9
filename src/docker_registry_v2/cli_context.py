"""
CLI Context for managing command dependencies.

Holds the settings (and optional transport) shared by one CLI invocation and
creates registry clients from them, avoiding global state.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Optional

import httpx

from .client import RegistryClientV2
from .reference import RegistryImage
from .settings import ClientSettings, create_settings_from_env


@dataclass
class CLIContext:
    """
    Shared context for CLI commands.

    Attributes:
        settings: Client settings from the environment plus CLI overrides
        transport: Optional httpx transport handed to every client
        verbose: Whether detailed output was requested
    """
    settings: ClientSettings
    transport: Optional[httpx.BaseTransport] = None
    verbose: bool = False

    @classmethod
    def from_env(
        cls,
        username: Optional[str] = None,
        password: Optional[str] = None,
        insecure: bool = False,
        verbose: bool = False,
    ) -> CLIContext:
        """
        Create CLI context from environment variables and CLI overrides.

        Options given on the command line win over ``REGISTRY_*`` variables.
        """
        settings = create_settings_from_env()
        overrides = {}
        if username is not None:
            overrides["username"] = username
        if password is not None:
            overrides["password"] = password
        if insecure:
            overrides["insecure"] = True
        if overrides:
            settings = dataclasses.replace(settings, **overrides)
        return cls(settings=settings, verbose=verbose)

    def client_for(self, repo: RegistryImage, **overrides) -> RegistryClientV2:
        """Create a client for ``repo``; the caller closes it."""
        return RegistryClientV2(repo=repo, settings=self.settings, transport=self.transport, **overrides)
