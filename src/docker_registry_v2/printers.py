"""
Human-readable output formatting.

All CLI output goes through here, keeping the commands thin.
"""
from __future__ import annotations

import json
from typing import Any, List, Sequence

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .client import ManifestResult, PutManifestResult
from .models import TagList
from .transport import RegistryResponse

_console = Console(soft_wrap=True, highlight=False)
_err_console = Console(stderr=True, soft_wrap=True, highlight=False)

# Headers worth showing for a blob response chain
_BLOB_HEADERS = (
    "docker-content-digest",
    "content-length",
    "content-type",
    "location",
)


def print_json(data: Any) -> None:
    _console.print_json(json.dumps(data), indent=2)


def print_error(exc: BaseException) -> None:
    """Print an exception as a one-line error on stderr."""
    _err_console.print(Text.assemble(("Error: ", "bold red"), f"{type(exc).__name__}: {exc}"))


def print_ping(resp: RegistryResponse) -> None:
    _console.print(f"[bold]Status:[/] {resp.status_code}")
    version = resp.headers.get("docker-distribution-api-version")
    if version:
        _console.print(f"[bold]API version:[/] {version}")
    challenge = resp.headers.get("www-authenticate")
    if challenge:
        _console.print(f"[bold]Challenge:[/] {challenge}")


def print_tags(tags: TagList) -> None:
    """Print a repository's tags, one row each."""
    names: List[str] = tags.tags or []
    if not names:
        _console.print(f"[dim]No tags in {tags.name}[/]")
        return
    table = Table(title=tags.name)
    table.add_column("Tag", style="cyan", no_wrap=True)
    for name in names:
        table.add_row(name)
    _console.print(table)


def print_manifest(result: ManifestResult, verbose: bool = False) -> None:
    """
    Print a manifest digest and document.

    Args:
        result: Fetched manifest
        verbose: Also show the response content type
    """
    _console.print(f"[bold]Digest:[/] {result.digest}")
    if verbose:
        _console.print(f"[bold]Content-Type:[/] {result.response.headers.get('content-type', '')}")
    print_json(result.manifest.model_dump(mode="json", by_alias=True, exclude_none=True))


def print_response_chain(responses: Sequence[RegistryResponse]) -> None:
    """Print status and interesting headers for each hop of a redirect chain."""
    for i, resp in enumerate(responses):
        _console.print(f"[bold]#{i}[/] {resp.status_code} {resp.method} {resp.url}")
        for name in _BLOB_HEADERS:
            value = resp.headers.get(name)
            if value is not None:
                _console.print(f"    {name}: {value}")


def print_upload(digest: str, size: int) -> None:
    _console.print(f"[bold]Uploaded:[/] {digest} ({_format_bytes(size)})")


def print_put_manifest(result: PutManifestResult) -> None:
    _console.print(f"[bold]Digest:[/] {result.digest or 'unknown'}")
    if result.location:
        _console.print(f"[bold]Location:[/] {result.location}")


def print_message(message: str) -> None:
    _console.print(message)


def _format_bytes(size: int) -> str:
    """Format byte count in human-readable form."""
    value = float(size)
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if value < 1024.0:
            return f"{value:.1f} {unit}" if unit != 'B' else f"{int(value)} B"
        value /= 1024.0
    return f"{value:.1f} PB"
