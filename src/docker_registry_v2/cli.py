"""
Docker Registry v2 CLI

Thin commands over the client library:
- parse-index / parse-repo / parse-ref: Show how a string is parsed
- ping / supports-v2: Probe a registry's v2 API
- tags: List a repository's tags
- manifest: Fetch and verify a manifest
- head-blob / download-blob: Inspect or stream a verified blob
- delete-manifest: Delete a manifest
- upload-blob / put-manifest: Push content
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer

from .cli_context import CLIContext
from .digest import compute_digest
from .mappers import run_and_exit
from .printers import (
    print_json, print_manifest, print_message, print_ping, print_put_manifest,
    print_response_chain, print_tags, print_upload,
)
from .reference import RegistryImage, parse_index, parse_repo, parse_repo_and_ref

app = typer.Typer(name="docker-registry-v2", help="Docker Registry HTTP API v2 client")


@app.callback()
def main(
    ctx: typer.Context,
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Registry username (or REGISTRY_USERNAME)"),
    password: Optional[str] = typer.Option(None, "--password", "-p", help="Registry password (or REGISTRY_PASSWORD)"),
    insecure: bool = typer.Option(False, "--insecure", "-k", help="Skip TLS verification"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log HTTP traffic"),
) -> None:
    """Docker Registry HTTP API v2 client."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    def _context() -> CLIContext:
        return CLIContext.from_env(username=username, password=password, insecure=insecure, verbose=verbose)

    ctx.obj = run_and_exit(_context)


def _require_digest(image: RegistryImage, ref: str) -> str:
    if not image.digest:
        raise ValueError(f"reference must include a digest (REPO@DIGEST): {ref}")
    return image.digest


@app.command("parse-index")
def parse_index_cmd(
    index: Optional[str] = typer.Argument(None, help="Index name or URL (default: docker.io)"),
) -> None:
    """Parse a registry index name."""
    run_and_exit(lambda: print_json(parse_index(index).to_dict()))


@app.command("parse-repo")
def parse_repo_cmd(
    repo: str = typer.Argument(..., help="Repository, e.g. localhost:5000/blarg"),
    index: Optional[str] = typer.Option(None, "--index", help="Default index for bare names"),
) -> None:
    """Parse a repository string."""
    run_and_exit(lambda: print_json(parse_repo(repo, index).to_dict()))


@app.command("parse-ref")
def parse_ref_cmd(
    ref: str = typer.Argument(..., help="Reference, e.g. alpine:3.18 or alpine@sha256:..."),
    index: Optional[str] = typer.Option(None, "--index", help="Default index for bare names"),
) -> None:
    """Parse a repository reference with tag or digest."""
    run_and_exit(lambda: print_json(parse_repo_and_ref(ref, index).to_dict()))


@app.command()
def ping(
    ctx: typer.Context,
    repo: str = typer.Argument(..., help="Repository on the registry to ping"),
) -> None:
    """Ping a registry's /v2/ endpoint without logging in."""

    def _ping() -> None:
        with ctx.obj.client_for(parse_repo(repo)) as client:
            print_ping(client.ping())

    run_and_exit(_ping)


@app.command("supports-v2")
def supports_v2(
    ctx: typer.Context,
    repo: str = typer.Argument(..., help="Repository on the registry to check"),
) -> None:
    """Check whether a registry supports the v2 API."""

    def _supports() -> None:
        with ctx.obj.client_for(parse_repo(repo)) as client:
            supported = client.supports_v2()
            print_message(f"{client.url}: {'supports' if supported else 'does not support'} v2")

    run_and_exit(_supports)


@app.command()
def tags(
    ctx: typer.Context,
    repo: str = typer.Argument(..., help="Repository to list"),
) -> None:
    """List tags in a repository."""

    def _tags() -> None:
        with ctx.obj.client_for(parse_repo(repo)) as client:
            print_tags(client.list_tags())

    run_and_exit(_tags)


@app.command()
def manifest(
    ctx: typer.Context,
    ref: str = typer.Argument(..., help="Reference, e.g. alpine:3.18"),
    lists: bool = typer.Option(False, "--lists", help="Accept manifest lists and OCI indexes"),
    oci: bool = typer.Option(False, "--oci", help="Accept OCI manifests"),
) -> None:
    """Fetch and verify an image manifest."""

    def _manifest() -> None:
        image = parse_repo_and_ref(ref)
        with ctx.obj.client_for(image) as client:
            result = client.get_manifest(
                image.ref,
                accept_manifest_lists=lists or None,
                accept_oci_manifests=oci or None,
            )
            print_manifest(result, verbose=ctx.obj.verbose)

    run_and_exit(_manifest)


@app.command("head-blob")
def head_blob(
    ctx: typer.Context,
    ref: str = typer.Argument(..., help="Blob reference, REPO@DIGEST"),
) -> None:
    """Show the response chain for a blob HEAD request."""

    def _head() -> None:
        image = parse_repo_and_ref(ref)
        digest = _require_digest(image, ref)
        with ctx.obj.client_for(image) as client:
            print_response_chain(client.head_blob(digest))

    run_and_exit(_head)


@app.command("download-blob")
def download_blob(
    ctx: typer.Context,
    ref: str = typer.Argument(..., help="Blob reference, REPO@DIGEST"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to file instead of stdout"),
) -> None:
    """Stream a blob, verifying its digest."""

    def _download() -> None:
        image = parse_repo_and_ref(ref)
        digest = _require_digest(image, ref)
        with ctx.obj.client_for(image) as client:
            with client.create_blob_read_stream(digest) as blob:
                if output is None:
                    out = typer.get_binary_stream("stdout")
                    for chunk in blob:
                        out.write(chunk)
                    out.flush()
                    return
                try:
                    with open(output, "wb") as f:
                        for chunk in blob:
                            f.write(chunk)
                except Exception:
                    output.unlink(missing_ok=True)
                    raise
        print_message(f"Wrote {digest} to {output}")

    run_and_exit(_download)


@app.command("delete-manifest")
def delete_manifest(
    ctx: typer.Context,
    ref: str = typer.Argument(..., help="Manifest reference, usually REPO@DIGEST"),
) -> None:
    """Delete a manifest."""

    def _delete() -> None:
        image = parse_repo_and_ref(ref)
        with ctx.obj.client_for(image) as client:
            client.delete_manifest(image.ref)
        print_message(f"Deleted {image.local_name} {image.ref}")

    run_and_exit(_delete)


@app.command("upload-blob")
def upload_blob(
    ctx: typer.Context,
    repo: str = typer.Argument(..., help="Repository to upload to"),
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="File to upload"),
) -> None:
    """Upload a file as a blob."""

    def _upload() -> None:
        data = file.read_bytes()
        digest = compute_digest(data)
        with ctx.obj.client_for(parse_repo(repo)) as client:
            client.blob_upload(digest, data, len(data))
        print_upload(digest, len(data))

    run_and_exit(_upload)


@app.command("put-manifest")
def put_manifest(
    ctx: typer.Context,
    ref: str = typer.Argument(..., help="Target reference, REPO:TAG"),
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Manifest JSON file"),
    media_type: Optional[str] = typer.Option(None, "--media-type", help="Manifest Content-Type"),
) -> None:
    """Upload a manifest."""

    def _put() -> None:
        image = parse_repo_and_ref(ref)
        data = file.read_bytes()
        doc = json.loads(data)
        if not isinstance(doc, dict):
            raise ValueError(f"{file} does not hold a JSON manifest object")
        with ctx.obj.client_for(image) as client:
            result = client.put_manifest(
                data,
                image.ref,
                media_type=media_type or doc.get("mediaType"),
                schema_version=doc.get("schemaVersion"),
            )
        print_put_manifest(result)

    run_and_exit(_put)


if __name__ == "__main__":
    app()
