"""
Docker image reference parsing.

Parses index names and ``[INDEX/]REPO[:TAG|@DIGEST]`` strings into normalized
structures, mimicking docker.git's ``registry/config.go#NewRepositoryInfo``
validation rules (with the addition that a scheme may prefix the index and
that the tag/digest is kept).
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Union

from .errors import ParseError
from .media_types import (
    DEFAULT_INDEX_NAME,
    DEFAULT_INDEX_URL,
    DEFAULT_LOGIN_SERVERNAME,
    DEFAULT_TAG,
)

__all__ = [
    "RegistryIndex",
    "RegistryImage",
    "parse_index",
    "parse_repo",
    "parse_repo_and_ref",
    "parse_repo_and_tag",
    "url_from_index",
    "is_localhost",
    "split_into_two",
]

VALID_NS = re.compile(r"^[a-z0-9._-]*$")
VALID_REPO = re.compile(r"^[a-z0-9_/.-]*$")


@dataclass(frozen=True)
class RegistryIndex:
    """
    A registry host.

    Attributes:
        name: Host name, optionally with port (e.g. "docker.io", "localhost:5000")
        official: True only for the Docker Hub index
        scheme: "http" or "https" when given explicitly, else None
    """
    name: str
    official: bool = False
    scheme: Optional[str] = None

    def __post_init__(self):
        if self.official and self.scheme == "http":
            raise ParseError(f"invalid index, HTTP to official index is disallowed: {self.name}")

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {"name": self.name, "official": self.official}
        if self.scheme:
            data["scheme"] = self.scheme
        return data


@dataclass(frozen=True)
class RegistryImage:
    """
    A fully resolved repository reference.

    Attributes:
        index: The registry index the repository lives on
        remote_name: Path used in API calls (e.g. "library/busybox")
        local_name: Name as shown by docker (e.g. "busybox")
        canonical_name: Fully qualified name (e.g. "docker.io/busybox")
        official: True for "library/" repositories on the official index
        tag: Tag, if one was given or defaulted
        digest: Digest, if one was given; authoritative when both are set
    """
    index: RegistryIndex
    remote_name: str
    local_name: str
    canonical_name: str
    official: bool = False
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def ref(self) -> Optional[str]:
        """Reference used to address a manifest: digest wins over tag."""
        return self.digest or self.tag

    def with_ref(self, tag: Optional[str] = None, digest: Optional[str] = None) -> RegistryImage:
        return replace(self, tag=tag, digest=digest)

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {
            "index": self.index.to_dict(),
            "official": self.official,
            "remoteName": self.remote_name,
            "localName": self.local_name,
            "canonicalName": self.canonical_name,
        }
        if self.tag is not None:
            data["tag"] = self.tag
        if self.digest is not None:
            data["digest"] = self.digest
        return data


def split_into_two(s: str, sep: str) -> List[str]:
    """Split on the first ``sep``; a single-element list when absent."""
    idx = s.find(sep)
    if idx == -1:
        return [s]
    return [s[:idx], s[idx + 1:]]


def _looks_like_host(s: str) -> bool:
    return "." in s or ":" in s or s == "localhost"


def parse_index(arg: Optional[str] = None) -> RegistryIndex:
    """
    Parse a docker index name or index URL.

    Examples:
        docker.io                       (no scheme)
        index.docker.io                 (normalized to docker.io)
        https://docker.io
        http://localhost:5000
        https://index.docker.io/v1/     (special case, see below)

    ``docker login`` sends "https://index.docker.io/v1/" as the server name by
    default; that value maps to the default index like an empty argument.

    Raises:
        ParseError: On an unknown scheme, empty host, a host that does not look
            like one, a trailing repo path, or HTTP to the official index.
    """
    if not arg or arg == DEFAULT_LOGIN_SERVERNAME:
        return RegistryIndex(name=DEFAULT_INDEX_NAME, official=True)

    scheme = None
    proto_sep = arg.find("://")
    if proto_sep != -1:
        scheme = arg[:proto_sep]
        if scheme not in ("http", "https"):
            raise ParseError(f'invalid index scheme, must be "http" or "https": {arg}')
        index_name = arg[proto_sep + 3:]
    else:
        index_name = arg

    if not index_name:
        raise ParseError(f"invalid index, empty host: {arg}")
    if not _looks_like_host(index_name):
        raise ParseError(f'invalid index, "{index_name}" does not look like a valid host: {arg}')

    # URL builders often add a default "/" path, e.g. "https://docker.io/"
    if index_name.endswith("/"):
        index_name = index_name[:-1]
    if "/" in index_name:
        raise ParseError(f"invalid index, trailing repo: {arg}")

    # Per docker.git's `ValidateIndexName`
    if index_name == "index." + DEFAULT_INDEX_NAME:
        index_name = DEFAULT_INDEX_NAME

    official = index_name == DEFAULT_INDEX_NAME
    if official and scheme == "http":
        raise ParseError(f"invalid index, HTTP to official index is disallowed: {arg}")

    return RegistryIndex(name=index_name, official=official, scheme=scheme)


def _resolve_default_index(default_index: Union[str, RegistryIndex, None]) -> RegistryIndex:
    if default_index is None:
        return parse_index()
    if isinstance(default_index, str):
        return parse_index(default_index)
    return default_index


def _validate_namespace(ns: str) -> None:
    if len(ns) < 2 or len(ns) > 255:
        raise ParseError(f"invalid repository namespace, must be between 2 and 255 characters: {ns}")
    if not VALID_NS.match(ns):
        raise ParseError(f"invalid repository namespace, may only contain [a-z0-9._-] characters: {ns}")
    if ns.startswith("-") or ns.endswith("-"):
        raise ParseError(f"invalid repository namespace, cannot start or end with a hyphen: {ns}")
    if "--" in ns:
        raise ParseError(f"invalid repository namespace, cannot contain consecutive hyphens: {ns}")


def parse_repo(arg: str, default_index: Union[str, RegistryIndex, None] = None) -> RegistryImage:
    """
    Parse a docker repo string: ``[INDEX/]REPO``.

    Examples:
        busybox
        google/python
        docker.io/ubuntu
        localhost:5000/blarg
        http://localhost:5000/blarg

    Args:
        arg: Repository string (no tag or digest)
        default_index: Index used when ``arg`` carries none. Either an index
            string (e.g. "https://myreg.example.com") or a parsed RegistryIndex.
            Defaults to docker.io.

    Returns:
        RegistryImage without tag or digest

    Raises:
        ParseError: If the index, namespace or name is invalid
    """
    proto_sep = arg.find("://")
    if proto_sep != -1:
        # Repo with a protocol, e.g. "https://host/repo"
        slash = arg.find("/", proto_sep + 3)
        if slash == -1:
            raise ParseError(f'invalid repository name, no "/REPO" after hostname: {arg}')
        index = parse_index(arg[:slash])
        remote_name = arg[slash + 1:]
    else:
        parts = split_into_two(arg, "/")
        if len(parts) == 1 or not _looks_like_host(parts[0]):
            index = _resolve_default_index(default_index)
            remote_name = arg
        else:
            index = parse_index(parts[0])
            remote_name = parts[1]

    # docker `validateRemoteName`
    name_parts = split_into_two(remote_name, "/")
    ns: Optional[str] = None
    if len(name_parts) == 2:
        ns, name = name_parts
        _validate_namespace(ns)
    else:
        name = remote_name
        if index.official:
            ns = "library"

    if not VALID_REPO.match(name):
        raise ParseError(f"invalid repository name, may only contain [a-z0-9_/.-] characters: {name}")

    official = False
    if index.official:
        remote = f"{ns}/{name}"
        if ns == "library":
            official = True
            local = name
        else:
            local = remote
        canonical = f"{DEFAULT_INDEX_NAME}/{local}"
    else:
        remote = f"{ns}/{name}" if ns else name
        local = f"{index.name}/{remote}"
        canonical = local

    return RegistryImage(
        index=index,
        remote_name=remote,
        local_name=local,
        canonical_name=canonical,
        official=official,
    )


def parse_repo_and_ref(arg: str, default_index: Union[str, RegistryIndex, None] = None) -> RegistryImage:
    """
    Parse a docker repo and tag/digest string: ``[INDEX/]REPO[:TAG][@DIGEST]``.

    Everything after the last "@" is a digest. In what remains, everything
    after the last ":" that follows the last "/" is a tag. Without either the
    tag defaults to "latest"; with only a digest no tag is set.

    Examples:
        busybox
        google/python:3.3
        localhost:5000/blarg:mytag
        alpine@sha256:fb9f16730ac6316afa4d97caa5130219927bfcecf0b0...
        alpine:3.18@sha256:fb9f16730ac6316afa4d97caa5130219927bfcecf0b0...
    """
    digest = None
    rest = arg
    at = arg.rfind("@")
    if at != -1:
        rest, digest = arg[:at], arg[at + 1:]

    tag = None
    colon = rest.rfind(":")
    if colon != -1 and colon > rest.rfind("/"):
        rest, tag = rest[:colon], rest[colon + 1:]

    info = parse_repo(rest, default_index)
    if not digest and not tag:
        tag = DEFAULT_TAG
    return info.with_ref(tag=tag or None, digest=digest or None)


parse_repo_and_tag = parse_repo_and_ref


def url_from_index(index: RegistryIndex) -> str:
    """Base URL for an index, similar to docker.git:registry/endpoint.go#NewEndpoint()."""
    if index.official:
        return DEFAULT_INDEX_URL
    return f"{index.scheme or 'https'}://{index.name}"


def is_localhost(host: str) -> bool:
    lead = host.split(":")[0]
    return lead in ("localhost", "127.0.0.1")
