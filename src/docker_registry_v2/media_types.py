"""
Registry media types and constants.

Single source of truth for manifest media types and registry defaults.
"""
from __future__ import annotations

# Docker distribution manifest types
MEDIATYPE_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
MEDIATYPE_MANIFEST_LIST_V2 = "application/vnd.docker.distribution.manifest.list.v2+json"

# OCI image-spec manifest types
MEDIATYPE_OCI_MANIFEST_V1 = "application/vnd.oci.image.manifest.v1+json"
MEDIATYPE_OCI_MANIFEST_INDEX_V1 = "application/vnd.oci.image.index.v1+json"

DEFAULT_BLOB_CONTENT_TYPE = "application/octet-stream"

# See `INDEXNAME` in docker/docker.git:registry/config.go
DEFAULT_INDEX_NAME = "docker.io"
DEFAULT_INDEX_URL = "https://index.docker.io"
# `docker login` sends this server name by default
DEFAULT_LOGIN_SERVERNAME = "https://index.docker.io/v1/"
# docker/docker.git:registry/config_unix.go
DEFAULT_V2_REGISTRY = "https://registry-1.docker.io"
DEFAULT_TAG = "latest"


def manifest_media_type_for_schema(schema_version: int) -> str:
    """Docker manifest media type for a bare schema version number."""
    return f"application/vnd.docker.distribution.manifest.v{schema_version}+json"


__all__ = [
    "MEDIATYPE_MANIFEST_V2",
    "MEDIATYPE_MANIFEST_LIST_V2",
    "MEDIATYPE_OCI_MANIFEST_V1",
    "MEDIATYPE_OCI_MANIFEST_INDEX_V1",
    "DEFAULT_BLOB_CONTENT_TYPE",
    "DEFAULT_INDEX_NAME",
    "DEFAULT_INDEX_URL",
    "DEFAULT_LOGIN_SERVERNAME",
    "DEFAULT_V2_REGISTRY",
    "DEFAULT_TAG",
    "manifest_media_type_for_schema",
]
