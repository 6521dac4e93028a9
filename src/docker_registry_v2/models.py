"""
Data models for registry API payloads.

These Pydantic models give typed access to manifests, tag lists, auth state
and registry error bodies. Manifest models keep unknown fields so a manifest
can be dumped back without losing anything the registry sent.
"""
from __future__ import annotations

import base64
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidContentError
from .media_types import (
    MEDIATYPE_MANIFEST_LIST_V2,
    MEDIATYPE_OCI_MANIFEST_INDEX_V1,
    MEDIATYPE_OCI_MANIFEST_V1,
)

__all__ = [
    "AuthNone",
    "AuthBasic",
    "AuthBearer",
    "AuthInfo",
    "authorization_header",
    "Descriptor",
    "Platform",
    "PlatformDescriptor",
    "FsLayer",
    "HistoryEntry",
    "Signature",
    "ManifestV1",
    "ManifestV2",
    "ManifestV2List",
    "ManifestOCI",
    "ManifestOCIIndex",
    "Manifest",
    "parse_manifest",
    "manifest_entries",
    "TagList",
    "RegistryErrorEntry",
]


# Auth state

class AuthNone(BaseModel):
    """No credentials are needed."""
    type: Literal["None"] = "None"


class AuthBasic(BaseModel):
    """HTTP Basic credentials, sent directly on each request."""
    type: Literal["Basic"] = "Basic"
    username: str = ""
    password: str = ""

    def __repr__(self) -> str:
        return f"AuthBasic(username={self.username!r}, password='***')"


class AuthBearer(BaseModel):
    """Bearer token obtained from the registry's token endpoint."""
    type: Literal["Bearer"] = "Bearer"
    token: str

    def __repr__(self) -> str:
        return "AuthBearer(token='***')"


AuthInfo = Annotated[Union[AuthNone, AuthBasic, AuthBearer], Field(discriminator="type")]


def authorization_header(auth: Optional[Union[AuthNone, AuthBasic, AuthBearer]]) -> Optional[str]:
    """Render the Authorization header value for ``auth`` (None for no auth)."""
    if isinstance(auth, AuthBearer):
        return f"Bearer {auth.token}"
    if isinstance(auth, AuthBasic):
        credentials = f"{auth.username}:{auth.password}".encode()
        return "Basic " + base64.b64encode(credentials).decode("ascii")
    return None


# Manifest building blocks

class _RegistryModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Descriptor(_RegistryModel):
    """Content descriptor: a blob or manifest addressed by digest."""
    media_type: Optional[str] = Field(default=None, alias="mediaType")
    size: int = 0
    digest: str
    urls: Optional[List[str]] = None
    annotations: Optional[Dict[str, str]] = None


class Platform(_RegistryModel):
    architecture: str
    os: str
    os_version: Optional[str] = Field(default=None, alias="os.version")
    os_features: Optional[List[str]] = Field(default=None, alias="os.features")
    variant: Optional[str] = None
    features: Optional[List[str]] = None


class PlatformDescriptor(Descriptor):
    """Manifest list / index entry."""
    platform: Optional[Platform] = None


class FsLayer(_RegistryModel):
    blob_sum: str = Field(alias="blobSum")


class HistoryEntry(_RegistryModel):
    v1_compatibility: str = Field(alias="v1Compatibility")


class Signature(_RegistryModel):
    """Schema-1 JWS signature entry."""
    header: Dict[str, Any] = Field(default_factory=dict)
    protected: str
    signature: str


# Manifest variants

class ManifestV1(_RegistryModel):
    """Legacy schema-1 (optionally JWS-signed) image manifest."""
    schema_version: Literal[1] = Field(alias="schemaVersion")
    name: Optional[str] = None
    tag: Optional[str] = None
    architecture: Optional[str] = None
    fs_layers: List[FsLayer] = Field(default_factory=list, alias="fsLayers")
    history: List[HistoryEntry] = Field(default_factory=list)
    signatures: Optional[List[Signature]] = None


class ManifestV2(_RegistryModel):
    """Docker schema-2 image manifest."""
    schema_version: Literal[2] = Field(alias="schemaVersion")
    media_type: Optional[str] = Field(default=None, alias="mediaType")
    config: Optional[Descriptor] = None
    layers: List[Descriptor] = Field(default_factory=list)


class ManifestV2List(_RegistryModel):
    """Docker schema-2 manifest list (multi-platform)."""
    schema_version: Literal[2] = Field(alias="schemaVersion")
    media_type: Optional[str] = Field(default=MEDIATYPE_MANIFEST_LIST_V2, alias="mediaType")
    manifests: List[PlatformDescriptor] = Field(default_factory=list)


class ManifestOCI(_RegistryModel):
    """OCI image manifest."""
    schema_version: Literal[2] = Field(alias="schemaVersion")
    media_type: Optional[str] = Field(default=MEDIATYPE_OCI_MANIFEST_V1, alias="mediaType")
    config: Optional[Descriptor] = None
    layers: List[Descriptor] = Field(default_factory=list)
    annotations: Optional[Dict[str, str]] = None


class ManifestOCIIndex(_RegistryModel):
    """OCI image index."""
    schema_version: Literal[2] = Field(alias="schemaVersion")
    media_type: Optional[str] = Field(default=MEDIATYPE_OCI_MANIFEST_INDEX_V1, alias="mediaType")
    manifests: List[PlatformDescriptor] = Field(default_factory=list)
    annotations: Optional[Dict[str, str]] = None


Manifest = Union[ManifestV1, ManifestV2, ManifestV2List, ManifestOCI, ManifestOCIIndex]


def parse_manifest(obj: Any, content_type: Optional[str] = None) -> Manifest:
    """
    Select and validate the manifest variant for a decoded JSON body.

    The variant follows ``schemaVersion`` first, then ``mediaType``, falling
    back to the response ``content_type`` when the body omits ``mediaType``.
    Unknown schema-2 media types are treated as single-image manifests.

    Raises:
        InvalidContentError: If the body is not a manifest object
    """
    if not isinstance(obj, dict):
        raise InvalidContentError(f"manifest is not a JSON object: {type(obj).__name__}")

    schema_version = obj.get("schemaVersion")
    media_type = obj.get("mediaType") or _bare_media_type(content_type)

    if schema_version == 1:
        model = ManifestV1
    elif schema_version == 2:
        if media_type == MEDIATYPE_MANIFEST_LIST_V2:
            model = ManifestV2List
        elif media_type == MEDIATYPE_OCI_MANIFEST_INDEX_V1:
            model = ManifestOCIIndex
        elif media_type == MEDIATYPE_OCI_MANIFEST_V1:
            model = ManifestOCI
        else:
            model = ManifestV2
    else:
        raise InvalidContentError(f"unsupported manifest schemaVersion: {schema_version!r}")

    try:
        manifest = model.model_validate(obj)
    except ValidationError as e:
        raise InvalidContentError(f"invalid schema {schema_version} manifest: {e}") from e

    if schema_version == 2 and manifest.media_type is None and media_type:
        manifest.media_type = media_type
    return manifest


def manifest_entries(manifest: Manifest) -> list:
    """The layer (or sub-manifest) list a manifest must not have empty."""
    if isinstance(manifest, ManifestV1):
        return manifest.fs_layers
    if isinstance(manifest, (ManifestV2List, ManifestOCIIndex)):
        return manifest.manifests
    return manifest.layers


def _bare_media_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    return content_type.split(";", 1)[0].strip() or None


# Other payloads

class TagList(_RegistryModel):
    """Response of ``GET /v2/<name>/tags/list``."""
    name: str
    tags: Optional[List[str]] = Field(default_factory=list)
    # GCR specific
    child: Optional[List[str]] = None
    manifest: Optional[Dict[str, Dict[str, Any]]] = None


class RegistryErrorEntry(_RegistryModel):
    """One entry of a registry error body."""
    code: Optional[str] = None
    message: str = ""
    detail: Any = None
