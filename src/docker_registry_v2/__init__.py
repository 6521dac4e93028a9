"""
docker-registry-v2 - client library for the Docker Registry HTTP API v2.

Resolves image references, authenticates against registries (Basic and
Bearer token auth) and reads and writes manifests and blobs with content
verification.
"""
from .client import (
    BlobReadStream,
    ManifestResult,
    PutManifestResult,
    RegistryClientV2,
    create_client,
    make_auth_scope,
)
from .digest import (
    DigestValidatingStream,
    compute_digest,
    compute_manifest_digest,
    digest_from_manifest_str,
    verify_docker_content_digest_header,
)
from .errors import (
    AuthError,
    BadDigestError,
    HttpError,
    InvalidContentError,
    ParseError,
    RegistryError,
    TooManyRedirectsError,
    UnsupportedAuthSchemeError,
    UploadError,
)
from .reference import (
    RegistryImage,
    RegistryIndex,
    parse_index,
    parse_repo,
    parse_repo_and_ref,
    parse_repo_and_tag,
)
from .settings import VERSION, ClientSettings, create_settings_from_env
from .www_authenticate import AuthChallenge, parse_www_authenticate

__version__ = VERSION

__all__ = [
    "RegistryClientV2",
    "create_client",
    "make_auth_scope",
    "ManifestResult",
    "PutManifestResult",
    "BlobReadStream",
    "DigestValidatingStream",
    "compute_digest",
    "compute_manifest_digest",
    "digest_from_manifest_str",
    "verify_docker_content_digest_header",
    "RegistryError",
    "ParseError",
    "InvalidContentError",
    "BadDigestError",
    "TooManyRedirectsError",
    "UploadError",
    "UnsupportedAuthSchemeError",
    "HttpError",
    "AuthError",
    "RegistryIndex",
    "RegistryImage",
    "parse_index",
    "parse_repo",
    "parse_repo_and_ref",
    "parse_repo_and_tag",
    "ClientSettings",
    "create_settings_from_env",
    "AuthChallenge",
    "parse_www_authenticate",
    "__version__",
]
