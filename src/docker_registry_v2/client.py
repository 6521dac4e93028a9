"""
Docker Registry HTTP API v2 client.

``RegistryClientV2`` talks to one repository on one registry. It logs in on
demand (anonymous, Basic or Bearer token, as the registry's challenge asks),
remembers the auth scope it logged in with, and re-authenticates only when a
call needs a different scope (e.g. ``pull,push`` for uploads).

Example:
    >>> with create_client(name="alpine") as client:
    ...     tags = client.list_tags()
    ...     result = client.get_manifest("3.18")
    ...     print(result.digest)
"""
from __future__ import annotations

import dataclasses
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Sequence, Union
from urllib.parse import quote, urlencode, urljoin

import httpx

from .digest import (
    digest_from_manifest_str,
    jws_from_manifest,
    parse_docker_content_digest,
)
from .errors import (
    AuthError,
    BadDigestError,
    HttpError,
    InvalidContentError,
    RegistryError,
    UnsupportedAuthSchemeError,
    UploadError,
)
from .media_types import (
    DEFAULT_BLOB_CONTENT_TYPE,
    DEFAULT_V2_REGISTRY,
    MEDIATYPE_MANIFEST_LIST_V2,
    MEDIATYPE_MANIFEST_V2,
    MEDIATYPE_OCI_MANIFEST_INDEX_V1,
    MEDIATYPE_OCI_MANIFEST_V1,
    manifest_media_type_for_schema,
)
from .models import (
    AuthBasic,
    AuthBearer,
    AuthInfo,
    AuthNone,
    Manifest,
    ManifestV1,
    TagList,
    authorization_header,
    manifest_entries,
    parse_manifest,
)
from .reference import RegistryImage, is_localhost, parse_repo, url_from_index
from .settings import ClientSettings
from .transport import (
    RegistryHttpClient,
    RegistryResponse,
    build_http_client,
    follow_redirect_chain,
    origin_of,
)
from .www_authenticate import parse_www_authenticate

logger = logging.getLogger(__name__)

__all__ = [
    "RegistryClientV2",
    "ManifestResult",
    "PutManifestResult",
    "BlobReadStream",
    "make_auth_scope",
    "create_client",
]

_REALM_SCHEME = re.compile(r"^(\w+)://")


def make_auth_scope(resource: str, name: str, actions: Iterable[str]) -> str:
    """Token scope string, e.g. ``repository:library/alpine:pull,push``."""
    return f"{resource}:{name}:{','.join(sorted(set(actions)))}"


@dataclass
class ManifestResult:
    """
    A fetched and validated manifest.

    Attributes:
        manifest: Typed manifest model
        body: Raw manifest bytes as received
        digest: ``Docker-Content-Digest`` header, else computed from ``body``
        response: The registry response
    """
    manifest: Manifest
    body: bytes
    digest: str
    response: RegistryResponse


@dataclass(frozen=True)
class PutManifestResult:
    digest: Optional[str]
    location: Optional[str]


@dataclass
class BlobReadStream:
    """
    A blob download.

    Iterating yields the blob's chunks. When the registry sent a
    ``Docker-Content-Digest`` the chunks pass through a digest check that
    raises ``BadDigestError`` once the last chunk has been consumed.

    Attributes:
        responses: Every response in the redirect chain, first to last
        stream: The (possibly verifying) chunk iterator
    """
    responses: List[RegistryResponse]
    stream: Iterator[bytes] = field(repr=False)

    def __iter__(self) -> Iterator[bytes]:
        return self.stream

    def close(self) -> None:
        close = getattr(self.stream, "close", None)
        if close is not None:
            close()
        self.responses[-1].close()

    def __enter__(self) -> BlobReadStream:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class RegistryClientV2:
    """
    Client for one repository on a Docker Registry API v2 endpoint.

    Every method except ``ping`` and ``supports_v2`` logs in as needed.
    A client holds a connection pool; close it (or use it as a context
    manager) when done.
    """

    def __init__(
        self,
        repo: Optional[RegistryImage] = None,
        name: Optional[str] = None,
        settings: Optional[ClientSettings] = None,
        transport: Optional[httpx.BaseTransport] = None,
        **overrides,
    ):
        """
        Initialize the client.

        Args:
            repo: Parsed repository reference
            name: Repository string, parsed with ``parse_repo`` when ``repo``
                is not given
            settings: Client settings (defaults to ``ClientSettings()``)
            transport: Optional httpx transport, e.g. ``httpx.MockTransport``
            **overrides: ClientSettings fields overriding ``settings``

        Raises:
            ValueError: If neither ``repo`` nor ``name`` is given, or an
                override is invalid
            ParseError: If ``name`` cannot be parsed
        """
        settings = settings or ClientSettings()
        if overrides:
            settings = dataclasses.replace(settings, **overrides)
        self.settings = settings

        if repo is None:
            if not name:
                raise ValueError("name or repo required")
            repo = parse_repo(name)

        index = repo.index
        if settings.scheme:
            index = dataclasses.replace(index, scheme=settings.scheme)
        elif not index.scheme and is_localhost(index.name):
            # Prefer plain HTTP for a local registry, no HTTPS-then-HTTP fallback
            index = dataclasses.replace(index, scheme="http")
        self.repo = dataclasses.replace(repo, index=index)

        if self.repo.index.official:
            self.url = DEFAULT_V2_REGISTRY
        else:
            self.url = url_from_index(self.repo.index)

        self._http = build_http_client(settings, transport=transport)
        self._api = RegistryHttpClient(
            url=self.url,
            http=self._http,
            user_agent=settings.user_agent,
            retries=settings.http_retry,
        )

        self._logged_in = False
        self._logged_in_scope: Optional[str] = None
        self._auth_info: Optional[AuthInfo] = None
        self._login_lock = threading.Lock()

        if settings.token:
            seed: AuthInfo = AuthBearer(token=settings.token)
        elif settings.username or settings.password:
            seed = AuthBasic(username=settings.username or "", password=settings.password or "")
        else:
            seed = AuthNone()
        self._auth_header = authorization_header(seed)

        logger.debug(f"RegistryClientV2 for {self.repo.canonical_name} at {self.url}")

    def __repr__(self) -> str:
        return f"RegistryClientV2({self.repo.canonical_name!r}, url={self.url!r})"

    @property
    def logged_in(self) -> bool:
        return self._logged_in

    @property
    def auth_info(self) -> Optional[AuthInfo]:
        return self._auth_info

    def _auth_headers(self) -> dict:
        if self._auth_header:
            return {"Authorization": self._auth_header}
        return {}

    def _repo_path(self, *parts: str) -> str:
        return "/v2/" + quote(self.repo.remote_name, safe="/") + "/" + "/".join(parts)

    # Authentication

    def ping(
        self,
        headers: Optional[dict] = None,
        expect_status: Sequence[int] = (200, 401, 404),
    ) -> RegistryResponse:
        """
        Probe ``GET /v2/`` without logging in.

        Interpret ``status_code``: 404 means no v2 API, 401 means auth is
        required (pass the response to ``login`` to reuse its challenge),
        200 means access is already granted. Never retried.

        Raises:
            HttpError: If the status is not in ``expect_status``
        """
        resp = self._api.request(
            "GET", "/v2/", headers=headers, expect_status=expect_status, retry=False)
        resp.docker_body()
        return resp

    def perform_login(
        self,
        scope: Optional[str] = None,
        ping_res: Optional[RegistryResponse] = None,
    ) -> AuthInfo:
        """
        Work out the auth needed for ``scope`` without changing client state.

        Follows docker.git's ``registry/auth.go#loginV2``: reuse the challenge
        from ``ping_res`` if it has one, else ping; a 200 needs no auth, a
        Basic challenge uses the configured credentials, and a Bearer
        challenge fetches a token from the challenge's realm.

        Returns:
            AuthNone, AuthBasic or AuthBearer

        Raises:
            HttpError: If the ping fails or the 401 carries no challenge
            AuthError: If the token endpoint rejects the request
            UnsupportedAuthSchemeError: For a challenge other than Basic/Bearer
        """
        res = ping_res
        if res is None or not res.headers.get("www-authenticate"):
            res = self.ping(expect_status=(200, 401))
            if res.status_code == 200:
                logger.debug(f"No auth required by {self.url}")
                return AuthNone()

        challenge_header = res.headers.get("www-authenticate")
        if not challenge_header:
            raise res.docker_error(
                'missing WWW-Authenticate header from "GET /v2/" (see '
                "https://docs.docker.com/registry/spec/api/#api-version-check)")

        challenge = parse_www_authenticate(challenge_header)
        if challenge.is_scheme("basic"):
            logger.debug(f"Using Basic auth for {self.url}")
            return AuthBasic(username=self.settings.username or "", password=self.settings.password or "")
        if challenge.is_scheme("bearer"):
            return AuthBearer(token=self._get_token(
                realm=challenge.realm,
                service=challenge.service,
                scopes=[scope] if scope else [],
            ))
        raise UnsupportedAuthSchemeError(f'unsupported auth scheme: "{challenge.scheme}"')

    def _get_token(self, realm: Optional[str], service: Optional[str] = None,
                   scopes: Sequence[str] = ()) -> str:
        """Fetch a Bearer token, per docker.git ``registry/token.go``."""
        if not realm:
            raise UnsupportedAuthSchemeError('Bearer challenge has no "realm"')

        match = _REALM_SCHEME.match(realm)
        if not match:
            token_url = ("http" if self.settings.insecure else "https") + "://" + realm
        elif match.group(1) not in ("http", "https"):
            raise UnsupportedAuthSchemeError(
                f'unsupported scheme for WWW-Authenticate realm "{realm}": "{match.group(1)}"')
        else:
            token_url = realm

        query = []
        if service:
            query.append(("service", service))
        for scope in scopes:
            query.append(("scope", scope))
        headers = {}
        if self.settings.username:
            query.append(("account", self.settings.username))
            headers["Authorization"] = authorization_header(
                AuthBasic(username=self.settings.username, password=self.settings.password or ""))
        if query:
            token_url += ("&" if "?" in token_url else "?") + urlencode(query)

        token_client = self._api.for_origin(token_url, accept="application/json")
        logger.debug(f"Requesting token from {token_client.url} for scopes {list(scopes)}")
        resp = token_client.request(
            "GET",
            token_url[len(token_client.url):] or "/",
            headers=headers,
            expect_status=(200, 401),
        )
        if resp.status_code == 401:
            raise resp.docker_error("Registry auth failed", error_cls=AuthError)

        body = resp.docker_json()
        token = body.get("token") if isinstance(body, dict) else None
        if token is None and isinstance(body, dict):
            # OAuth2-style token endpoints answer with access_token only
            token = body.get("access_token")
        if not isinstance(token, str):
            raise AuthError(
                "authorization server did not include a token in the response",
                response=resp.response,
            )
        return token

    def login(self, scope: Optional[str] = None, ping_res: Optional[RegistryResponse] = None) -> None:
        """
        Log in for ``scope`` unless already logged in for exactly that scope.

        Args:
            scope: Token scope; defaults to ``repository:<remote>:<scopes>``
            ping_res: Earlier ``ping()`` response whose challenge is reused
        """
        scope = scope or make_auth_scope("repository", self.repo.remote_name, self.settings.scopes)
        with self._login_lock:
            if self._logged_in and self._logged_in_scope == scope:
                return
            auth_info = self.perform_login(scope=scope, ping_res=ping_res)
            self._logged_in = True
            self._logged_in_scope = scope
            self._auth_info = auth_info
            self._auth_header = authorization_header(auth_info)
            logger.debug(f"Logged in to {self.url} with {auth_info.type} auth for scope {scope!r}")

    def supports_v2(self) -> bool:
        """
        Whether the registry speaks the v2 API.

        A ping that fails (unexpected status or no response at all) means no;
        otherwise a ``registry/2.0`` token in ``Docker-Distribution-Api-Version``
        or a 200/401 status means yes.
        """
        try:
            res = self.ping()
        except HttpError as e:
            logger.debug(f"Ping of {self.url} failed: {e}")
            return False
        except httpx.TransportError as e:
            logger.debug(f"Ping of {self.url} got no response: {e}")
            return False

        header = res.headers.get("docker-distribution-api-version")
        if header:
            # Space- or comma-separated, the latter when sent as two headers
            if "registry/2.0" in re.split(r"[\s,]+", header):
                return True
        return res.status_code in (200, 401)

    # Reads

    def list_tags(self) -> TagList:
        """
        List the repository's tags.

        Raises:
            HttpError: On an unexpected status
            InvalidContentError: If the body is not a tag list
        """
        self.login()
        resp = self._api.request(
            "GET", self._repo_path("tags", "list"),
            headers=self._auth_headers(), follow_redirects=True)
        body = resp.docker_json()
        if not isinstance(body, dict):
            raise InvalidContentError(f"invalid tag list for {self.repo.local_name}: {body!r}")
        return TagList.model_validate(body)

    def _manifest_accept(self, accept_manifest_lists: bool, accept_oci_manifests: bool,
                         max_schema_version: int) -> str:
        accept: List[str] = []
        if max_schema_version == 2:
            accept.append(MEDIATYPE_MANIFEST_V2)
            if accept_manifest_lists:
                accept.append(MEDIATYPE_MANIFEST_LIST_V2)
        if accept_oci_manifests:
            accept.append(MEDIATYPE_OCI_MANIFEST_V1)
            if accept_manifest_lists:
                accept.append(MEDIATYPE_OCI_MANIFEST_INDEX_V1)
        return ", ".join(accept) or "application/json"

    def get_manifest(
        self,
        ref: Optional[str] = None,
        accept_manifest_lists: Optional[bool] = None,
        accept_oci_manifests: Optional[bool] = None,
        max_schema_version: Optional[int] = None,
        follow_redirects: bool = True,
    ) -> ManifestResult:
        """
        Fetch and validate an image manifest.

        Args:
            ref: Tag or digest; defaults to the repo's own tag/digest
            accept_manifest_lists: Accept manifest lists / OCI indexes
            accept_oci_manifests: Accept OCI manifests
            max_schema_version: Highest schemaVersion accepted
            follow_redirects: Follow redirects on the manifest request

        Unset options fall back to the client settings.

        Returns:
            ManifestResult

        Raises:
            HttpError: On 401 ("Not Found") or another unexpected status
            BadDigestError: If a schema-1 payload does not match
                ``Docker-Content-Digest``
            InvalidContentError: If the schemaVersion is above the maximum or
                the manifest has no layers/manifests
        """
        ref = ref or self.repo.ref
        if not ref:
            raise ValueError("a tag or digest is required")
        if accept_manifest_lists is None:
            accept_manifest_lists = self.settings.accept_manifest_lists
        if accept_oci_manifests is None:
            accept_oci_manifests = self.settings.accept_oci_manifests
        if max_schema_version is None:
            if accept_oci_manifests and self.settings.max_schema_version is None:
                max_schema_version = 2
            else:
                max_schema_version = self.settings.effective_max_schema_version

        self.login()
        headers = self._auth_headers()
        headers["Accept"] = self._manifest_accept(
            accept_manifest_lists, accept_oci_manifests, max_schema_version)

        resp = self._api.request(
            "GET",
            self._repo_path("manifests", quote(ref, safe=":@")),
            headers=headers,
            expect_status=(200, 401),
            follow_redirects=follow_redirects,
        )
        if resp.status_code == 401:
            raise resp.docker_error(f'Manifest "{ref}" Not Found')

        body = resp.docker_body()
        obj = resp.docker_json()
        if not isinstance(obj, dict):
            raise InvalidContentError(f"manifest {self.repo.local_name}:{ref} is not a JSON object")
        schema_version = obj.get("schemaVersion")

        if schema_version == 1:
            jws = jws_from_manifest(obj, body)
            # Some registries (Amazon ECR) omit the header
            if "docker-content-digest" in resp.headers:
                parse_docker_content_digest(resp.headers["docker-content-digest"]).verify(jws.payload)
            else:
                logger.warning(f"No Docker-Content-Digest header for {self.repo.local_name}:{ref} manifest")

        if isinstance(schema_version, int) and schema_version > max_schema_version:
            raise InvalidContentError(
                f"unsupported schema version {schema_version} in {self.repo.local_name}:{ref} manifest")

        manifest = parse_manifest(obj, resp.headers.get("content-type"))
        if isinstance(manifest, ManifestV1) and len(manifest.fs_layers) != len(manifest.history):
            raise InvalidContentError(
                f"history length not equal to layers length in {self.repo.local_name}:{ref} manifest")
        if not manifest_entries(manifest):
            raise InvalidContentError(f"no layers or manifests in {self.repo.local_name}:{ref} manifest")

        digest = resp.headers.get("docker-content-digest") or digest_from_manifest_str(body)
        return ManifestResult(manifest=manifest, body=body, digest=digest, response=resp)

    def delete_manifest(self, ref: Optional[str] = None) -> RegistryResponse:
        """
        Delete a manifest by digest (most registries refuse tags).

        Raises:
            HttpError: Unless the registry answers 200 or 202
        """
        ref = ref or self.repo.ref
        if not ref:
            raise ValueError("a tag or digest is required")
        self.login()
        resp = self._api.request(
            "DELETE",
            self._repo_path("manifests", quote(ref, safe=":@")),
            headers=self._auth_headers(),
            expect_status=(200, 202),
        )
        resp.docker_body()
        return resp

    def _make_http_request(self, method: str, path: str, headers: Optional[dict] = None,
                           follow_redirects: bool = True, stream: bool = False) -> List[RegistryResponse]:
        return follow_redirect_chain(
            self._api,
            method,
            path,
            headers=headers,
            follow=follow_redirects,
            max_redirects=self.settings.max_redirects,
            stream=stream,
        )

    def _head_or_get_blob(self, method: str, digest: str) -> List[RegistryResponse]:
        self.login()
        return self._make_http_request(
            method,
            self._repo_path("blobs", quote(digest, safe=":")),
            headers=self._auth_headers(),
            stream=method == "GET",
        )

    def head_blob(self, digest: str) -> List[RegistryResponse]:
        """
        HEAD a blob, following redirects.

        The first response's ``Docker-Content-Digest`` names the content; the
        last response's ``Content-Length`` is its size.

        Returns:
            Every response in the redirect chain
        """
        responses = self._head_or_get_blob("HEAD", digest)
        responses[-1].drain()
        return responses

    def create_blob_read_stream(self, digest: str, chunk_size: Optional[int] = None) -> BlobReadStream:
        """
        Open a streaming download of a blob.

        A digest mismatch between the registry's ``Docker-Content-Digest``
        and ``digest`` fails immediately. Otherwise content is verified as it
        streams and a mismatch raises ``BadDigestError`` from the iterator
        after the last chunk.

        Raises:
            BadDigestError: If the registry reports a different digest
            HttpError: On an unexpected status
            TooManyRedirectsError: If the redirect chain is too long
        """
        responses = self._head_or_get_blob("GET", digest)
        stream: Iterator[bytes] = responses[-1].iter_stream(chunk_size)

        dcd_header = responses[0].headers.get("docker-content-digest")
        if dcd_header:
            dcd = parse_docker_content_digest(dcd_header)
            if dcd.raw != digest:
                responses[-1].close()
                raise BadDigestError(
                    f"Docker-Content-Digest header, {dcd.raw}, does not match given digest, {digest}",
                    expected=digest,
                    actual=dcd.raw,
                )
            stream = dcd.validate_stream(stream)
        else:
            logger.warning(f"No Docker-Content-Digest header for blob {digest}, content is not verified")

        return BlobReadStream(responses=responses, stream=stream)

    # Writes

    def put_manifest(
        self,
        manifest_data: Union[bytes, str],
        ref: str,
        media_type: Optional[str] = None,
        schema_version: Optional[int] = None,
    ) -> PutManifestResult:
        """
        Upload a manifest under a tag or digest.

        Args:
            manifest_data: Manifest bytes, sent unchanged
            ref: Tag or digest to store it under
            media_type: Content-Type; defaults from ``schema_version``
            schema_version: Docker manifest schema used for the default
                media type (default 1)

        Returns:
            PutManifestResult with the registry's digest and location

        Raises:
            UploadError: If the upload fails for any reason (see ``__cause__``)
        """
        if isinstance(manifest_data, str):
            manifest_data = manifest_data.encode("utf-8")
        media_type = media_type or manifest_media_type_for_schema(schema_version or 1)

        try:
            self.login(scope=make_auth_scope("repository", self.repo.remote_name, ["pull", "push"]))
            headers = self._auth_headers()
            headers["Content-Type"] = media_type
            resp = self._api.request(
                "PUT",
                self._repo_path("manifests", quote(ref, safe="")),
                headers=headers,
                content=manifest_data,
                expect_status=(201,),
            )
            resp.drain()
        except (RegistryError, httpx.HTTPError) as e:
            raise UploadError("Manifest upload failed.") from e

        logger.debug(f"Uploaded manifest {self.repo.local_name}:{ref}")
        return PutManifestResult(
            digest=resp.headers.get("docker-content-digest"),
            location=resp.headers.get("location"),
        )

    def blob_upload(
        self,
        digest: str,
        content: Union[bytes, Iterable[bytes]],
        content_length: int,
        content_type: Optional[str] = None,
    ) -> RegistryResponse:
        """
        Upload a blob in one request (POST to open a session, then PUT).

        Args:
            digest: Digest of the content, checked by the registry
            content: Bytes or an iterable of byte chunks
            content_length: Total length in bytes
            content_type: Content-Type (default application/octet-stream)

        Returns:
            The final 201 response

        Raises:
            UploadError: If either step fails (see ``__cause__``) or no upload
                location is returned
        """
        try:
            self.login(scope=make_auth_scope("repository", self.repo.remote_name, ["pull", "push"]))
            session = self._api.request(
                "POST",
                self._repo_path("blobs", "uploads", ""),
                headers=self._auth_headers(),
                expect_status=(202,),
            )
            session.drain()
        except (RegistryError, httpx.HTTPError) as e:
            raise UploadError("Blob upload rejected.") from e

        upload_url = session.headers.get("location")
        if not upload_url:
            raise UploadError("No registry upload location header returned")
        destination = httpx.URL(urljoin(self.url + "/", upload_url)).copy_add_param("digest", digest)

        headers = {
            "Content-Length": str(content_length),
            "Content-Type": content_type or DEFAULT_BLOB_CONTENT_TYPE,
        }
        if origin_of(str(destination)) == origin_of(self.url):
            headers.update(self._auth_headers())
        else:
            logger.debug(f"Upload location is on {origin_of(str(destination))}, not sending credentials")

        try:
            resp = self._api.request(
                "PUT",
                str(destination),
                headers=headers,
                content=content,
                expect_status=(201,),
            )
            resp.drain()
        except (RegistryError, httpx.HTTPError) as e:
            raise UploadError("Blob upload failed.") from e

        logger.debug(f"Uploaded blob {digest} ({content_length} bytes) to {self.repo.local_name}")
        return resp

    # Lifecycle

    def close(self) -> None:
        """Close the HTTP client and its connections."""
        self._http.close()

    def __enter__(self) -> RegistryClientV2:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def create_client(
    repo: Optional[RegistryImage] = None,
    name: Optional[str] = None,
    settings: Optional[ClientSettings] = None,
    transport: Optional[httpx.BaseTransport] = None,
    **overrides,
) -> RegistryClientV2:
    """Create a RegistryClientV2; see its constructor for the arguments."""
    return RegistryClientV2(repo=repo, name=name, settings=settings, transport=transport, **overrides)
