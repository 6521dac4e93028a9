"""
In-memory Docker Registry v2 served through ``httpx.MockTransport``.

Implements enough of the registry API (and a token server and a blob CDN) to
exercise the client end to end without a network:

- ``/v2/`` ping with Bearer or Basic challenges
- a token endpoint on ``auth.example.com`` that issues scope-bound tokens
- tags, manifests (GET/PUT/DELETE) and blobs (GET/HEAD)
- optional 307 redirects from blob URLs to ``cdn.example.com``
- POST-then-PUT blob uploads
"""
from __future__ import annotations

import base64
import hashlib
import itertools
import json
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import httpx

REALM = "https://auth.example.com/token"
SERVICE = "registry.example.com"
CDN = "https://cdn.example.com"

MEDIATYPE_V1 = "application/vnd.docker.distribution.manifest.v1+prettyjws"
MEDIATYPE_V2 = "application/vnd.docker.distribution.manifest.v2+json"
MEDIATYPE_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
MEDIATYPE_OCI = "application/vnd.oci.image.manifest.v1+json"

_MANIFEST = re.compile(r"^/v2/(?P<name>.+)/manifests/(?P<ref>[^/]+)$")
_BLOB = re.compile(r"^/v2/(?P<name>.+)/blobs/(?P<digest>[^/]+)$")
_UPLOADS = re.compile(r"^/v2/(?P<name>.+)/blobs/uploads/$")
_UPLOAD = re.compile(r"^/v2/(?P<name>.+)/blobs/uploads/(?P<uuid>[^/]+)$")
_TAGS = re.compile(r"^/v2/(?P<name>.+)/tags/list$")


def sha256_digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def make_v2_manifest(layer_digests: List[str], media_type: str = MEDIATYPE_V2) -> bytes:
    """Single-image schema-2 (or OCI) manifest body."""
    doc = {
        "schemaVersion": 2,
        "mediaType": media_type,
        "config": {
            "mediaType": "application/vnd.docker.container.image.v1+json",
            "size": 2,
            "digest": sha256_digest(b"{}"),
        },
        "layers": [
            {"mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip", "size": 10, "digest": d}
            for d in layer_digests
        ],
    }
    return json.dumps(doc, indent=3).encode()


def make_manifest_list(manifest_digests: List[str]) -> bytes:
    doc = {
        "schemaVersion": 2,
        "mediaType": MEDIATYPE_LIST,
        "manifests": [
            {
                "mediaType": MEDIATYPE_V2,
                "size": 100,
                "digest": d,
                "platform": {"architecture": "amd64", "os": "linux"},
            }
            for d in manifest_digests
        ],
    }
    return json.dumps(doc, indent=3).encode()


def make_signed_v1_manifest(name: str, tag: str, blob_sums: List[str]) -> Tuple[bytes, bytes]:
    """
    Build a JWS "pretty-signed" schema-1 manifest.

    Returns:
        (body, payload): the manifest as served, and the signed payload its
        digest is computed over (the body without the "signatures" key)
    """
    doc = {
        "schemaVersion": 1,
        "name": name,
        "tag": tag,
        "architecture": "amd64",
        "fsLayers": [{"blobSum": b} for b in blob_sums],
        "history": [{"v1Compatibility": json.dumps({"id": str(i)})} for i in range(len(blob_sums))],
    }
    payload = json.dumps(doc, indent=3).encode()
    format_length = payload.rindex(b"\n}")
    protected = {
        "formatLength": format_length,
        "formatTail": b64url(payload[format_length:]),
        "time": "2015-06-01T23:43:55Z",
    }
    signature = {
        "header": {"alg": "ES256", "jwk": {"crv": "P-256", "kty": "EC", "x": "eA", "y": "eQ"}},
        "signature": b64url(b"not-a-real-signature"),
        "protected": b64url(json.dumps(protected).encode()),
    }
    body = (payload[:format_length] + b',\n   "signatures": '
            + json.dumps([signature], indent=3).encode() + b"\n}")
    return body, payload


def _errors(code: str, message: str, detail=None) -> dict:
    return {"errors": [{"code": code, "message": message, "detail": detail}]}


@dataclass
class StoredManifest:
    body: bytes
    content_type: str
    digest: str
    send_digest: bool = True


@dataclass
class FakeRegistry:
    """
    Fake registry state plus request log.

    Attributes:
        auth: "bearer", "basic" or None (anonymous)
        username / password: Credentials the token server or Basic auth accepts
        redirect_blobs: Serve blobs through a 307 to the CDN host
        redirect_loop: Make the CDN redirect to itself forever
    """
    auth: Optional[str] = "bearer"
    username: Optional[str] = None
    password: Optional[str] = None
    redirect_blobs: bool = False
    redirect_loop: bool = False
    api_version_header: bool = True
    manifests: Dict[Tuple[str, str], StoredManifest] = field(default_factory=dict)
    blobs: Dict[Tuple[str, str], bytes] = field(default_factory=dict)
    tags: Dict[str, List[str]] = field(default_factory=dict)
    uploads: Dict[str, str] = field(default_factory=dict)
    requests: List[httpx.Request] = field(default_factory=list)
    token_requests: List[httpx.Request] = field(default_factory=list)
    cdn_requests: List[httpx.Request] = field(default_factory=list)
    issued_tokens: Dict[str, str] = field(default_factory=dict)
    _counter: itertools.count = field(default_factory=lambda: itertools.count(1))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # Seeding

    def add_manifest(self, repo: str, ref: str, body: bytes, content_type: str = MEDIATYPE_V2,
                     digest: Optional[str] = None, send_digest: bool = True) -> str:
        digest = digest or sha256_digest(body)
        stored = StoredManifest(body=body, content_type=content_type, digest=digest, send_digest=send_digest)
        self.manifests[(repo, ref)] = stored
        self.manifests[(repo, digest)] = stored
        if not ref.startswith("sha256:"):
            self.tags.setdefault(repo, []).append(ref)
        return digest

    def add_blob(self, repo: str, data: bytes, served: Optional[bytes] = None) -> str:
        """Store a blob; ``served`` replaces the bytes actually sent (corruption)."""
        digest = sha256_digest(data)
        self.blobs[(repo, digest)] = data if served is None else served
        self.tags.setdefault(repo, [])
        return digest

    # Request handling

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "auth.example.com":
            return self._token(request)
        if request.url.host == "cdn.example.com":
            return self._cdn(request)
        return self._registry(request)

    def _token(self, request: httpx.Request) -> httpx.Response:
        self.token_requests.append(request)
        if self.username is not None:
            expected = "Basic " + base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
            if request.headers.get("authorization") != expected:
                return httpx.Response(401, json={"details": "incorrect username or password"})
        scopes = request.url.params.get_list("scope")
        token = f"token-{next(self._counter)}"
        self.issued_tokens[token] = " ".join(scopes)
        return httpx.Response(200, json={"token": token, "expires_in": 300})

    def _cdn(self, request: httpx.Request) -> httpx.Response:
        self.cdn_requests.append(request)
        if self.redirect_loop:
            return httpx.Response(307, headers={"Location": str(request.url)})
        digest = request.url.path.rsplit("/", 1)[-1]
        for (_, d), data in self.blobs.items():
            if d == digest:
                headers = {"Content-Type": "application/octet-stream", "Content-Length": str(len(data))}
                if request.method == "HEAD":
                    return httpx.Response(200, headers=headers)
                return httpx.Response(200, headers=headers, content=data)
        return httpx.Response(404, text="<Error><Code>NoSuchKey</Code></Error>",
                              headers={"Content-Type": "application/xml"})

    def _challenge(self, name: Optional[str], action: str) -> httpx.Response:
        if self.auth == "basic":
            header = 'Basic realm="Registry Realm"'
        else:
            header = f'Bearer realm="{REALM}",service="{SERVICE}"'
            if name:
                header += f',scope="repository:{name}:{action}"'
        return httpx.Response(
            401,
            headers={"WWW-Authenticate": header, "Docker-Distribution-Api-Version": "registry/2.0"},
            json=_errors("UNAUTHORIZED", "authentication required"),
        )

    def _authorized(self, request: httpx.Request, name: Optional[str], action: str) -> bool:
        if self.auth is None:
            return True
        value = request.headers.get("authorization", "")
        if self.auth == "basic":
            expected = "Basic " + base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
            return value == expected
        if not value.startswith("Bearer "):
            return False
        scope = self.issued_tokens.get(value[len("Bearer "):])
        if scope is None:
            return False
        if name is None:
            return True
        for entry in scope.split():
            parts = entry.split(":")
            if len(parts) == 3 and parts[1] == name and action in parts[2].split(","):
                return True
        return False

    def _registry(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        method = request.method
        base_headers = {"Docker-Distribution-Api-Version": "registry/2.0"} if self.api_version_header else {}

        if path == "/v2/":
            if not self._authorized(request, None, "pull"):
                return self._challenge(None, "pull")
            return httpx.Response(200, headers=base_headers, json={})

        match = _UPLOADS.match(path) or _UPLOAD.match(path)
        if match:
            name = match.group("name")
            if not self._authorized(request, name, "push"):
                return self._challenge(name, "pull,push")
            if method == "POST":
                uuid = f"upload-{next(self._counter)}"
                self.uploads[uuid] = name
                return httpx.Response(
                    202, headers={"Location": f"/v2/{name}/blobs/uploads/{uuid}", **base_headers})
            data = request.content
            digest = request.url.params.get("digest")
            if match.group("uuid") not in self.uploads or digest != sha256_digest(data):
                return httpx.Response(400, json=_errors("DIGEST_INVALID", "provided digest did not match uploaded content"))
            self.blobs[(name, digest)] = data
            return httpx.Response(201, headers={"Docker-Content-Digest": digest,
                                                "Location": f"/v2/{name}/blobs/{digest}"})

        match = _TAGS.match(path)
        if match:
            name = match.group("name")
            if not self._authorized(request, name, "pull"):
                return self._challenge(name, "pull")
            if name not in self.tags:
                return httpx.Response(404, json=_errors("NAME_UNKNOWN", "repository name not known to registry"))
            return httpx.Response(200, headers=base_headers, json={"name": name, "tags": self.tags[name]})

        match = _MANIFEST.match(path)
        if match:
            return self._manifest(request, match.group("name"), match.group("ref"), base_headers)

        match = _BLOB.match(path)
        if match:
            return self._blob(request, match.group("name"), match.group("digest"), base_headers)

        return httpx.Response(404, text="404 page not found\n")

    def _manifest(self, request: httpx.Request, name: str, ref: str, base_headers: dict) -> httpx.Response:
        action = "pull" if request.method in ("GET", "HEAD") else "push"
        if not self._authorized(request, name, action):
            return self._challenge(name, "pull" if action == "pull" else "pull,push")

        if request.method == "PUT":
            body = request.content
            digest = self.add_manifest(name, ref, body, request.headers.get("content-type", ""))
            return httpx.Response(201, headers={
                "Docker-Content-Digest": digest,
                "Location": f"/v2/{name}/manifests/{digest}",
            })

        stored = self.manifests.get((name, ref))
        if stored is None:
            return httpx.Response(404, json=_errors("MANIFEST_UNKNOWN", "manifest unknown", {"Tag": ref}))

        if request.method == "DELETE":
            for key in [k for k, v in self.manifests.items() if v is stored]:
                del self.manifests[key]
            return httpx.Response(202, headers=base_headers)

        headers = {"Content-Type": stored.content_type, **base_headers}
        if stored.send_digest:
            headers["Docker-Content-Digest"] = stored.digest
        return httpx.Response(200, headers=headers, content=stored.body)

    def _blob(self, request: httpx.Request, name: str, digest: str, base_headers: dict) -> httpx.Response:
        if not self._authorized(request, name, "pull"):
            return self._challenge(name, "pull")
        data = self.blobs.get((name, digest))
        if data is None:
            return httpx.Response(404, json=_errors("BLOB_UNKNOWN", "blob unknown to registry", digest))

        headers = {"Docker-Content-Digest": digest, **base_headers}
        if self.redirect_blobs:
            headers["Location"] = f"{CDN}/blobs/{digest}"
            return httpx.Response(307, headers=headers)
        headers["Content-Type"] = "application/octet-stream"
        headers["Content-Length"] = str(len(data))
        if request.method == "HEAD":
            return httpx.Response(200, headers=headers)
        return httpx.Response(200, headers=headers, content=data)


def seeded_registry(**kwargs) -> Tuple[FakeRegistry, Dict[str, str]]:
    """
    A fake registry holding ``acme/widget`` with one layer and two manifests.

    Returns:
        (registry, info) where info maps "layer" and "manifest" to their digests
    """
    registry = FakeRegistry(**kwargs)
    layer_data = b"layer contents " * 100
    layer = registry.add_blob("acme/widget", layer_data)
    body = make_v2_manifest([layer])
    manifest_digest = registry.add_manifest("acme/widget", "1.0", body)
    registry.add_manifest("acme/widget", "latest", body)
    return registry, {"layer": layer, "manifest": manifest_digest}


__all__ = [
    "FakeRegistry",
    "StoredManifest",
    "seeded_registry",
    "make_v2_manifest",
    "make_manifest_list",
    "make_signed_v1_manifest",
    "sha256_digest",
    "b64url",
    "REALM",
    "SERVICE",
    "CDN",
    "MEDIATYPE_V1",
    "MEDIATYPE_V2",
    "MEDIATYPE_LIST",
    "MEDIATYPE_OCI",
]
