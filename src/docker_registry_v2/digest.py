"""
Content digest and manifest verification.

Computes registry digests, verifies ``Docker-Content-Digest`` and
``Content-MD5`` response headers, wraps blob downloads in a hashing iterator
that fails at end-of-stream, and recovers the signed payload of legacy
schema-1 (JWS "pretty-signed") manifests.

Schema-1 digests are taken over the signed payload, not the response body:
the raw JSON minus the trailing ``"signatures"`` key, with whitespace and key
order preserved. Each signature's ``protected`` header (base64url JSON) holds
``formatLength``, the byte offset where the signatures begin, and
``formatTail``, the base64url bytes to append there (usually ``"\\n}"``).
See https://docs.docker.com/registry/spec/api/#digest-header and
docker/libtrust ``jsonsign.go#ParsePrettySignature``.
"""
from __future__ import annotations

import base64
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from .errors import BadDigestError, InvalidContentError

logger = logging.getLogger(__name__)

__all__ = [
    "SUPPORTED_ALGORITHMS",
    "DockerContentDigest",
    "DigestValidatingStream",
    "Jws",
    "compute_digest",
    "parse_docker_content_digest",
    "jws_from_manifest",
    "compute_manifest_digest",
    "digest_from_manifest_str",
    "verify_docker_content_digest_header",
    "verify_content_md5",
]

SUPPORTED_ALGORITHMS = ("sha256",)


def compute_digest(data: bytes, algorithm: str = "sha256") -> str:
    """Digest string ``<algorithm>:<hex>`` for ``data``."""
    return f"{algorithm}:{hashlib.new(algorithm, data).hexdigest()}"


def _b64url_decode(value: str) -> bytes:
    raw = value.encode("ascii")
    return base64.urlsafe_b64decode(raw + b"=" * (-len(raw) % 4))


@dataclass(frozen=True)
class DockerContentDigest:
    """
    A parsed ``Docker-Content-Digest`` header.

    Attributes:
        raw: Header value as received
        algorithm: Hash algorithm ("sha256")
        expected_digest: Expected hex digest
    """
    raw: str
    algorithm: str
    expected_digest: str

    def start_hash(self):
        if self.algorithm not in SUPPORTED_ALGORITHMS:
            raise BadDigestError(f"Unsupported hash algorithm {self.algorithm}")
        return hashlib.new(self.algorithm)

    def verify(self, payload: bytes) -> None:
        """
        Raises:
            BadDigestError: If ``payload`` does not hash to the expected digest
        """
        hasher = self.start_hash()
        hasher.update(payload)
        actual = hasher.hexdigest()
        if actual != self.expected_digest:
            raise BadDigestError(
                f"Docker-Content-Digest ({self.expected_digest} vs {actual})",
                expected=self.raw,
                actual=f"{self.algorithm}:{actual}",
            )

    def validate_stream(self, chunks: Iterable[bytes]) -> DigestValidatingStream:
        return DigestValidatingStream(chunks, self)


class DigestValidatingStream:
    """
    Iterator over blob chunks that hashes each chunk as it passes through.

    Nothing is buffered. After the last chunk has been handed to the consumer
    the running digest is compared to the expected one, and the final
    ``next()`` raises ``BadDigestError`` on mismatch instead of
    ``StopIteration``. A stream that is abandoned early is never marked
    verified.
    """

    def __init__(self, chunks: Iterable[bytes], expected: DockerContentDigest):
        self._chunks = iter(chunks)
        self._expected = expected
        self._hash = expected.start_hash()
        self._done = False
        self.bytes_read = 0
        self.verified = False

    def __iter__(self) -> Iterator[bytes]:
        return self

    def __next__(self) -> bytes:
        if self._done:
            raise StopIteration
        try:
            chunk = next(self._chunks)
        except StopIteration:
            self._done = True
            self._finish()
            raise
        self._hash.update(chunk)
        self.bytes_read += len(chunk)
        return chunk

    def _finish(self) -> None:
        actual = self._hash.hexdigest()
        if actual != self._expected.expected_digest:
            logger.debug(f"Blob digest mismatch after {self.bytes_read} bytes: "
                         f"expected {self._expected.expected_digest}, got {actual}")
            raise BadDigestError(
                f"Docker-Content-Digest ({self._expected.expected_digest} vs {actual})",
                expected=self._expected.raw,
                actual=f"{self._expected.algorithm}:{actual}",
            )
        self.verified = True

    def read_all(self) -> bytes:
        """Consume the rest of the stream and return it, verifying at the end."""
        return b"".join(self)

    def close(self) -> None:
        self._done = True
        close = getattr(self._chunks, "close", None)
        if close is not None:
            close()


def parse_docker_content_digest(dcd: Optional[str]) -> DockerContentDigest:
    """
    Parse a ``Docker-Content-Digest`` header value (``algorithm:hex``).

    Raises:
        BadDigestError: If the value is missing, malformed or uses an
            unsupported algorithm
    """
    if not dcd:
        raise BadDigestError('missing "Docker-Content-Digest" header')
    err_pre = f'could not parse Docker-Content-Digest header "{dcd}": '

    algorithm, sep, hex_digest = dcd.partition(":")
    if not sep or not hex_digest:
        raise BadDigestError(err_pre + json.dumps(dcd))
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise BadDigestError(err_pre + f"Unsupported hash algorithm {json.dumps(algorithm)}")

    return DockerContentDigest(raw=dcd, algorithm=algorithm, expected_digest=hex_digest)


@dataclass
class Jws:
    """Signed payload and signatures recovered from a schema-1 manifest."""
    payload: bytes
    signatures: List[Dict[str, Any]] = field(default_factory=list)


def jws_from_manifest(manifest: Dict[str, Any], body: bytes) -> Jws:
    """
    Recover the JWS payload that was signed for a schema-1 manifest.

    Mimics ``ParsePrettySignature`` in docker/libtrust ``jsonsign.go``.

    Args:
        manifest: Decoded manifest JSON
        body: Raw manifest bytes exactly as received

    Returns:
        Jws with ``body[:formatLength] + formatTail`` as payload

    Raises:
        InvalidContentError: If there are no signatures, a protected header
            cannot be parsed, or signatures disagree on formatLength/formatTail
    """
    signatures = manifest.get("signatures")
    if not isinstance(signatures, list) or not signatures:
        raise InvalidContentError('manifest has no "signatures"')

    format_length: Optional[int] = None
    format_tail: Optional[bytes] = None
    jws = Jws(payload=b"")

    for i, sig in enumerate(signatures):
        protected64 = sig.get("protected") if isinstance(sig, dict) else None
        try:
            protected_header = json.loads(_b64url_decode(protected64))
        except (TypeError, ValueError, AttributeError) as e:
            raise InvalidContentError(
                f'could not parse manifest "signatures[{i}].protected": {protected64}: {e}') from e
        if not isinstance(protected_header, dict):
            raise InvalidContentError(
                f'could not parse manifest "signatures[{i}].protected": {protected64}: not an object')

        length = protected_header.get("formatLength")
        if not isinstance(length, int) or isinstance(length, bool) or length < 0:
            raise InvalidContentError(f'invalid "formatLength" in "signatures[{i}].protected": {length}')
        if format_length is None:
            format_length = length
        elif length != format_length:
            raise InvalidContentError(f'conflicting "formatLength" in "signatures[{i}].protected": {length}')

        tail64 = protected_header.get("formatTail")
        if not tail64 or not isinstance(tail64, str):
            raise InvalidContentError(f'missing "formatTail" in "signatures[{i}].protected"')
        try:
            tail = _b64url_decode(tail64)
        except ValueError as e:
            raise InvalidContentError(f'invalid "formatTail" in "signatures[{i}].protected": {e}') from e
        if format_tail is None:
            format_tail = tail
        elif tail != format_tail:
            raise InvalidContentError(
                f'conflicting "formatTail" in "signatures[{i}].protected": {tail!r}')

        header = sig.get("header") or {}
        jws.signatures.append({
            "header": {
                "alg": header.get("alg"),
                "chain": header.get("chain"),
                "jwk": header.get("jwk"),
            },
            "signature": sig.get("signature"),
            "protected": protected64,
        })

    if format_length > len(body):
        raise InvalidContentError(
            f'"formatLength" {format_length} exceeds manifest length {len(body)}')
    jws.payload = body[:format_length] + format_tail
    return jws


def _load_manifest(manifest_bytes: bytes) -> Dict[str, Any]:
    try:
        manifest = json.loads(manifest_bytes)
    except ValueError as e:
        raise InvalidContentError(f"could not parse manifest: {e}") from e
    if not isinstance(manifest, dict):
        raise InvalidContentError("could not parse manifest: not a JSON object")
    return manifest


def compute_manifest_digest(manifest_bytes: Union[bytes, str]) -> str:
    """
    Calculate the ``Docker-Content-Digest`` for a manifest.

    Schema-1 manifests hash the reconstructed signed payload; later schema
    versions hash the raw body.

    Raises:
        InvalidContentError: If the manifest or its signatures cannot be parsed
    """
    if isinstance(manifest_bytes, str):
        manifest_bytes = manifest_bytes.encode("utf-8")
    manifest = _load_manifest(manifest_bytes)
    if manifest.get("schemaVersion") == 1:
        return compute_digest(jws_from_manifest(manifest, manifest_bytes).payload)
    return compute_digest(manifest_bytes)


def digest_from_manifest_str(manifest_str: Union[str, bytes]) -> str:
    """
    Like ``compute_manifest_digest`` but lenient about schema-1 signatures.

    A schema-1 manifest whose signatures are absent or unparseable is hashed
    as a whole, as registries do for unsigned schema-1 uploads.
    """
    manifest_bytes = manifest_str.encode("utf-8") if isinstance(manifest_str, str) else manifest_str
    manifest = _load_manifest(manifest_bytes)
    if manifest.get("schemaVersion") == 1:
        try:
            return compute_digest(jws_from_manifest(manifest, manifest_bytes).payload)
        except InvalidContentError as e:
            logger.debug(f"Hashing whole schema-1 manifest, signatures unusable: {e}")
    return compute_digest(manifest_bytes)


def verify_docker_content_digest_header(response, payload: bytes) -> None:
    """
    Verify a response's ``Docker-Content-Digest`` header against ``payload``.

    Raises:
        BadDigestError: If the header is missing, malformed or does not match
    """
    parse_docker_content_digest(response.headers.get("docker-content-digest")).verify(payload)


def verify_content_md5(response, body: bytes) -> None:
    """
    Verify a legacy ``Content-MD5`` header over the full decoded body.

    Partial content (206) cannot match a whole-body digest and is skipped.

    Raises:
        BadDigestError: On mismatch
    """
    content_md5 = response.headers.get("content-md5")
    if not content_md5 or response.status_code == 206:
        return
    actual = base64.b64encode(hashlib.md5(body, usedforsecurity=False).digest()).decode("ascii")
    if content_md5 != actual:
        raise BadDigestError(f"Content-MD5 ({content_md5} vs {actual})", expected=content_md5, actual=actual)
