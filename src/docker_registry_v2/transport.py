"""
HTTP transport for the Docker Registry API.

Wraps ``httpx`` request issuance with the header handling, response
classification and redirect following the registry client needs:

- every request carries ``User-Agent`` (and ``Accept`` unless disabled)
- responses outside the caller's expected statuses raise ``HttpError`` with
  the registry's error entries parsed from the body
- buffered bodies are checked against ``Content-MD5`` and ``Content-Length``
- ``follow_redirect_chain`` follows blob redirects itself, re-rooting each
  hop at the target origin with fresh headers so credentials never leave
  the origin that issued them
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union
from urllib.parse import urljoin, urlsplit

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .digest import verify_content_md5
from .errors import HttpError, InvalidContentError, TooManyRedirectsError
from .models import RegistryErrorEntry

logger = logging.getLogger(__name__)

__all__ = [
    "REDIRECT_STATUSES",
    "RegistryResponse",
    "RegistryHttpClient",
    "parse_registry_errors",
    "follow_redirect_chain",
    "origin_of",
    "build_http_client",
]

MAX_REGISTRY_ERROR_LENGTH = 10000
MAX_ERROR_TEXT = 4096
REDIRECT_STATUSES = (301, 302, 303, 307, 308)

# Connection-level failures where no request reached the registry
_RETRYABLE = (httpx.ConnectError, httpx.ConnectTimeout)


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def parse_registry_errors(obj: Any) -> List[RegistryErrorEntry]:
    """
    Extract registry error entries from a decoded error body.

    Shapes are tried in order: ``{"error": {...}}``, ``{"errors": [...]}``,
    ``{"code": ..., "message": ...}`` and the token endpoint's
    ``{"details": "..."}``.
    """
    if not isinstance(obj, dict):
        return []

    def entry(item: Any) -> Optional[RegistryErrorEntry]:
        if not isinstance(item, dict):
            return None
        return RegistryErrorEntry(
            code=str(item["code"]) if item.get("code") is not None else None,
            message=str(item.get("message") or ""),
            detail=item.get("detail"),
        )

    if isinstance(obj.get("error"), dict):
        found = [entry(obj["error"])]
    elif isinstance(obj.get("errors"), list):
        found = [entry(e) for e in obj["errors"]]
    elif obj.get("code") or obj.get("message"):
        found = [entry(obj)]
    elif isinstance(obj.get("details"), str):
        found = [RegistryErrorEntry(message=obj["details"])]
    else:
        found = []
    return [e for e in found if e is not None]


class RegistryResponse:
    """
    A registry HTTP response with verified body access.

    Attributes:
        response: The underlying ``httpx.Response``
    """

    def __init__(self, response: httpx.Response):
        self.response = response
        self._body: Optional[bytes] = None

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self.response.headers

    @property
    def url(self) -> str:
        return str(self.response.url)

    @property
    def method(self) -> str:
        return self.response.request.method

    def __repr__(self) -> str:
        return f"<RegistryResponse [{self.status_code}] {self.method} {self.url}>"

    def docker_body(self) -> bytes:
        """
        Read the whole body, verifying Content-MD5 and Content-Length.

        Raises:
            BadDigestError: If Content-MD5 does not match
            InvalidContentError: If fewer/more bytes than Content-Length arrived
        """
        if self._body is not None:
            return self._body

        body = self.response.read()
        verify_content_md5(self.response, body)

        content_length = self.headers.get("content-length")
        if (content_length is not None and self.method != "HEAD"
                and "content-encoding" not in self.headers):
            try:
                expected = int(content_length)
            except ValueError:
                expected = None
            if expected is not None and expected != len(body):
                raise InvalidContentError(
                    f"Incomplete content: Content-Length:{content_length} but got {len(body)} bytes")

        self._body = body
        return body

    def docker_json(self) -> Any:
        """
        Decode the body as JSON.

        Returns:
            Decoded JSON, or None for an empty / all-whitespace body

        Raises:
            InvalidContentError: If a non-empty body is not valid JSON
        """
        text = self.docker_body().decode("utf-8", errors="replace")
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except ValueError as e:
            raise InvalidContentError(f"Invalid JSON in response: {e}") from e

    def docker_errors(self) -> List[RegistryErrorEntry]:
        """Registry error entries from an error body; empty when unparseable."""
        if self.status_code < 400 or self.is_html:
            return []
        body = self._raw_body()
        if not body.strip() or len(body) > MAX_REGISTRY_ERROR_LENGTH:
            return []
        try:
            return parse_registry_errors(json.loads(body))
        except ValueError:
            return []

    @property
    def is_html(self) -> bool:
        return self.headers.get("content-type", "").split(";", 1)[0].strip().lower() == "text/html"

    def docker_error(self, base_msg: str, error_cls=HttpError) -> HttpError:
        """
        Build an ``HttpError`` for this response.

        The message is ``"<base_msg>: (<code>) <message>"`` when the registry
        sent a structured error, else the start of the raw body.
        """
        errors = self.docker_errors()
        message = ""
        if errors and errors[0].code and errors[0].message:
            message = f"({errors[0].code}) {errors[0].message}"
        elif errors and errors[0].message:
            message = errors[0].message
        elif self.is_html:
            message = f"<HTML error body, {len(self._raw_body())} bytes>"
        else:
            message = self._raw_body()[:MAX_ERROR_TEXT].decode("utf-8", errors="replace")
        return error_cls(f"{base_msg}: {message}" if message else base_msg,
                         response=self.response, errors=errors)

    def _raw_body(self) -> bytes:
        # Error bodies are read without integrity checks; they are only shown
        try:
            return self.response.read()
        except httpx.HTTPError as e:
            logger.debug(f"Could not read error body from {self.url}: {e}")
            return b""

    def iter_stream(self, chunk_size: Optional[int] = None) -> Iterator[bytes]:
        """Stream the decoded body, closing the response when exhausted."""
        try:
            yield from self.response.iter_bytes(chunk_size)
        finally:
            self.response.close()

    def drain(self) -> None:
        """Consume and discard the body so the connection can be released."""
        try:
            self.response.read()
        finally:
            self.response.close()

    def close(self) -> None:
        self.response.close()


class RegistryHttpClient:
    """
    Issues requests against one origin.

    Several instances may share one ``httpx.Client`` (and its connection
    pool); headers are never shared between them.
    """

    def __init__(
        self,
        url: str,
        http: httpx.Client,
        user_agent: str,
        accept: Optional[str] = "application/json",
        retries: int = 0,
    ):
        self.url = url
        self.http = http
        self.user_agent = user_agent
        self.accept = accept
        self.retries = retries

    def for_origin(self, url: str, accept: Optional[str] = None) -> RegistryHttpClient:
        """A client rooted at another origin, sharing the connection pool."""
        return RegistryHttpClient(
            url=origin_of(url),
            http=self.http,
            user_agent=self.user_agent,
            accept=accept,
            retries=self.retries,
        )

    def _build_headers(self, headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
        merged: Dict[str, str] = {}
        if self.accept:
            merged["Accept"] = self.accept
        merged["User-Agent"] = self.user_agent
        for key, value in (headers or {}).items():
            if value is None:
                continue
            # Case-insensitive override of the defaults
            for existing in [k for k in merged if k.lower() == key.lower()]:
                del merged[existing]
            merged[key] = value
        return merged

    def request(
        self,
        method: str,
        path: str,
        headers: Optional[Mapping[str, str]] = None,
        content: Union[bytes, Iterable[bytes], None] = None,
        expect_status: Sequence[int] = (200,),
        follow_redirects: bool = False,
        stream: bool = False,
        retry: bool = True,
    ) -> RegistryResponse:
        """
        Issue one request and classify its status.

        Args:
            method: HTTP method
            path: Path relative to this client's URL, or an absolute URL
            headers: Extra headers; they override Accept/User-Agent defaults
            content: Request body
            expect_status: Statuses that are not errors
            follow_redirects: Let httpx follow redirects (it drops
                Authorization when the origin changes)
            stream: Leave the body unread for streaming
            retry: Allow connect-failure retries for GET/HEAD

        Raises:
            HttpError: If the status is not in ``expect_status``
            httpx.TransportError: On connection-level failures
        """
        url = urljoin(self.url, path)
        request = self.http.build_request(method, url, headers=self._build_headers(headers), content=content)
        logger.debug(f"{method} {url}")

        if retry and self.retries > 0 and method in ("GET", "HEAD"):
            retrying = Retrying(
                stop=stop_after_attempt(self.retries + 1),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type(_RETRYABLE),
                reraise=True,
            )
            raw = retrying(self.http.send, request, stream=stream, follow_redirects=follow_redirects)
        else:
            raw = self.http.send(request, stream=stream, follow_redirects=follow_redirects)

        response = RegistryResponse(raw)
        logger.debug(f"{method} {url} -> {raw.status_code}")

        if raw.status_code not in expect_status:
            error = response.docker_error(f"Received unexpected HTTP {raw.status_code} from {method} {path}")
            response.close()
            raise error
        return response


def follow_redirect_chain(
    client: RegistryHttpClient,
    method: str,
    path: str,
    headers: Optional[Mapping[str, str]] = None,
    follow: bool = True,
    max_redirects: int = 3,
    stream: bool = False,
) -> List[RegistryResponse]:
    """
    Request ``path`` and follow redirects by hand, returning every response.

    Each hop after the first is issued by a client rooted at the redirect
    target's origin with no headers beyond the defaults, so Authorization
    and other caller headers are never forwarded. Redirect bodies are drained
    before moving on.

    Returns:
        All responses in order; the last one holds the content

    Raises:
        TooManyRedirectsError: If more than ``max_redirects`` requests are needed
        HttpError: If a hop answers with a non-success, non-redirect status
        ValueError: If ``max_redirects`` is below 1
    """
    if max_redirects < 1:
        raise ValueError(f"max_redirects must be at least 1, got {max_redirects}")

    responses: List[RegistryResponse] = []
    current = client
    current_path = path
    current_headers: Optional[Mapping[str, str]] = headers
    hops = 0

    while hops < max_redirects:
        hops += 1
        resp = current.request(
            method,
            current_path,
            headers=current_headers,
            expect_status=(200,) + REDIRECT_STATUSES,
            follow_redirects=False,
            stream=stream,
        )
        responses.append(resp)

        location = resp.headers.get("location")
        if not follow or resp.status_code not in REDIRECT_STATUSES or not location:
            return responses

        target = urljoin(resp.url, location)
        logger.debug(f"Following redirect {hops} from {resp.url} to {origin_of(target)}")
        resp.drain()

        current = current.for_origin(target, accept=None)
        current_path = target[len(current.url):] or "/"
        current_headers = {}

    for resp in responses:
        resp.close()
    raise TooManyRedirectsError(f"maximum number of redirects ({max_redirects}) hit")


def build_http_client(settings, transport: Optional[httpx.BaseTransport] = None) -> httpx.Client:
    """
    Create the ``httpx.Client`` shared by every request of one registry client.

    Args:
        settings: ClientSettings supplying timeouts and TLS verification
        transport: Optional transport override (e.g. ``httpx.MockTransport``)
    """
    return httpx.Client(
        timeout=httpx.Timeout(settings.http_timeout_s, connect=settings.connect_timeout_s),
        verify=not settings.insecure,
        transport=transport,
        follow_redirects=False,
    )
