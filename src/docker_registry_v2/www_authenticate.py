"""
WWW-Authenticate challenge parsing.

Parses a single HTTP auth challenge such as::

    Bearer realm="https://auth.docker.io/token",service="registry.docker.io"
    Basic realm="registry456.example.com"

into its scheme and parameters. Multiple challenges in one header value are
not supported; registries seen in practice send exactly one.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .errors import ParseError

__all__ = ["AuthChallenge", "parse_www_authenticate"]

_TOKEN = re.compile(r"[!#$%&'*+.^_`|~0-9A-Za-z-]+")
_WS = re.compile(r"[ \t]*")


@dataclass(frozen=True)
class AuthChallenge:
    """
    A parsed auth challenge.

    Attributes:
        scheme: Auth scheme as sent (compare case-insensitively)
        params: Challenge parameters, keys lower-cased
    """
    scheme: str
    params: Dict[str, str] = field(default_factory=dict)

    @property
    def realm(self) -> Optional[str]:
        return self.params.get("realm")

    @property
    def service(self) -> Optional[str]:
        return self.params.get("service")

    @property
    def scope(self) -> Optional[str]:
        return self.params.get("scope")

    def is_scheme(self, name: str) -> bool:
        return self.scheme.lower() == name.lower()


def _skip_ws(header: str, pos: int) -> int:
    return _WS.match(header, pos).end()


def _read_quoted(header: str, pos: int) -> Tuple[str, int]:
    """Read a quoted-string starting at the opening quote; returns (value, end)."""
    out = []
    i = pos + 1
    while i < len(header):
        ch = header[i]
        if ch == "\\":
            if i + 1 >= len(header):
                break
            out.append(header[i + 1])
            i += 2
        elif ch == '"':
            return "".join(out), i + 1
        else:
            out.append(ch)
            i += 1
    raise ParseError(f"unterminated quoted string at position {pos}")


def parse_www_authenticate(header: Optional[str]) -> AuthChallenge:
    """
    Parse a ``WWW-Authenticate`` header value holding one challenge.

    Args:
        header: Raw header value

    Returns:
        AuthChallenge with scheme and lower-cased parameter names

    Raises:
        ParseError: On a missing scheme, malformed parameter or bad quoting
    """
    if header is None:
        raise ParseError("could not parse WWW-Authenticate header: missing")

    pos = _skip_ws(header, 0)
    m = _TOKEN.match(header, pos)
    if not m:
        raise ParseError(f'could not parse WWW-Authenticate header "{header}": missing auth scheme')
    scheme = m.group(0)
    pos = m.end()

    params: Dict[str, str] = {}
    if pos < len(header) and header[pos] not in " \t":
        raise ParseError(f'could not parse WWW-Authenticate header "{header}": junk after auth scheme')

    pos = _skip_ws(header, pos)
    while pos < len(header):
        m = _TOKEN.match(header, pos)
        if not m:
            raise ParseError(f'could not parse WWW-Authenticate header "{header}": '
                             f"expected parameter name at position {pos}")
        key = m.group(0).lower()
        pos = _skip_ws(header, m.end())
        if pos >= len(header) or header[pos] != "=":
            raise ParseError(f'could not parse WWW-Authenticate header "{header}": '
                             f'expected "=" after "{key}"')
        pos = _skip_ws(header, pos + 1)

        if pos < len(header) and header[pos] == '"':
            try:
                value, pos = _read_quoted(header, pos)
            except ParseError as e:
                raise ParseError(f'could not parse WWW-Authenticate header "{header}": {e}') from e
        else:
            m = _TOKEN.match(header, pos)
            if not m:
                raise ParseError(f'could not parse WWW-Authenticate header "{header}": '
                                 f'missing value for "{key}"')
            value, pos = m.group(0), m.end()
        params[key] = value

        pos = _skip_ws(header, pos)
        if pos < len(header):
            if header[pos] != ",":
                raise ParseError(f'could not parse WWW-Authenticate header "{header}": '
                                 f"expected \",\" at position {pos}")
            pos = _skip_ws(header, pos + 1)

    return AuthChallenge(scheme=scheme, params=params)
