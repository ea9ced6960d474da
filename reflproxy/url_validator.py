"""
Target URL validation - decodes the ?url= parameter and accepts only absolute http(s) URLs
"""
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote_to_bytes, urlsplit, urlunsplit

from reflproxy.errors import DecodingError, InvalidProtocolError, MalformedURLError, MissingURLError

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_UNSAFE_CHARS_RE = re.compile(r"[\x00-\x20\x7f]")


@dataclass(frozen=True)
class ValidatedTarget:
    url: str
    scheme: str
    host: str
    port: Optional[int]
    path: str
    query: str

    @property
    def origin(self):
        netloc = self.host if ":" not in self.host else f"[{self.host}]"
        if self.port is not None:
            netloc = f"{netloc}:{self.port}"
        return f"{self.scheme}://{netloc}"


def percent_decode(raw):
    """Strictly decode %XX escapes; malformed escapes or non-UTF-8 bytes raise DecodingError."""
    match = _BAD_ESCAPE_RE.search(raw)
    if match:
        raise DecodingError(f"Malformed percent-escape at position {match.start()}")
    try:
        return unquote_to_bytes(raw).decode("utf-8")
    except UnicodeDecodeError:
        raise DecodingError("URL does not decode to valid UTF-8")


def decode_target(raw):
    """Return the target URL text carried by a raw ?url= value.

    The HTTP layer has already undone one level of encoding. A value that still
    lacks a scheme (``https%3A%2F%2F...``) was encoded twice and is decoded once
    more; an absolute value keeps its own escapes so its query string survives.
    """
    if raw is None or not raw.strip():
        raise MissingURLError()
    raw = raw.strip()
    decoded = percent_decode(raw)
    if _SCHEME_RE.match(raw):
        return raw
    return decoded.strip()


def parse_target(url):
    """Parse an absolute http(s) URL into a ValidatedTarget."""
    if not _SCHEME_RE.match(url):
        raise InvalidProtocolError("Invalid URL: only absolute http:// and https:// URLs are allowed")
    if _UNSAFE_CHARS_RE.search(url):
        raise MalformedURLError("Invalid URL: contains whitespace or control characters")

    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise MalformedURLError(f"Invalid URL: {e}")

    host = (parts.hostname or "").rstrip(".")
    if not host:
        raise MalformedURLError("Invalid URL: missing hostname")
    if "@" in parts.netloc:
        raise MalformedURLError("Invalid URL: credentials are not allowed")

    scheme = parts.scheme.lower()
    netloc = host if ":" not in host else f"[{host}]"
    if port is not None:
        netloc = f"{netloc}:{port}"
    path = parts.path or "/"
    canonical = urlunsplit((scheme, netloc, path, parts.query, parts.fragment))

    return ValidatedTarget(
        url=canonical,
        scheme=scheme,
        host=host,
        port=port,
        path=path,
        query=parts.query,
    )


def validate_target(raw):
    """Decode and validate a raw ?url= parameter value."""
    return parse_target(decode_target(raw))
