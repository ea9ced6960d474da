"""
Origin fetcher - performs the upstream request under a wall-clock deadline and size cap.

Redirects are followed by hand (never by requests itself) so every hop goes
back through the SSRF guard before it is requested.
"""
import codecs
import logging
import random
import re
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urljoin

import requests
from requests.structures import CaseInsensitiveDict

from reflproxy import ssrf_guard
from reflproxy.errors import PayloadTooLargeError, UpstreamError, UpstreamTimeoutError, ValidationError
from reflproxy.url_validator import parse_target

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = (301, 302, 303, 307, 308)
CHUNK_SIZE = 8192
DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
DEFAULT_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

_CHARSET_RE = re.compile(r"charset\s*=\s*[\"']?([^\"';\s]+)", re.IGNORECASE)


@dataclass
class FetchResult:
    status_code: int
    headers: CaseInsensitiveDict
    body: bytes
    final_url: str
    content_type: str = ""
    encoding: Optional[str] = None
    redirect_location: Optional[str] = None
    redirects: list = field(default_factory=list)


def declared_charset(content_type):
    """The charset named in a Content-Type header, when it is a codec Python knows."""
    match = _CHARSET_RE.search(content_type or "")
    if not match:
        return None
    try:
        return codecs.lookup(match.group(1)).name
    except LookupError:
        return None


def build_headers(target, incoming_headers, user_agents):
    incoming_headers = incoming_headers or {}
    headers = {
        "User-Agent": random.choice(user_agents),
        "Accept": incoming_headers.get("Accept") or DEFAULT_ACCEPT,
        "Referer": target.origin + "/",
    }
    accept_language = incoming_headers.get("Accept-Language")
    if accept_language:
        headers["Accept-Language"] = accept_language
    return headers


class _Deadline:
    def __init__(self, seconds):
        self.seconds = seconds
        self.expires_at = time.monotonic() + seconds

    def remaining(self):
        left = self.expires_at - time.monotonic()
        if left <= 0:
            raise self.expired()
        return left

    def expired(self):
        return UpstreamTimeoutError(f"Request timeout after {self.seconds:g}s")


def _upstream_socket(resp):
    raw = getattr(resp, "raw", None)
    connection = getattr(raw, "_connection", None) or getattr(raw, "connection", None)
    return getattr(connection, "sock", None)


class _Watchdog:
    """Cuts the upstream connection when the deadline passes, even inside a blocking read.

    The socket timeout only bounds a single recv(), so a server dripping one byte
    at a time would otherwise hold a chunk read open indefinitely.
    """

    def __init__(self, resp, deadline):
        self.resp = resp
        self.deadline = deadline
        self.fired = False
        self._timer = None

    def __enter__(self):
        self._timer = threading.Timer(self.deadline.remaining(), self._fire)
        self._timer.daemon = True
        self._timer.start()
        return self

    def __exit__(self, *exc_info):
        self._timer.cancel()
        return False

    def _fire(self):
        self.fired = True
        logger.warning(f"[FETCH   ] ✗ deadline of {self.deadline.seconds:g}s reached mid-body, cutting connection")
        sock = _upstream_socket(self.resp)
        if sock is None:
            self.resp.close()
            return
        try:
            # shutdown() wakes a recv() blocked in the reading thread, close() would not
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"[FETCH   ] upstream socket already gone: {e}")


def _send(method, url, headers, body, deadline):
    try:
        return requests.request(
            method=method,
            url=url,
            headers=headers,
            data=body,
            allow_redirects=False,
            stream=True,
            timeout=deadline.remaining(),
        )
    except requests.exceptions.Timeout:
        raise deadline.expired()
    except requests.exceptions.RequestException as e:
        raise UpstreamError(f"Fetch failed: {e}")


def _read_body(resp, limit, deadline, watchdog=None):
    declared = resp.headers.get("Content-Length")
    if declared:
        try:
            declared_size = int(declared)
        except ValueError:
            declared_size = None
        if declared_size is not None and declared_size > limit:
            raise PayloadTooLargeError(declared_size, limit)

    chunks = []
    size = 0
    try:
        for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
            deadline.remaining()
            if not chunk:
                continue
            size += len(chunk)
            if size > limit:
                raise PayloadTooLargeError(size, limit)
            chunks.append(chunk)
    except (requests.exceptions.RequestException, OSError, ValueError) as e:
        if watchdog is not None and watchdog.fired:
            raise deadline.expired() from e
        if isinstance(e, requests.exceptions.Timeout):
            raise deadline.expired() from e
        if isinstance(e, requests.exceptions.RequestException):
            raise UpstreamError(f"Fetch failed while reading body: {e}") from e
        raise

    # A cut connection without Content-Length just looks like an early EOF
    if watchdog is not None and watchdog.fired:
        raise deadline.expired()
    return b"".join(chunks)


def _next_hop(current_url, location, config):
    """Resolve a Location header against the URL that produced it and vet the result."""
    next_url = urljoin(current_url, location.strip())
    try:
        target = parse_target(next_url)
    except ValidationError as e:
        raise UpstreamError(f"Invalid redirect target: {e.reason}")
    ssrf_guard.enforce(target.host, config)
    return target


def fetch(target, config, method="GET", incoming_headers=None, body=None):
    """Fetch a validated, guard-approved target and return a FetchResult."""
    method = method.upper()
    incoming_headers = incoming_headers or {}
    deadline = _Deadline(config.request_timeout)
    current = target
    redirects = []

    while True:
        headers = build_headers(current, incoming_headers, config.user_agents)
        if method == "POST":
            headers["Content-Type"] = incoming_headers.get("Content-Type") or DEFAULT_FORM_CONTENT_TYPE

        logger.info(f"[FETCH   ] → {method:4} {current.url[:80]}")
        resp = _send(method, current.url, headers, body if method == "POST" else None, deadline)

        try:
            location = resp.headers.get("Location")
            if resp.status_code in REDIRECT_STATUSES and location:
                next_target = _next_hop(current.url, location, config)
                if config.expose_redirects:
                    logger.info(f"[FETCH   ] ↪ {resp.status_code} exposing redirect to {next_target.url[:80]}")
                    return FetchResult(
                        status_code=resp.status_code,
                        headers=CaseInsensitiveDict(resp.headers),
                        body=b"",
                        final_url=current.url,
                        redirect_location=next_target.url,
                        redirects=redirects,
                    )
                if len(redirects) >= config.max_redirects:
                    raise UpstreamError(f"Too many redirects (limit: {config.max_redirects})")

                redirects.append(current.url)
                if resp.status_code in (301, 302, 303) and method == "POST":
                    method = "GET"
                    body = None
                logger.info(f"[FETCH   ] ↪ {resp.status_code} {next_target.url[:80]}")
                current = next_target
                continue

            with _Watchdog(resp, deadline) as watchdog:
                payload = _read_body(resp, config.max_body_bytes, deadline, watchdog)
        finally:
            resp.close()

        content_type = resp.headers.get("Content-Type", "")
        logger.info(f"[FETCH   ] ✓ {resp.status_code} {len(payload)}b {content_type or '-'}")
        return FetchResult(
            status_code=resp.status_code,
            headers=CaseInsensitiveDict(resp.headers),
            body=payload,
            final_url=current.url,
            content_type=content_type,
            encoding=declared_charset(content_type),
            redirects=redirects,
        )
