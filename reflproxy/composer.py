"""
Response composer - final status, headers and body for every outcome of a proxy request
"""
from dataclasses import dataclass
from typing import Tuple

from reflproxy.content_classifier import ContentClass

CORS_HEADERS = (
    ("Access-Control-Allow-Origin", "*"),
    ("Access-Control-Allow-Methods", "GET, POST, OPTIONS"),
    ("Access-Control-Allow-Headers", "*"),
)

# Everything a rewritten page loads comes from the proxy itself, so 'self' is enough;
# inline scripts must stay allowed for the injected shim.
CONTENT_SECURITY_POLICY = (
    "default-src 'self' data: blob: 'unsafe-inline' 'unsafe-eval'; "
    "img-src 'self' data: blob:; "
    "media-src 'self' data: blob:; "
    "font-src 'self' data:; "
    "form-action 'self'"
)

CACHE_POLICIES = {
    ContentClass.HTML: "no-store",
    ContentClass.CSS: "public, max-age=3600",
    ContentClass.JS: "public, max-age=3600",
    ContentClass.PASSTHROUGH: "public, max-age=86400",
}
NO_STORE = "no-store"

# Upstream headers worth keeping on passthrough bodies
FORWARDED_HEADERS = ("Content-Disposition", "Content-Language", "ETag", "Last-Modified")


@dataclass(frozen=True)
class ProxiedResponse:
    status: int
    headers: Tuple[Tuple[str, str], ...]
    content_type: str
    body: bytes = b""

    def header(self, name, default=None):
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return default


def _security_headers():
    return [
        ("X-Content-Type-Options", "nosniff"),
        ("Referrer-Policy", "same-origin"),
    ]


def cache_policy(content_class, status, config):
    if config.strict_no_store or not 200 <= status < 300:
        return NO_STORE
    return CACHE_POLICIES[content_class]


def compose(body, content_type, content_class, config, status=200, upstream_headers=None):
    headers = list(CORS_HEADERS)
    headers += _security_headers()
    headers.append(("Content-Security-Policy", CONTENT_SECURITY_POLICY))
    headers.append(("Cache-Control", cache_policy(content_class, status, config)))
    if content_class is ContentClass.PASSTHROUGH and upstream_headers:
        for name in FORWARDED_HEADERS:
            value = upstream_headers.get(name)
            if value:
                headers.append((name, value))
    headers.append(("Content-Type", content_type))
    return ProxiedResponse(status=status, headers=tuple(headers), content_type=content_type, body=body)


def compose_redirect(location, status=302):
    headers = list(CORS_HEADERS) + _security_headers()
    headers += [("Cache-Control", NO_STORE), ("Location", location), ("Content-Type", "text/plain; charset=utf-8")]
    return ProxiedResponse(status=status, headers=tuple(headers), content_type="text/plain; charset=utf-8")


def compose_preflight():
    headers = list(CORS_HEADERS) + [("Access-Control-Max-Age", "86400"), ("Content-Type", "text/plain; charset=utf-8")]
    return ProxiedResponse(status=200, headers=tuple(headers), content_type="text/plain; charset=utf-8")


def compose_error(status, reason):
    """Plain-text error carrying only the short reason, never a traceback."""
    content_type = "text/plain; charset=utf-8"
    headers = list(CORS_HEADERS) + _security_headers()
    headers += [("Cache-Control", NO_STORE), ("Content-Type", content_type)]
    return ProxiedResponse(status=status, headers=tuple(headers), content_type=content_type, body=reason.encode("utf-8"))
