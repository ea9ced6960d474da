"""
Proxy configuration - module defaults overridable through REFL_* environment variables
"""
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

# Configuration
DEFAULT_TIMEOUT = 15
DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_REDIRECTS = 10
DEFAULT_PROXY_PATH = "/proxy"

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)

# Content types served without a 403. Entries ending in "/" match the whole family.
ALLOWED_CONTENT_TYPES = (
    "text/",
    "image/",
    "font/",
    "video/",
    "audio/",
    "application/javascript",
    "application/x-javascript",
    "application/ecmascript",
    "application/json",
    "application/ld+json",
    "application/manifest+json",
    "application/xml",
    "application/xhtml+xml",
    "application/rss+xml",
    "application/atom+xml",
    "application/pdf",
    "application/wasm",
    "application/font-woff",
    "application/font-woff2",
    "application/x-font-ttf",
    "application/x-font-woff",
    "application/vnd.ms-fontobject",
    "application/vnd.apple.mpegurl",
    "application/x-mpegurl",
    "application/dash+xml",
    "application/octet-stream",
    "binary/octet-stream",
)

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(name, default):
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_float(name, default):
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


@dataclass(frozen=True)
class ProxyConfig:
    """Settings shared by every stage of one proxy request."""

    request_timeout: float = DEFAULT_TIMEOUT
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    resolve_dns: bool = True
    expose_redirects: bool = False
    enforce_content_types: bool = True
    strict_no_store: bool = False
    proxy_path: str = DEFAULT_PROXY_PATH
    log_level: str = "INFO"
    log_file: Optional[str] = None
    user_agents: Tuple[str, ...] = USER_AGENTS
    allowed_content_types: Tuple[str, ...] = field(default=ALLOWED_CONTENT_TYPES)

    def __post_init__(self):
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if self.max_body_bytes <= 0:
            raise ValueError("max_body_bytes must be positive")
        if self.max_redirects < 0:
            raise ValueError("max_redirects cannot be negative")
        if not self.proxy_path.startswith("/"):
            raise ValueError("proxy_path must start with '/'")
        if not self.user_agents:
            raise ValueError("user_agents cannot be empty")

    @classmethod
    def from_env(cls):
        return cls(
            request_timeout=_env_float("REFL_TIMEOUT", DEFAULT_TIMEOUT),
            max_body_bytes=_env_int("REFL_MAX_BODY_BYTES", DEFAULT_MAX_BODY_BYTES),
            max_redirects=_env_int("REFL_MAX_REDIRECTS", DEFAULT_MAX_REDIRECTS),
            resolve_dns=_env_bool("REFL_RESOLVE_DNS", True),
            expose_redirects=_env_bool("REFL_EXPOSE_REDIRECTS", False),
            enforce_content_types=_env_bool("REFL_ENFORCE_CONTENT_TYPES", True),
            strict_no_store=_env_bool("REFL_STRICT_NO_STORE", False),
            proxy_path=os.environ.get("REFL_PROXY_PATH") or DEFAULT_PROXY_PATH,
            log_level=(os.environ.get("REFL_LOG_LEVEL") or "INFO").upper(),
            log_file=os.environ.get("REFL_LOG_FILE") or None,
        )
