"""
Shared reference resolution for every rewrite engine
"""
import re
from dataclasses import dataclass, replace
from urllib.parse import quote, urljoin

TERMINAL_SCHEMES = ("data:", "javascript:", "blob:", "about:", "mailto:", "tel:")

# Browsers drop tabs and newlines inside URLs, so "java\tscript:" is still javascript:
_IGNORED_URL_CHARS_RE = re.compile(r"[\x00-\x20]")


def encode_component(value):
    """Percent-encode like JavaScript's encodeURIComponent."""
    return quote(value, safe="-_.!~*'()")


def mounted_path(proxy_path, script_root=""):
    """The proxy route as seen from outside when the app is mounted under script_root."""
    return f"{script_root.rstrip('/')}{proxy_path}"


def build_proxy_base(scheme, host, proxy_path, script_root=""):
    return f"{scheme}://{host}{mounted_path(proxy_path, script_root)}?url="


@dataclass(frozen=True)
class RewriteContext:
    base_url: str
    proxy_base: str
    proxy_path: str = "/proxy"

    def with_base(self, base_url):
        return replace(self, base_url=base_url)

    def is_terminal(self, ref):
        """True for references that are left exactly as they are."""
        ref = (ref or "").strip()
        if not ref or ref.startswith("#"):
            return True
        if ref.startswith(self.proxy_base) or ref.startswith(self.proxy_path + "?url="):
            return True
        compact = _IGNORED_URL_CHARS_RE.sub("", ref).lower()
        return compact.startswith(TERMINAL_SCHEMES)

    def resolve(self, ref):
        try:
            return urljoin(self.base_url, ref.strip())
        except ValueError:
            return None

    def proxify(self, absolute_url):
        return self.proxy_base + encode_component(absolute_url)

    def rewrite_url(self, ref):
        """Resolve ref against the base and route it through the proxy, unless terminal."""
        if ref is None or self.is_terminal(ref):
            return ref
        absolute = self.resolve(ref)
        if not absolute or not absolute.lower().startswith(("http://", "https://")):
            return ref
        return self.proxify(absolute)


def split_srcset(value):
    """Yield (url, descriptor) pairs following the HTML srcset parsing rules.

    A candidate URL runs up to the next whitespace, so commas inside data: URLs
    stay part of the URL; a trailing comma on the URL ends the candidate.
    """
    pos, end = 0, len(value)
    while pos < end:
        while pos < end and (value[pos].isspace() or value[pos] == ","):
            pos += 1
        if pos >= end:
            break
        start = pos
        while pos < end and not value[pos].isspace():
            pos += 1
        url = value[start:pos]
        descriptor = ""
        if url.endswith(","):
            url = url.rstrip(",")
        else:
            descriptor_start = pos
            while pos < end and value[pos] != ",":
                pos += 1
            descriptor = value[descriptor_start:pos].strip()
        yield url, descriptor


def rewrite_srcset(value, ctx):
    candidates = []
    for url, descriptor in split_srcset(value or ""):
        rewritten = ctx.rewrite_url(url)
        candidates.append(f"{rewritten} {descriptor}" if descriptor else rewritten)
    return ", ".join(candidates)
