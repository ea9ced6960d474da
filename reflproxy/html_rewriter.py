"""
HTML rewrite engine - parses the page with BeautifulSoup, routes every URL-bearing
attribute through the proxy and injects the client shim at the top of <head>.
"""
import re
from functools import partial

from bs4 import BeautifulSoup
from bs4.element import Doctype

from reflproxy.client_shim import SHIM_VERSION, render_shim
from reflproxy.css_rewriter import rewrite_css, rewrite_css_urls
from reflproxy.js_rewriter import rewrite_js, rewrite_location_refs
from reflproxy.rewriting import rewrite_srcset

REWRITE_TAGS = [
    "a", "img", "script", "link", "iframe", "form", "source", "video",
    "audio", "embed", "object", "area", "track", "input",
]
URL_ATTRIBUTES = ("href", "src", "action", "data", "poster")
CSP_META = ("content-security-policy", "content-security-policy-report-only")
SHIM_ATTRIBUTE = "data-refl-shim"

_REFRESH_RE = re.compile(r"^(\s*[\d.]*\s*[;,]?\s*url\s*=\s*)(['\"]?)(.*?)\2\s*$", re.IGNORECASE | re.DOTALL)


def _http_equiv(meta):
    return (meta.get("http-equiv") or "").strip().lower()


def apply_base_tags(soup, ctx):
    """Remove every <base>; the first usable href becomes the document's resolution base."""
    base_url = None
    for base in soup.find_all("base"):
        href = base.get("href")
        if base_url is None and href and not ctx.is_terminal(href):
            resolved = ctx.resolve(href)
            if resolved and resolved.lower().startswith(("http://", "https://")):
                base_url = resolved
        base.decompose()
    return ctx.with_base(base_url) if base_url else ctx


def rewrite_attributes(soup, ctx):
    for tag in soup.find_all(REWRITE_TAGS):
        if tag.name == "input" and (tag.get("type") or "").strip().lower() != "image":
            continue

        changed = False
        for attr in URL_ATTRIBUTES:
            value = tag.get(attr)
            if not isinstance(value, str):
                continue
            rewritten = ctx.rewrite_url(value)
            if rewritten != value:
                tag[attr] = rewritten
                changed = True

        srcset = tag.get("srcset")
        if isinstance(srcset, str) and srcset.strip():
            rewritten = rewrite_srcset(srcset, ctx)
            if rewritten != srcset:
                tag["srcset"] = rewritten
                changed = True

        # Subresource integrity hashes no longer match a rewritten body
        if changed and tag.name in ("script", "link") and tag.has_attr("integrity"):
            del tag["integrity"]


def rewrite_styles(soup, ctx):
    for style in soup.find_all("style"):
        text = style.string
        if text:
            rewritten = rewrite_css(str(text), ctx)
            if rewritten != text:
                style.string = rewritten

    for tag in soup.find_all(style=True):
        value = tag["style"]
        if isinstance(value, str):
            tag["style"] = rewrite_css_urls(value, ctx)


def rewrite_meta(soup, ctx):
    for meta in soup.find_all("meta"):
        equiv = _http_equiv(meta)
        if equiv in CSP_META:
            meta.decompose()
        elif equiv == "refresh":
            content = meta.get("content") or ""
            match = _REFRESH_RE.match(content)
            if match and match.group(3):
                prefix, quote_char, target = match.groups()
                meta["content"] = f"{prefix}{quote_char}{ctx.rewrite_url(target)}{quote_char}"


_CLASSIC_SCRIPT_TYPES = {"", "text/javascript", "application/javascript", "text/ecmascript", "application/ecmascript"}


def rewrite_inline_scripts(soup, ctx):
    for script in soup.find_all("script"):
        if script.get("src") or script.has_attr(SHIM_ATTRIBUTE):
            continue
        script_type = (script.get("type") or "").strip().lower()
        if script_type == "module":
            rewrite = partial(rewrite_js, ctx=ctx)
        elif script_type in _CLASSIC_SCRIPT_TYPES:
            rewrite = rewrite_location_refs
        else:
            continue
        text = script.string
        if text:
            rewritten = rewrite(str(text))
            if rewritten != text:
                script.string = rewritten


def _ensure_head(soup):
    head = soup.head
    if head is not None:
        return head

    head = soup.new_tag("head")
    if soup.html is not None:
        soup.html.insert(0, head)
        return head

    position = 0
    for index, node in enumerate(soup.contents):
        if isinstance(node, Doctype):
            position = index + 1
            break
    soup.insert(position, head)
    return head


def inject_shim(soup, ctx, page_url):
    for old in soup.find_all("script", attrs={SHIM_ATTRIBUTE: True}):
        old.decompose()

    script = soup.new_tag("script")
    script[SHIM_ATTRIBUTE] = SHIM_VERSION
    script.string = render_shim(ctx.proxy_base, page_url, ctx.proxy_path)
    _ensure_head(soup).insert(0, script)


def rewrite_html(markup, ctx, encoding=None):
    """Rewrite an HTML document (str or bytes) and return the transformed markup."""
    if isinstance(markup, bytes):
        soup = BeautifulSoup(markup, "html.parser", from_encoding=encoding)
    else:
        soup = BeautifulSoup(markup, "html.parser")

    page_url = ctx.base_url
    ctx = apply_base_tags(soup, ctx)
    rewrite_meta(soup, ctx)
    rewrite_attributes(soup, ctx)
    rewrite_styles(soup, ctx)
    rewrite_inline_scripts(soup, ctx)
    inject_shim(soup, ctx, page_url)
    return soup.decode(formatter="minimal")
