"""
Request pipeline - validator, guard, fetcher, classifier, rewrite engine, composer.

One linear pass per request; handle_request() is the outermost boundary where
every failure becomes a status-coded plain-text response.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

from requests.structures import CaseInsensitiveDict

from reflproxy import origin_fetcher, ssrf_guard
from reflproxy.composer import compose, compose_error, compose_preflight, compose_redirect
from reflproxy.content_classifier import ContentClass, check_content_type, classify
from reflproxy.css_rewriter import rewrite_css
from reflproxy.errors import MethodNotAllowedError, MissingURLError, ProxyError, UpstreamError
from reflproxy.form_reconstructor import reconstruct_target
from reflproxy.html_rewriter import rewrite_html
from reflproxy.js_rewriter import rewrite_js
from reflproxy.rewriting import RewriteContext, build_proxy_base, mounted_path
from reflproxy.url_validator import parse_target, validate_target

logger = logging.getLogger(__name__)

FETCH_METHODS = ("GET", "HEAD", "POST")
_HOST_RE = re.compile(r"^[A-Za-z0-9.\-]+(?::\d+)?$|^\[[0-9A-Fa-f:.]+\](?::\d+)?$")


@dataclass
class IncomingRequest:
    method: str
    url_param: Optional[str] = None
    query_params: list = field(default_factory=list)
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    body: bytes = b""
    scheme: str = "http"
    script_root: str = ""

    def __post_init__(self):
        self.method = self.method.upper()
        self.headers = CaseInsensitiveDict(self.headers or {})


def log_request(stage, method, url, status="→"):
    """Consistent logging format"""
    logger.info(f"[{stage.upper():8}] {status} {method:4} {(url or '-')[:80]}")


def _first_value(header):
    return (header or "").split(",", 1)[0].strip()


def proxy_base_for(incoming, config):
    """The proxy's externally visible ?url= prefix, honouring X-Forwarded-* headers."""
    proto = _first_value(incoming.headers.get("X-Forwarded-Proto")).lower()
    if proto not in ("http", "https"):
        proto = incoming.scheme if incoming.scheme in ("http", "https") else "http"

    host = _first_value(incoming.headers.get("X-Forwarded-Host"))
    if not _HOST_RE.match(host):
        host = (incoming.headers.get("Host") or "").strip()
    if not _HOST_RE.match(host):
        host = "localhost"
    return build_proxy_base(proto, host, config.proxy_path, incoming.script_root)


def merge_query(url, params):
    """Append extra form fields to a target URL's query string."""
    parts = urlsplit(url)
    extra = urlencode(list(params))
    query = f"{parts.query}&{extra}" if parts.query else extra
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def _decode_text(result):
    return result.body.decode(result.encoding or "utf-8-sig", errors="ignore")


def _rewrite_html(result, ctx):
    return rewrite_html(result.body, ctx, result.encoding)


def _rewrite_css(result, ctx):
    return rewrite_css(_decode_text(result), ctx)


def _rewrite_js(result, ctx):
    return rewrite_js(_decode_text(result), ctx)


# Rewrite strategy and served content type per content class; PASSTHROUGH has none
STRATEGIES = {
    ContentClass.HTML: (_rewrite_html, "text/html; charset=utf-8"),
    ContentClass.CSS: (_rewrite_css, "text/css; charset=utf-8"),
    ContentClass.JS: (_rewrite_js, "application/javascript; charset=utf-8"),
}


def resolve_target(incoming):
    """Validated target for the request, recovering lost form targets from the Referer."""
    fields = list(incoming.query_params)
    if incoming.url_param is None or not incoming.url_param.strip():
        if incoming.method in ("GET", "HEAD") and fields:
            raw = reconstruct_target(fields, incoming.headers.get("Referer"))
            return validate_target(raw)
        raise MissingURLError()

    target = validate_target(incoming.url_param)
    if incoming.method in ("GET", "HEAD") and fields:
        target = parse_target(merge_query(target.url, fields))
    return target


def handle(incoming, config):
    """Run one request through the pipeline; ProxyError subclasses propagate."""
    method = incoming.method
    if method == "OPTIONS":
        return compose_preflight()
    if method not in FETCH_METHODS:
        raise MethodNotAllowedError(method)

    target = resolve_target(incoming)
    log_request("proxy", method, target.url)
    ssrf_guard.enforce(target.host, config)

    fetch_method = "POST" if method == "POST" else "GET"
    result = origin_fetcher.fetch(
        target,
        config,
        method=fetch_method,
        incoming_headers=incoming.headers,
        body=incoming.body if fetch_method == "POST" else None,
    )

    ctx = RewriteContext(
        result.final_url,
        proxy_base_for(incoming, config),
        mounted_path(config.proxy_path, incoming.script_root),
    )
    if result.redirect_location:
        log_request("redirect", method, result.redirect_location, f"↪ {result.status_code}")
        return compose_redirect(ctx.proxify(result.redirect_location))

    check_content_type(result.content_type, config)
    content_class = classify(result.content_type, result.final_url)
    strategy = STRATEGIES.get(content_class)

    if strategy is None:
        body = result.body
        content_type = result.content_type or "application/octet-stream"
    else:
        rewrite, content_type = strategy
        try:
            body = rewrite(result, ctx).encode("utf-8")
        except Exception as e:
            logger.exception(f"{content_class.value.upper()} rewrite failed for {result.final_url}")
            raise UpstreamError(f"Could not rewrite {content_class.value} response") from e

    log_request(content_class.value, method, result.final_url, f"✓ {len(body)}b")
    return compose(
        body,
        content_type,
        content_class,
        config,
        status=result.status_code,
        upstream_headers=result.headers,
    )


def handle_request(incoming, config):
    """Outermost boundary: always returns a ProxiedResponse."""
    try:
        return handle(incoming, config)
    except ProxyError as e:
        log_request("error", incoming.method, incoming.url_param, f"✗ {e.status_code} {e.reason}")
        return compose_error(e.status_code, e.reason)
    except Exception:
        logger.exception(f"Unexpected failure proxying {incoming.url_param}")
        return compose_error(500, "Internal proxy error")
