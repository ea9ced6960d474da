"""
Form-resubmission reconstructor.

A GET form whose action was a bare proxy path submits as /proxy?field=...
and loses its ?url= parameter. The page that held the form is still named
in the Referer, so the target is rebuilt from the referring site plus the
submitted fields. The path is a guess: /search when the form sat on a
homepage, the referring page's own path otherwise. Best-effort recovery,
not a guarantee.
"""
import logging
from urllib.parse import parse_qs, urlencode, urlsplit

from reflproxy.errors import ValidationError
from reflproxy.url_validator import validate_target

logger = logging.getLogger(__name__)

SEARCH_ENGINE_DOMAINS = (
    "google.",
    "bing.com",
    "duckduckgo.com",
    "yahoo.",
    "yandex.",
    "baidu.com",
    "ecosia.org",
    "startpage.com",
    "search.brave.com",
    "ask.com",
)
SEARCH_PATH = "/search"


def is_search_engine(host):
    host = (host or "").lower()
    for domain in SEARCH_ENGINE_DOMAINS:
        if domain.endswith("."):
            # "google." matches google.com, www.google.co.uk, ...
            if host.startswith(domain) or f".{domain}" in host:
                return True
        elif host == domain or host.endswith(f".{domain}"):
            return True
    return False


def referer_target(referer):
    """The target URL embedded in a proxied Referer header."""
    if not referer or not referer.strip():
        raise ValidationError("Missing ?url parameter and no Referer to recover it from")
    try:
        query = urlsplit(referer.strip()).query
    except ValueError:
        raise ValidationError("Missing ?url parameter and the Referer could not be parsed")

    values = parse_qs(query).get("url")
    if not values:
        raise ValidationError("Missing ?url parameter and the Referer carries none")
    return validate_target(values[0])


def reconstruct_target(query_params, referer):
    """Rebuild the absolute target URL of a GET form submission that lost its ?url=."""
    referring = referer_target(referer)
    field_names = {name for name, _ in query_params}

    if referring.path in ("", "/"):
        path = SEARCH_PATH
        if "q" in field_names and is_search_engine(referring.host):
            logger.warning(f"[FORM    ] search box on {referring.host} homepage, guessing {path}")
        else:
            logger.warning(f"[FORM    ] form on {referring.host} homepage, defaulting to {path}")
    else:
        path = referring.path
        logger.warning(f"[FORM    ] form on {referring.host}, reusing referring path {path}")

    target = f"{referring.origin}{path}"
    query = urlencode(list(query_params))
    return f"{target}?{query}" if query else target
