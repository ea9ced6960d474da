"""
Content classifier - picks the rewrite strategy for an upstream body
"""
import enum
from urllib.parse import urlsplit

from reflproxy.errors import DisallowedContentTypeError


GENERIC_TYPES = ("", "text/plain", "application/octet-stream", "binary/octet-stream")


class ContentClass(enum.Enum):
    HTML = "html"
    CSS = "css"
    JS = "js"
    PASSTHROUGH = "passthrough"


def media_type(content_type):
    """'Text/HTML; charset=UTF-8' -> 'text/html'"""
    return (content_type or "").split(";", 1)[0].strip().lower()


def classify(content_type, url_or_path=""):
    """Content-type substring first, then the path's extension, else passthrough."""
    content_type = (content_type or "").lower()
    if "text/html" in content_type or "application/xhtml+xml" in content_type:
        return ContentClass.HTML
    if "text/css" in content_type:
        return ContentClass.CSS
    if "javascript" in content_type or "ecmascript" in content_type:
        return ContentClass.JS

    # Extension only settles types the server left vague
    if media_type(content_type) not in GENERIC_TYPES:
        return ContentClass.PASSTHROUGH
    path = urlsplit(url_or_path or "").path.lower()
    if path.endswith(".css"):
        return ContentClass.CSS
    if path.endswith((".js", ".mjs")):
        return ContentClass.JS
    return ContentClass.PASSTHROUGH


def is_allowed_content_type(content_type, allowed):
    mtype = media_type(content_type)
    if not mtype:
        return True
    for entry in allowed:
        if entry.endswith("/"):
            if mtype.startswith(entry):
                return True
        elif mtype == entry:
            return True
    return False


def check_content_type(content_type, config):
    """Raise DisallowedContentTypeError for types outside the configured allow-list."""
    if config.enforce_content_types and not is_allowed_content_type(content_type, config.allowed_content_types):
        raise DisallowedContentTypeError(media_type(content_type))
