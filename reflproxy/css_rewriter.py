"""
CSS rewrite engine - routes @import targets and url() references through the proxy
"""
import re

_CSS_REF_RE = re.compile(
    r"(?P<comment>/\*.*?\*/)"
    r"|@import\s+(?P<iq>['\"])(?P<import>.*?)(?P=iq)"
    r"|(?<![\w-])url\(\s*(?P<uq>['\"]?)(?P<url>.*?)(?P=uq)\s*\)",
    re.IGNORECASE | re.DOTALL,
)


def _rewrite_match(match, ctx, imports):
    if match.group("comment") is not None:
        return match.group(0)

    if match.group("import") is not None:
        if not imports:
            return match.group(0)
        original = match.group("import")
        rewritten = ctx.rewrite_url(original)
        if rewritten == original:
            return match.group(0)
        return f'@import "{rewritten}"'

    original = match.group("url")
    rewritten = ctx.rewrite_url(original)
    if rewritten == original:
        return match.group(0)
    return f'url("{rewritten}")'


def rewrite_css(text, ctx):
    """Rewrite a stylesheet: @import targets and url() references."""
    return _CSS_REF_RE.sub(lambda m: _rewrite_match(m, ctx, True), text)


def rewrite_css_urls(text, ctx):
    """Rewrite url() references only, for style="" attribute values."""
    return _CSS_REF_RE.sub(lambda m: _rewrite_match(m, ctx, False), text)
