"""
JS rewrite engine - routes ES module specifiers through the proxy.

Only specifiers that name a location are touched: absolute http(s) URLs and
root or relative paths. Bare package names ("lodash", "@scope/pkg") mean
nothing outside a bundler's resolver and are left alone.
"""
import re

_SPECIFIER_RE = re.compile(
    # import("./x.js") / import('x') / import(`x`)
    r"(?P<dynamic>(?<![\w$.])import\s*\(\s*)(?P<dq>['\"`])(?P<dspec>[^'\"`\n]+)(?P=dq)(?=\s*[,)])"
    # import "./x.js" / import x from "./x.js" / export * from "./x.js"
    r"|(?P<static>(?<![\w$.])(?:import|from)\s*)(?P<sq>['\"])(?P<sspec>[^'\"\n]+)(?P=sq)"
)

_LOCATABLE_RE = re.compile(r"^(?:https?://|/|\./|\.\./)", re.IGNORECASE)


def is_locatable_specifier(specifier):
    return bool(_LOCATABLE_RE.match(specifier.strip()))


def _rewrite_match(match, ctx):
    if match.group("dynamic") is not None:
        prefix, quote_char, specifier = match.group("dynamic"), match.group("dq"), match.group("dspec")
    else:
        prefix, quote_char, specifier = match.group("static"), match.group("sq"), match.group("sspec")

    if not is_locatable_specifier(specifier) or "${" in specifier:
        return match.group(0)
    rewritten = ctx.rewrite_url(specifier)
    if rewritten == specifier:
        return match.group(0)
    if quote_char == "'":
        rewritten = rewritten.replace("'", "%27")
    return f"{prefix}{quote_char}{rewritten}{quote_char}"


# window.location.href / document.location.hostname / self.location.origin
# Direct assignment ("window.location = x") is left alone: the browser still navigates.
_LOCATION_RE = re.compile(
    r"(?<!__reflLocation\|\|)(?<![\w$.])(?P<owner>window|document|self)\s*\.\s*location(?![\w$])(?!\s*=(?!=))"
)


def rewrite_location_refs(text):
    """Point reads of the page location at the shim's facade when one is installed."""
    return _LOCATION_RE.sub(lambda m: f"(self.__reflLocation||{m.group('owner')}.location)", text)


def rewrite_js(text, ctx):
    text = _SPECIFIER_RE.sub(lambda m: _rewrite_match(m, ctx), text)
    return rewrite_location_refs(text)
