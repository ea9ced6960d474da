"""
Client-side interception shim injected at the top of every proxied HTML page.

The script is a versioned template with named substitution points:

  @@version          SHIM_VERSION
  @@proxy_base       absolute proxy prefix, e.g. "https://host/proxy?url="
  @@proxy_path       path-only proxy prefix, e.g. "/proxy"
  @@original_url     final upstream URL of the page
  @@original_origin  scheme://host[:port] of that URL

Every value is JSON-encoded and "</" is escaped so no value can close the
surrounding <script> element.
"""
import json
from string import Template
from urllib.parse import urlsplit

SHIM_VERSION = "1.0"


class ShimTemplate(Template):
    delimiter = "@@"


SHIM_TEMPLATE = ShimTemplate(r"""(function () {
  'use strict';
  if (window.__reflShimVersion) { return; }
  window.__reflShimVersion = @@version;

  var PROXY_BASE = @@proxy_base;
  var PROXY_PATH = @@proxy_path;
  var ORIGINAL_URL = @@original_url;
  var ORIGINAL_ORIGIN = @@original_origin;
  var TERMINAL_SCHEME = /^(data|javascript|blob|about|mailto|tel):/i;
  var nativeLocation = window.location;
  var PROXY_ORIGIN = nativeLocation.origin;

  function isTerminal(value) {
    if (value === null || value === undefined) { return true; }
    var s = String(value).replace(/[\u0000- ]/g, '');
    if (!s || s.charAt(0) === '#') { return true; }
    if (s.indexOf(PROXY_BASE) === 0 || s.indexOf(PROXY_PATH + '?url=') === 0) { return true; }
    return TERMINAL_SCHEME.test(s);
  }

  function toAbsolute(value) {
    var s = String(value).trim();
    // Relative URLs the browser already resolved against the proxy's own origin
    if (s.indexOf(PROXY_ORIGIN + '/') === 0) {
      s = ORIGINAL_ORIGIN + s.slice(PROXY_ORIGIN.length);
    }
    try { return new URL(s, ORIGINAL_URL).href; } catch (e) { return null; }
  }

  function unwrap(value) {
    var s = String(value).trim();
    var prefix = null;
    if (s.indexOf(PROXY_BASE) === 0) { prefix = PROXY_BASE; }
    else if (s.indexOf(PROXY_PATH + '?url=') === 0) { prefix = PROXY_PATH + '?url='; }
    if (!prefix) { return toAbsolute(s); }
    try { return decodeURIComponent(s.slice(prefix.length).split('&')[0]); } catch (e) { return null; }
  }

  function rewrite(value) {
    if (isTerminal(value)) { return value; }
    var absolute = toAbsolute(value);
    if (!absolute || !/^https?:/i.test(absolute)) { return value; }
    return PROXY_BASE + encodeURIComponent(absolute);
  }

  function rewriteSrcset(value) {
    return String(value).split(/,\s+/).map(function (candidate) {
      var parts = candidate.trim().split(/\s+/);
      parts[0] = rewrite(parts[0]);
      return parts.join(' ');
    }).join(', ');
  }

  window.__reflRewrite = rewrite;

  // fetch() and XMLHttpRequest
  var nativeFetch = window.fetch;
  if (nativeFetch) {
    window.fetch = function (input, init) {
      if (typeof input === 'string' || (window.URL && input instanceof window.URL)) {
        input = rewrite(String(input));
      } else if (input && typeof input.url === 'string') {
        var rewritten = rewrite(input.url);
        if (rewritten !== input.url) { input = new Request(rewritten, input); }
      }
      return nativeFetch.call(window, input, init);
    };
  }

  var nativeOpen = XMLHttpRequest.prototype.open;
  XMLHttpRequest.prototype.open = function (method, url) {
    var args = Array.prototype.slice.call(arguments);
    if (args.length > 1) { args[1] = rewrite(args[1]); }
    return nativeOpen.apply(this, args);
  };

  // Element creation and URL-bearing properties
  var URL_PROPERTIES = { script: ['src'], link: ['href'], img: ['src', 'srcset'], a: ['href'] };

  function findDescriptor(obj, prop) {
    while (obj) {
      var descriptor = Object.getOwnPropertyDescriptor(obj, prop);
      if (descriptor) { return descriptor; }
      obj = Object.getPrototypeOf(obj);
    }
    return null;
  }

  function guardProperty(element, prop) {
    var descriptor = findDescriptor(element, prop);
    if (!descriptor || !descriptor.set) { return; }
    Object.defineProperty(element, prop, {
      configurable: true,
      enumerable: descriptor.enumerable,
      get: function () { return descriptor.get.call(element); },
      set: function (value) {
        descriptor.set.call(element, prop === 'srcset' ? rewriteSrcset(value) : rewrite(value));
      }
    });
  }

  var nativeCreateElement = Document.prototype.createElement;
  Document.prototype.createElement = function (tagName) {
    var element = nativeCreateElement.apply(this, arguments);
    var props = URL_PROPERTIES[String(tagName).toLowerCase()];
    if (props) {
      for (var i = 0; i < props.length; i++) { guardProperty(element, props[i]); }
    }
    return element;
  };

  var nativeSetAttribute = Element.prototype.setAttribute;
  Element.prototype.setAttribute = function (name, value) {
    var props = URL_PROPERTIES[String(this.tagName).toLowerCase()];
    var attr = String(name).toLowerCase();
    if (props && props.indexOf(attr) !== -1) {
      value = attr === 'srcset' ? rewriteSrcset(value) : rewrite(value);
    }
    return nativeSetAttribute.call(this, name, value);
  };

  // Form submissions
  document.addEventListener('submit', function (event) {
    var form = event.target;
    if (!form || String(form.tagName).toLowerCase() !== 'form') { return; }
    var action = unwrap(form.getAttribute('action') || ORIGINAL_URL);
    if (!action || !/^https?:/i.test(action)) { return; }

    var method = String(form.getAttribute('method') || 'get').toLowerCase();
    var data = new FormData(form);
    if (event.submitter && event.submitter.name) {
      data.append(event.submitter.name, event.submitter.value || '');
    }
    var proxiedAction = PROXY_BASE + encodeURIComponent(action);

    if (method === 'post') {
      var hasFiles = false;
      data.forEach(function (value) { if (typeof value !== 'string') { hasFiles = true; } });
      if (hasFiles) {
        // Hidden inputs cannot carry files; retarget the original form instead
        form.setAttribute('action', proxiedAction);
        return;
      }
      event.preventDefault();
      var shadow = nativeCreateElement.call(document, 'form');
      shadow.method = 'POST';
      shadow.action = proxiedAction;
      shadow.enctype = form.getAttribute('enctype') || 'application/x-www-form-urlencoded';
      if (form.target) { shadow.target = form.target; }
      shadow.style.display = 'none';
      data.forEach(function (value, name) {
        var input = nativeCreateElement.call(document, 'input');
        input.type = 'hidden';
        input.name = name;
        input.value = value;
        shadow.appendChild(input);
      });
      (document.body || document.documentElement).appendChild(shadow);
      HTMLFormElement.prototype.submit.call(shadow);
      return;
    }

    event.preventDefault();
    var params = new URLSearchParams();
    data.forEach(function (value, name) {
      if (typeof value === 'string') { params.append(name, value); }
    });
    var target = action.split('#')[0].split('?')[0] + '?' + params.toString();
    nativeLocation.href = PROXY_BASE + encodeURIComponent(target);
  }, true);

  // Anchor clicks
  document.addEventListener('click', function (event) {
    if (event.defaultPrevented || event.button !== 0) { return; }
    if (event.metaKey || event.ctrlKey || event.shiftKey || event.altKey) { return; }
    var node = event.target;
    while (node && !(node.tagName && String(node.tagName).toLowerCase() === 'a' && node.hasAttribute('href'))) {
      node = node.parentNode;
    }
    if (!node) { return; }
    var href = node.getAttribute('href');
    if (isTerminal(href)) { return; }
    var rewritten = rewrite(href);
    if (rewritten === href) { return; }
    event.preventDefault();
    if (node.target && node.target !== '_self') {
      window.open(rewritten, node.target);
    } else {
      nativeLocation.href = rewritten;
    }
  }, true);

  // Location surface reporting the original URL
  var original = new URL(ORIGINAL_URL);

  function navigate(value, replaceEntry) {
    var target = rewrite(value);
    if (replaceEntry) { nativeLocation.replace(target); } else { nativeLocation.assign(target); }
  }

  var originalLocation = {
    assign: function (value) { navigate(value, false); },
    replace: function (value) { navigate(value, true); },
    reload: function () { nativeLocation.reload(); },
    toString: function () { return original.href; }
  };

  ['href', 'origin', 'protocol', 'host', 'hostname', 'port', 'pathname', 'search', 'hash'].forEach(function (key) {
    var property = {
      enumerable: true,
      get: function () { return key === 'hash' ? nativeLocation.hash : original[key]; }
    };
    if (key !== 'origin') {
      property.set = function (value) {
        if (key === 'hash') { nativeLocation.hash = value; return; }
        if (key === 'href') { navigate(value, false); return; }
        var next = new URL(original.href);
        next[key] = value;
        navigate(next.href, false);
      };
    }
    Object.defineProperty(originalLocation, key, property);
  });

  window.__reflLocation = originalLocation;

  ['pushState', 'replaceState'].forEach(function (name) {
    var nativeMethod = history[name];
    if (!nativeMethod) { return; }
    history[name] = function (state, title, url) {
      if (url === undefined || url === null) { return nativeMethod.call(history, state, title); }
      return nativeMethod.call(history, state, title, rewrite(url));
    };
  });
})();
""")


def _js_literal(value):
    return json.dumps(value).replace("</", "<\\/").replace("<!--", "<\\!--")


def origin_of(url):
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def render_shim(proxy_base, original_url, proxy_path="/proxy"):
    """Return the shim's JavaScript source for one page."""
    return SHIM_TEMPLATE.substitute(
        version=_js_literal(SHIM_VERSION),
        proxy_base=_js_literal(proxy_base),
        proxy_path=_js_literal(proxy_path),
        original_url=_js_literal(original_url),
        original_origin=_js_literal(origin_of(original_url)),
    )
