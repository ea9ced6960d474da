#!/usr/bin/env python3
"""
REFL PROXY - development server
Settings come from REFL_* environment variables (see reflproxy/config.py)
"""
import os

from reflproxy import ProxyConfig, create_app

config = ProxyConfig.from_env()
app = create_app(config)

if __name__ == '__main__':
    port = int(os.environ.get('PORT', '5000'))

    print("\n" + "="*70)
    print("🔁 REFL PROXY - Content-rewriting forward proxy")
    print("="*70)
    print("\nEndpoints:")
    print(f"  • Landing page       → /")
    print(f"  • Proxy              → {config.proxy_path}?url=<percent-encoded URL>")
    print("\nPolicy:")
    print(f"  ✓ Timeout            {config.request_timeout:g}s")
    print(f"  ✓ Body cap           {config.max_body_bytes} bytes")
    print(f"  ✓ Redirects          {'exposed as 302' if config.expose_redirects else f'followed (max {config.max_redirects})'}")
    print(f"  ✓ DNS SSRF check     {'on' if config.resolve_dns else 'off'}")
    print("="*70 + "\n")
    print(f"Starting server on http://0.0.0.0:{port}")

    app.run(host='0.0.0.0', port=port, debug=False, threaded=True)
