"""
REFL PROXY - Content-rewriting forward proxy
Fetches remote pages server-side and rewrites every reference back through /proxy
"""
from reflproxy.app import create_app
from reflproxy.config import ProxyConfig

__version__ = "1.0.0"

__all__ = ["create_app", "ProxyConfig"]
