"""
Flask binding - adapts HTTP requests to the proxy pipeline and renders its responses
"""
import logging
import sys

from flask import Flask, Response, request

from reflproxy.composer import compose_error
from reflproxy.config import ProxyConfig
from reflproxy.errors import ProxyError
from reflproxy.pipeline import IncomingRequest, handle_request
from reflproxy.rewriting import mounted_path

LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(message)s'
ROUTE_METHODS = ['GET', 'POST', 'OPTIONS', 'PUT', 'PATCH', 'DELETE']

INDEX_HTML = '''<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>Refl Proxy</title>
    <style>
        * { margin: 0; padding: 0; box-sizing: border-box; }
        body {
            font-family: system-ui, -apple-system, sans-serif;
            background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
            min-height: 100vh;
            display: flex;
            align-items: center;
            justify-content: center;
            padding: 20px;
        }
        .container {
            background: white;
            border-radius: 20px;
            padding: 40px;
            width: 100%;
            max-width: 700px;
            box-shadow: 0 20px 60px rgba(0,0,0,0.3);
        }
        h1 { color: #667eea; margin-bottom: 10px; font-size: 32px; }
        .subtitle { color: #666; margin-bottom: 25px; font-size: 14px; }
        form { display: flex; gap: 10px; }
        input[type="text"] {
            flex: 1;
            padding: 12px;
            font-size: 15px;
            border: 2px solid #e0e0e0;
            border-radius: 10px;
        }
        button {
            padding: 12px 22px;
            font-size: 15px;
            color: white;
            background: #667eea;
            border: none;
            border-radius: 10px;
            cursor: pointer;
        }
    </style>
</head>
<body>
    <div class="container">
        <h1>Refl Proxy</h1>
        <div class="subtitle">Browse any public page through this server. Links, forms and assets stay proxied.</div>
        <form action="{proxy_path}" method="get">
            <input type="text" name="url" placeholder="https://example.com/" required>
            <button type="submit">Go</button>
        </form>
    </div>
</body>
</html>
'''


def configure_logging(config):
    """Console logging (and an optional log file) for the reflproxy package."""
    logger = logging.getLogger('reflproxy')
    logger.setLevel(config.log_level)
    formatter = logging.Formatter(LOG_FORMAT)

    for handler in list(logger.handlers):
        if handler.get_name() in ('reflproxy-console', 'reflproxy-file'):
            logger.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.set_name('reflproxy-console')
    console_handler.setLevel(config.log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if config.log_file:
        file_handler = logging.FileHandler(config.log_file)
        file_handler.set_name('reflproxy-file')
        file_handler.setLevel(config.log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    return logger


def incoming_from_flask(req):
    """Normalize a Flask request into the pipeline's IncomingRequest."""
    return IncomingRequest(
        method=req.method,
        url_param=req.args.get('url'),
        query_params=[(key, value) for key, value in req.args.items(multi=True) if key != 'url'],
        headers=list(req.headers.items()),
        body=req.get_data() if req.method == 'POST' else b'',
        scheme=req.scheme,
        script_root=req.script_root,
    )


def to_flask_response(proxied):
    return Response(proxied.body, status=proxied.status, headers=list(proxied.headers))


def create_app(config=None):
    config = config or ProxyConfig.from_env()
    logger = configure_logging(config)

    app = Flask(__name__)
    app.config['PROXY_CONFIG'] = config

    @app.route('/')
    def index():
        """Landing page with the URL form"""
        action = mounted_path(config.proxy_path, request.script_root)
        return Response(INDEX_HTML.replace('{proxy_path}', action), mimetype='text/html')

    @app.route(config.proxy_path, methods=ROUTE_METHODS)
    def proxy():
        """GET|POST /proxy?url=<percent-encoded absolute URL>"""
        incoming = incoming_from_flask(request)
        return to_flask_response(handle_request(incoming, config))

    @app.errorhandler(ProxyError)
    def proxy_error(e):
        return to_flask_response(compose_error(e.status_code, e.reason))

    logger.info(f"Proxy route ready at {config.proxy_path}?url=")
    return app
