#!/usr/bin/env python3
"""
Wall-clock deadline tests against a real local server that drips its body
"""
import os
import socketserver
import time
import unittest
from threading import Thread
from unittest import mock

from proxy_fakes import offline_config

from reflproxy import origin_fetcher
from reflproxy.errors import UpstreamTimeoutError
from reflproxy.url_validator import validate_target

BODY_BYTES = 10
DRIP_INTERVAL = 0.3  # seconds between body bytes, well under the socket timeout
DEADLINE = 1.0


class DripHandler(socketserver.BaseRequestHandler):
    """Answers /sized and /unsized one byte at a time, /fast all at once"""

    def handle(self):
        request = b""
        while b"\r\n\r\n" not in request:
            data = self.request.recv(65536)
            if not data:
                return
            request += data
        path = request.split(b" ", 2)[1]

        if path == b"/fast":
            self.request.sendall(
                b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\nContent-Length: 5\r\nConnection: close\r\n\r\nhello"
            )
            return

        head = b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\nConnection: close\r\n"
        if path == b"/sized":
            head += b"Content-Length: %d\r\n" % BODY_BYTES
        self.request.sendall(head + b"\r\n")
        for _ in range(BODY_BYTES):
            time.sleep(DRIP_INTERVAL)
            try:
                self.request.sendall(b"x")
            except OSError:
                return


class DripServerTestCase(unittest.TestCase):
    """Base test case with a dripping server on an ephemeral port"""

    @classmethod
    def setUpClass(cls):
        socketserver.ThreadingTCPServer.allow_reuse_address = True
        cls.server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), DripHandler)
        cls.server.daemon_threads = True
        cls.port = cls.server.server_address[1]
        cls.server_thread = Thread(target=cls.server.serve_forever, daemon=True)
        cls.server_thread.start()

    @classmethod
    def tearDownClass(cls):
        cls.server.shutdown()
        cls.server.server_close()

    def setUp(self):
        patcher = mock.patch.dict(os.environ, {"NO_PROXY": "127.0.0.1", "no_proxy": "127.0.0.1"})
        patcher.start()
        self.addCleanup(patcher.stop)
        self.config = offline_config(request_timeout=DEADLINE)

    def target(self, path):
        return validate_target(f"http://127.0.0.1:{self.port}{path}")


class TestDrippingBodies(DripServerTestCase):
    """A slow body cannot outlive the overall deadline"""

    def assert_cut_at_deadline(self, path):
        started = time.monotonic()
        with self.assertRaises(UpstreamTimeoutError) as ctx:
            origin_fetcher.fetch(self.target(path), self.config)
        elapsed = time.monotonic() - started

        self.assertEqual(ctx.exception.status_code, 504)
        self.assertLess(elapsed, DEADLINE + 1.0)

    def test_body_with_declared_length(self):
        self.assert_cut_at_deadline("/sized")

    def test_body_without_declared_length(self):
        self.assert_cut_at_deadline("/unsized")

    def test_fast_body_is_untouched(self):
        result = origin_fetcher.fetch(self.target("/fast"), self.config)
        self.assertEqual(result.body, b"hello")


if __name__ == '__main__':
    unittest.main()
