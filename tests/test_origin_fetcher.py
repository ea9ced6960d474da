#!/usr/bin/env python3
"""
Tests for the origin fetcher - headers, redirects, deadline and size cap
"""
import itertools
import socket
import time
import unittest
from unittest import mock

import requests

from proxy_fakes import FakeResponse, offline_config, redirect_response

from reflproxy import origin_fetcher
from reflproxy.config import USER_AGENTS
from reflproxy.errors import (
    BlockedHostError,
    PayloadTooLargeError,
    UpstreamError,
    UpstreamTimeoutError,
)
from reflproxy.url_validator import validate_target

MIB = 1024 * 1024


def page(body=b"<html></html>", content_type="text/html; charset=utf-8", **kwargs):
    return FakeResponse(body=body, headers={"Content-Type": content_type}, **kwargs)


@mock.patch("reflproxy.origin_fetcher.requests.request")
class TestFetch(unittest.TestCase):
    """Successful fetches and the request they send"""

    def setUp(self):
        self.config = offline_config()
        self.target = validate_target("https://example.com/dir/page?x=1")

    def test_returns_body_and_metadata(self, mock_request):
        mock_request.return_value = page(b"hello", "text/html; charset=ISO-8859-1")
        result = origin_fetcher.fetch(self.target, self.config)

        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.body, b"hello")
        self.assertEqual(result.final_url, "https://example.com/dir/page?x=1")
        self.assertEqual(result.content_type, "text/html; charset=ISO-8859-1")
        self.assertEqual(result.encoding, "iso8859-1")
        self.assertEqual(result.redirects, [])
        self.assertTrue(mock_request.return_value.closed)

    def test_request_is_streamed_without_automatic_redirects(self, mock_request):
        mock_request.return_value = page()
        origin_fetcher.fetch(self.target, self.config)

        kwargs = mock_request.call_args.kwargs
        self.assertEqual(kwargs["method"], "GET")
        self.assertEqual(kwargs["url"], "https://example.com/dir/page?x=1")
        self.assertFalse(kwargs["allow_redirects"])
        self.assertTrue(kwargs["stream"])
        self.assertIsNone(kwargs["data"])
        self.assertGreater(kwargs["timeout"], 0)
        self.assertLessEqual(kwargs["timeout"], self.config.request_timeout)

    def test_upstream_headers(self, mock_request):
        mock_request.return_value = page()
        incoming = {"Accept": "text/css,*/*;q=0.1", "Accept-Language": "fr-FR", "Cookie": "session=secret"}
        origin_fetcher.fetch(self.target, self.config, incoming_headers=incoming)

        headers = mock_request.call_args.kwargs["headers"]
        self.assertIn(headers["User-Agent"], USER_AGENTS)
        self.assertEqual(headers["Accept"], "text/css,*/*;q=0.1")
        self.assertEqual(headers["Accept-Language"], "fr-FR")
        self.assertEqual(headers["Referer"], "https://example.com/")
        self.assertNotIn("Cookie", headers)

    def test_default_accept(self, mock_request):
        mock_request.return_value = page()
        origin_fetcher.fetch(self.target, self.config)
        headers = mock_request.call_args.kwargs["headers"]
        self.assertEqual(headers["Accept"], origin_fetcher.DEFAULT_ACCEPT)
        self.assertNotIn("Accept-Language", headers)

    def test_post_forwards_body_and_content_type(self, mock_request):
        mock_request.return_value = page()
        origin_fetcher.fetch(
            self.target, self.config, method="POST",
            incoming_headers={"Content-Type": "application/json"}, body=b'{"a": 1}',
        )
        kwargs = mock_request.call_args.kwargs
        self.assertEqual(kwargs["method"], "POST")
        self.assertEqual(kwargs["data"], b'{"a": 1}')
        self.assertEqual(kwargs["headers"]["Content-Type"], "application/json")

    def test_post_defaults_to_form_encoding(self, mock_request):
        mock_request.return_value = page()
        origin_fetcher.fetch(self.target, self.config, method="POST", body=b"a=1")
        headers = mock_request.call_args.kwargs["headers"]
        self.assertEqual(headers["Content-Type"], "application/x-www-form-urlencoded")


@mock.patch("reflproxy.origin_fetcher.requests.request")
class TestRedirects(unittest.TestCase):
    """Redirects are followed by hand and every hop is guarded"""

    def setUp(self):
        self.config = offline_config()
        self.target = validate_target("http://example.com/old/page")

    def test_relative_location_is_followed(self, mock_request):
        mock_request.side_effect = [redirect_response("../new/page", 301), page(b"moved")]
        result = origin_fetcher.fetch(self.target, self.config)

        self.assertEqual(mock_request.call_count, 2)
        self.assertEqual(mock_request.call_args.kwargs["url"], "http://example.com/new/page")
        self.assertEqual(result.final_url, "http://example.com/new/page")
        self.assertEqual(result.redirects, ["http://example.com/old/page"])
        self.assertEqual(result.body, b"moved")

    def test_post_becomes_get_after_302(self, mock_request):
        mock_request.side_effect = [redirect_response("/done", 302), page()]
        origin_fetcher.fetch(self.target, self.config, method="POST", body=b"a=1")

        kwargs = mock_request.call_args.kwargs
        self.assertEqual(kwargs["method"], "GET")
        self.assertIsNone(kwargs["data"])
        self.assertNotIn("Content-Type", kwargs["headers"])

    def test_post_survives_307(self, mock_request):
        mock_request.side_effect = [redirect_response("/retry", 307), page()]
        origin_fetcher.fetch(self.target, self.config, method="POST", body=b"a=1")

        kwargs = mock_request.call_args.kwargs
        self.assertEqual(kwargs["method"], "POST")
        self.assertEqual(kwargs["data"], b"a=1")

    def test_redirect_into_private_network_is_blocked(self, mock_request):
        mock_request.side_effect = [redirect_response("http://169.254.169.254/latest/meta-data/")]
        with self.assertRaises(BlockedHostError) as ctx:
            origin_fetcher.fetch(self.target, self.config)
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(mock_request.call_count, 1)

    def test_redirect_to_other_scheme_is_rejected(self, mock_request):
        mock_request.side_effect = [redirect_response("ftp://example.com/file")]
        with self.assertRaises(UpstreamError) as ctx:
            origin_fetcher.fetch(self.target, self.config)
        self.assertIn("Invalid redirect target", ctx.exception.reason)

    def test_too_many_redirects(self, mock_request):
        config = offline_config(max_redirects=2)
        mock_request.side_effect = lambda **kwargs: redirect_response("/loop")
        with self.assertRaises(UpstreamError) as ctx:
            origin_fetcher.fetch(self.target, config)
        self.assertIn("Too many redirects", ctx.exception.reason)
        self.assertEqual(mock_request.call_count, 3)

    def test_exposed_redirect_is_not_followed(self, mock_request):
        config = offline_config(expose_redirects=True)
        mock_request.side_effect = [redirect_response("/elsewhere?a=b", 302)]
        result = origin_fetcher.fetch(self.target, config)

        self.assertEqual(mock_request.call_count, 1)
        self.assertEqual(result.status_code, 302)
        self.assertEqual(result.redirect_location, "http://example.com/elsewhere?a=b")
        self.assertEqual(result.body, b"")

    def test_redirect_status_without_location_is_a_response(self, mock_request):
        mock_request.return_value = FakeResponse(status_code=302, body=b"no location")
        result = origin_fetcher.fetch(self.target, self.config)
        self.assertEqual(result.status_code, 302)
        self.assertEqual(result.body, b"no location")


@mock.patch("reflproxy.origin_fetcher.requests.request")
class TestLimits(unittest.TestCase):
    """Size cap and wall-clock deadline"""

    def setUp(self):
        self.config = offline_config()
        self.target = validate_target("https://example.com/big.bin")

    def test_declared_length_over_cap_is_rejected_unread(self, mock_request):
        resp = FakeResponse(headers={"Content-Length": str(11 * MIB)}, body=b"x")
        mock_request.return_value = resp
        with self.assertRaises(PayloadTooLargeError) as ctx:
            origin_fetcher.fetch(self.target, self.config)
        self.assertEqual(ctx.exception.status_code, 413)
        self.assertFalse(resp.consumed)
        self.assertTrue(resp.closed)

    def test_streamed_body_over_cap_is_rejected(self, mock_request):
        config = offline_config(max_body_bytes=10)
        mock_request.return_value = FakeResponse(chunks=[b"123456", b"789012"])
        with self.assertRaises(PayloadTooLargeError):
            origin_fetcher.fetch(self.target, config)

    def test_body_at_cap_is_accepted(self, mock_request):
        config = offline_config(max_body_bytes=10)
        mock_request.return_value = FakeResponse(chunks=[b"12345", b"", b"67890"])
        self.assertEqual(origin_fetcher.fetch(self.target, config).body, b"1234567890")

    def test_connect_timeout(self, mock_request):
        mock_request.side_effect = requests.exceptions.ConnectTimeout("slow")
        with self.assertRaises(UpstreamTimeoutError) as ctx:
            origin_fetcher.fetch(self.target, self.config)
        self.assertEqual(ctx.exception.status_code, 504)

    def test_read_timeout_while_streaming(self, mock_request):
        mock_request.return_value = FakeResponse(chunks=[b"abc", requests.exceptions.ReadTimeout("stalled")])
        with self.assertRaises(UpstreamTimeoutError):
            origin_fetcher.fetch(self.target, self.config)

    def test_connection_failure(self, mock_request):
        mock_request.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(UpstreamError) as ctx:
            origin_fetcher.fetch(self.target, self.config)
        self.assertNotIsInstance(ctx.exception, UpstreamTimeoutError)
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertTrue(ctx.exception.reason.startswith("Fetch failed"))

    def test_wall_clock_deadline_covers_slow_bodies(self, mock_request):
        """A server trickling bytes cannot outlive the overall deadline"""
        mock_request.return_value = FakeResponse(chunks=[b"a", b"b", b"c"])
        clock = itertools.chain([0.0, 1.0], itertools.repeat(100.0))
        with mock.patch("reflproxy.origin_fetcher.time.monotonic", side_effect=lambda: next(clock)):
            with self.assertRaises(UpstreamTimeoutError):
                origin_fetcher.fetch(self.target, self.config)


class TestWatchdog(unittest.TestCase):
    """The deadline watchdog cuts the connection out from under a blocked read"""

    def fake_response(self):
        resp = FakeResponse()
        resp.raw = mock.Mock(_connection=mock.Mock(sock=mock.Mock()))
        return resp

    def test_fires_by_shutting_down_the_socket(self):
        resp = self.fake_response()
        with origin_fetcher._Watchdog(resp, origin_fetcher._Deadline(0.05)) as watchdog:
            time.sleep(0.3)
        self.assertTrue(watchdog.fired)
        resp.raw._connection.sock.shutdown.assert_called_once_with(socket.SHUT_RDWR)

    def test_closes_the_response_without_a_socket(self):
        resp = FakeResponse()
        with origin_fetcher._Watchdog(resp, origin_fetcher._Deadline(0.05)) as watchdog:
            time.sleep(0.3)
        self.assertTrue(watchdog.fired)
        self.assertTrue(resp.closed)

    def test_cancelled_when_the_body_arrives_in_time(self):
        resp = self.fake_response()
        with origin_fetcher._Watchdog(resp, origin_fetcher._Deadline(5)) as watchdog:
            pass
        time.sleep(0.1)
        self.assertFalse(watchdog.fired)
        resp.raw._connection.sock.shutdown.assert_not_called()

    def test_fired_watchdog_turns_a_short_body_into_a_timeout(self):
        watchdog = mock.Mock(fired=True)
        with self.assertRaises(UpstreamTimeoutError):
            origin_fetcher._read_body(FakeResponse(body=b"par"), 100, origin_fetcher._Deadline(5), watchdog)


class TestDeclaredCharset(unittest.TestCase):

    def test_charsets(self):
        self.assertEqual(origin_fetcher.declared_charset("text/html; charset=UTF-8"), "utf-8")
        self.assertEqual(origin_fetcher.declared_charset('text/html; charset="shift_jis"'), "shift_jis")
        self.assertIsNone(origin_fetcher.declared_charset("text/css"))
        self.assertIsNone(origin_fetcher.declared_charset("text/html; charset=no-such-codec"))
        self.assertIsNone(origin_fetcher.declared_charset(None))


if __name__ == '__main__':
    unittest.main()
