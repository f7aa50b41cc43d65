import io
import json
import time
import unittest
from unittest.mock import patch

import requests

from dalle_proxy import http_client
from dalle_proxy.http_client import UploadForm, UploadTooLarge, decode_body, retry
from dalle_proxy.models import HTTPError


class MockResponse:
    def __init__(self, status_code=200, content_type="application/json", content=b""):
        self.status_code = status_code
        self.headers = {"Content-Type": content_type} if content_type else {}
        self.content = content


def json_response(status_code, data):
    return MockResponse(status_code, "application/json", json.dumps(data).encode("utf-8"))


class TestDecodeBody(unittest.TestCase):
    def test_json(self):
        self.assertEqual(decode_body("application/json", b'{"a": 1}'), {"a": 1})

    def test_json_with_charset_parameter(self):
        self.assertEqual(decode_body("application/json; charset=utf-8", b'[1, 2]'), [1, 2])

    def test_images_stay_bytes(self):
        for content_type in ("image/png", "image/jpeg", "image/webp"):
            self.assertEqual(decode_body(content_type, b"\x89PNG\x00"), b"\x89PNG\x00")

    def test_anything_else_is_text(self):
        self.assertEqual(decode_body("text/html", b"<p>hi</p>"), "<p>hi</p>")
        self.assertEqual(decode_body(None, b"plain"), "plain")

    def test_malformed_json_falls_back_to_text(self):
        self.assertEqual(decode_body("application/json", b"{not json"), "{not json")


class TestRequests(unittest.TestCase):
    @patch("requests.Session.request")
    def test_get_resolves_decoded_body_on_200(self, mock_request):
        mock_request.return_value = json_response(200, {"status": "pending"})

        result = http_client.get("https://example.com/tasks/1", headers={"Authorization": "Bearer sk-x"})

        self.assertEqual(result, {"status": "pending"})
        method, url = mock_request.call_args[0]
        headers = mock_request.call_args[1]["headers"]
        self.assertEqual((method, url), ("GET", "https://example.com/tasks/1"))
        self.assertEqual(headers["Authorization"], "Bearer sk-x")
        self.assertEqual(headers["Connection"], "close")
        self.assertEqual(headers["User-Agent"], http_client.USER_AGENT)

    @patch("requests.Session.request")
    def test_non_200_raises_http_error_with_decoded_body(self, mock_request):
        mock_request.return_value = json_response(400, {"error": {"message": "bad image"}})

        with self.assertRaises(HTTPError) as ctx:
            http_client.post_json("https://example.com/tasks", {"a": 1})

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.body, {"error": {"message": "bad image"}})
        self.assertEqual(mock_request.call_args[1]["json"], {"a": 1})

    @patch("requests.Session.request")
    def test_201_is_still_an_error(self, mock_request):
        mock_request.return_value = MockResponse(201, "text/plain", b"created")

        with self.assertRaises(HTTPError) as ctx:
            http_client.get("https://example.com/")

        self.assertEqual(ctx.exception.body, "created")

    @patch("requests.Session.request")
    def test_transport_errors_propagate_unwrapped(self, mock_request):
        mock_request.side_effect = requests.exceptions.ConnectionError("reset")

        with self.assertRaises(requests.exceptions.ConnectionError):
            http_client.get("https://example.com/")

    @patch("requests.Session.request")
    def test_redirects_are_not_followed(self, mock_request):
        mock_request.return_value = MockResponse(302, "text/html", b"")

        with self.assertRaises(HTTPError) as ctx:
            http_client.get("https://example.com/start")

        self.assertEqual(ctx.exception.status_code, 302)
        self.assertIs(mock_request.call_args[1]["allow_redirects"], False)
        self.assertEqual(mock_request.call_count, 1)

    @patch("requests.Session.request")
    def test_post_multipart_streams_fields_in_order(self, mock_request):
        sent = []

        def send(method, url, **kwargs):
            sent.append(b"".join(kwargs["data"]))
            return json_response(200, {"data": []})

        mock_request.side_effect = send

        form = UploadForm(max_data_size=100, boundary="test-boundary")
        form.append("n", 3)
        form.append("size", "512x512")
        form.append_file("image", io.BytesIO(b"png-bytes"), filename="image", content_type="image/png")

        http_client.post_multipart("https://example.com/upload", form, headers={"Authorization": "Bearer sk-x"})

        headers = mock_request.call_args[1]["headers"]
        self.assertEqual(headers["Content-Type"], "multipart/form-data; boundary=test-boundary")
        self.assertEqual(headers["Authorization"], "Bearer sk-x")
        self.assertNotIn("files", mock_request.call_args[1])
        self.assertEqual(sent, [
            b'--test-boundary\r\nContent-Disposition: form-data; name="n"\r\n\r\n3\r\n'
            b'--test-boundary\r\nContent-Disposition: form-data; name="size"\r\n\r\n512x512\r\n'
            b'--test-boundary\r\nContent-Disposition: form-data; name="image"; filename="image"\r\n'
            b'Content-Type: image/png\r\n\r\npng-bytes\r\n'
            b'--test-boundary--\r\n'
        ])


class TestUploadForm(unittest.TestCase):
    def test_rejects_oversized_stream_and_drains_it(self):
        stream = io.BytesIO(b"x" * 200000)
        form = UploadForm(max_data_size=10)
        form.append_file("image", stream, filename="image", content_type="image/png")

        with self.assertRaises(UploadTooLarge):
            b"".join(form.iter_body())

        self.assertEqual(stream.read(), b"")

    def test_exact_ceiling_is_allowed(self):
        form = UploadForm(max_data_size=4, boundary="b")
        form.append_file("image", io.BytesIO(b"abcd"), filename="image", content_type="image/png")

        body = b"".join(form.iter_body())

        self.assertIn(b"\r\n\r\nabcd\r\n--b--\r\n", body)

    def test_body_is_read_lazily(self):
        stream = io.BytesIO(b"image-bytes")
        form = UploadForm(boundary="b")
        form.append("n", 1)
        form.append_file("image", stream, filename="image", content_type="image/png")

        body = form.iter_body()
        next(body)

        self.assertEqual(stream.tell(), 0)
        self.assertIn(b"image-bytes", b"".join(body))

    def test_boundaries_are_unique(self):
        self.assertNotEqual(UploadForm().boundary, UploadForm().boundary)


class TestRetry(unittest.TestCase):
    def test_success_after_one_failure(self):
        calls = []

        def operation():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first")
            return "ok"

        start = time.monotonic()
        self.assertEqual(retry(operation, 1, 30), "ok")
        self.assertGreaterEqual(time.monotonic() - start, 0.03)
        self.assertEqual(len(calls), 2)

    def test_exhaustion_propagates_last_failure(self):
        errors = [RuntimeError("first"), RuntimeError("second")]

        def operation():
            raise errors.pop(0)

        with self.assertRaises(RuntimeError) as ctx:
            retry(operation, 1, 1)

        self.assertEqual(str(ctx.exception), "second")

    def test_zero_retries_fails_immediately(self):
        calls = []

        def operation():
            calls.append(1)
            raise ValueError("nope")

        with self.assertRaises(ValueError):
            retry(operation, 0, 1000)
        self.assertEqual(len(calls), 1)

    def test_elapsed_time_covers_every_retry(self):
        calls = []

        def operation():
            calls.append(1)
            if len(calls) < 3:
                raise RuntimeError("again")
            return len(calls)

        start = time.monotonic()
        self.assertEqual(retry(operation, 5, 20), 3)
        self.assertGreaterEqual(time.monotonic() - start, 0.04)


if __name__ == "__main__":
    unittest.main()
