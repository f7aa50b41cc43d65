"""
HTTP Client
Outbound HTTPS calls to the image provider, with body decoding and polling retry
"""

import json
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, TypeVar

import requests
from urllib3.fields import RequestField
from urllib3.filepost import choose_boundary

from .models import HTTPError

T = TypeVar('T')

USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; rv:102.0) Gecko/20100101 Firefox/102.0'

IMAGE_CONTENT_TYPES = {'image/webp', 'image/jpeg', 'image/png'}

DEFAULT_TIMEOUT = 60

_CHUNK_SIZE = 64 * 1024


class UploadTooLarge(ValueError):
    """Multipart payload exceeded the form's declared ceiling"""


class UploadForm:
    """
    Multipart form with ordered string fields and a single streamed binary field

    The body is produced lazily by iter_body(), so the binary field is sent as it
    is read and the request goes out with chunked transfer encoding.
    """

    def __init__(self, max_data_size: Optional[int] = None, boundary: Optional[str] = None):
        self.max_data_size = max_data_size
        self.boundary = boundary or choose_boundary()
        self.fields: List[Tuple[str, str]] = []
        self._file: Optional[Tuple[str, Any, str, str]] = None

    @property
    def content_type(self) -> str:
        return f'multipart/form-data; boundary={self.boundary}'

    def append(self, name: str, value: Any) -> None:
        self.fields.append((name, str(value)))

    def append_file(self, name: str, stream: Any, filename: str, content_type: str) -> None:
        self._file = (name, stream, filename, content_type)

    def _part_header(self, name: str, filename: Optional[str] = None,
                     content_type: Optional[str] = None) -> bytes:
        field = RequestField(name, b'', filename=filename)
        field.make_multipart(content_type=content_type)
        return f'--{self.boundary}\r\n'.encode('latin-1') + field.render_headers().encode('utf-8')

    def _stream_chunks(self, stream: Any) -> Iterator[bytes]:
        limit = self.max_data_size
        sent = 0
        for chunk in iter(lambda: stream.read1(_CHUNK_SIZE), b''):
            sent += len(chunk)
            if limit is not None and sent > limit:
                # Keep draining so the producer can finish and exit
                while stream.read(_CHUNK_SIZE):
                    pass
                raise UploadTooLarge(f"Upload exceeds {limit} bytes")
            yield chunk

    def iter_body(self) -> Iterator[bytes]:
        """
        Yield the encoded multipart body, reading the binary stream as it goes

        Raises:
            UploadTooLarge: If the binary field is bigger than max_data_size
        """
        for name, value in self.fields:
            yield self._part_header(name) + value.encode('utf-8') + b'\r\n'

        if self._file is not None:
            name, stream, filename, content_type = self._file
            yield self._part_header(name, filename, content_type)
            yield from self._stream_chunks(stream)
            yield b'\r\n'

        yield f'--{self.boundary}--\r\n'.encode('latin-1')


def decode_body(content_type: Optional[str], raw: bytes) -> Any:
    """
    Decode a response body according to its declared content type

    Args:
        content_type: Content-Type header value (parameters are ignored)
        raw: Raw response bytes

    Returns:
        Parsed JSON, raw bytes for images, or text for anything else
    """
    media_type = (content_type or '').split(';', 1)[0].strip().lower()

    if media_type == 'application/json':
        try:
            return json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, ValueError):
            return raw.decode('utf-8', errors='replace')

    if media_type in IMAGE_CONTENT_TYPES:
        return raw

    return raw.decode('utf-8', errors='replace')


def _request(method: str, url: str, headers: Optional[Dict[str, str]] = None,
             timeout: float = DEFAULT_TIMEOUT, **kwargs) -> Any:
    merged_headers = dict(headers or {})
    merged_headers['User-Agent'] = USER_AGENT
    # A fresh connection per call; pooled ones may have dropped while the function slept
    merged_headers['Connection'] = 'close'

    with requests.Session() as session:
        # A 3xx is not followed; it becomes an HTTPError below
        response = session.request(method, url, headers=merged_headers, timeout=timeout,
                                   allow_redirects=False, **kwargs)
        body = decode_body(response.headers.get('Content-Type'), response.content)

    if response.status_code != 200:
        raise HTTPError(response.status_code, body)

    return body


def get(url: str, headers: Optional[Dict[str, str]] = None, timeout: float = DEFAULT_TIMEOUT) -> Any:
    return _request('GET', url, headers=headers, timeout=timeout)


def post_json(url: str, body: Any, headers: Optional[Dict[str, str]] = None,
              timeout: float = DEFAULT_TIMEOUT) -> Any:
    return _request('POST', url, headers=headers, timeout=timeout, json=body)


def post_multipart(url: str, form: UploadForm, headers: Optional[Dict[str, str]] = None,
                   timeout: float = DEFAULT_TIMEOUT) -> Any:
    merged_headers = dict(headers or {})
    merged_headers['Content-Type'] = form.content_type
    return _request('POST', url, headers=merged_headers, timeout=timeout, data=form.iter_body())


def retry(operation: Callable[[], T], max_retries: int, delay_ms: int = 1000) -> T:
    """
    Call an operation, retrying after a fixed delay when it fails

    Args:
        operation: Zero-argument callable
        max_retries: Number of retries after the first attempt
        delay_ms: Delay before each retry in milliseconds

    Returns:
        The operation's result

    Raises:
        The last failure once retries are exhausted
    """
    while True:
        try:
            return operation()
        except Exception as e:
            if max_retries <= 0:
                raise
            print(f"⏳ Retrying in {delay_ms}ms after failure: {e}")

        max_retries -= 1
        time.sleep(delay_ms / 1000)
