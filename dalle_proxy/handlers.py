"""
Request Handlers
Submit an image, poll a task and fetch a generated image through the live provider
"""

import base64
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

from . import convert, http_client
from .config import Settings, get_settings
from .http_client import UploadForm, UploadTooLarge
from .models import (
    HTTPError,
    InboundRequest,
    ProviderResult,
    ProxyError,
    ValidationError,
    image_response,
)
from .validators import (
    is_valid_bearer_header,
    is_valid_image_count,
    is_valid_image_size,
    is_valid_task_id,
)

VARIATIONS_URL = 'https://api.openai.com/v1/images/variations'
LABS_TASKS_URL = 'https://labs.openai.com/api/labs/tasks'

# Hardcode the domain so callers can't use us to proxy to arbitrary websites
BLOB_BASE_URL = 'https://oaidalleapiprodscus.blob.core.windows.net/'

LABS_BATCH_SIZE = 4
LABS_IMAGE_SIZE = '1024x1024'

_GET_IMAGE_PATH_RE = re.compile(r'^/getImage/(.+)', re.DOTALL)
_UNSAFE_SUFFIX_RE = re.compile(r'\.\.|[\\@#?\s\x00-\x1f\x7f]')
_UNSAFE_QUERY_RE = re.compile(r'[\\#\s\x00-\x1f\x7f]')


def require_bearer(request: InboundRequest, settings: Settings) -> str:
    """
    Return the caller's bearer header after checking its shape

    Raises:
        ValidationError: If the header is missing or malformed
    """
    if 'x-authorization' not in request.headers:
        raise ValidationError('Bad request')

    bearer_header = request.headers['x-authorization']
    if not is_valid_bearer_header(bearer_header, settings.bearer_prefix):
        raise ValidationError('Bad bearer token', 'AUTH_002')

    return bearer_header


def require_task_id(request: InboundRequest) -> str:
    if 'taskID' not in request.path_parameters:
        raise ValidationError('Bad request')

    task_id = request.path_parameters['taskID']
    if not is_valid_task_id(task_id):
        raise ValidationError('Bad task ID', 'VALIDATION_002')

    return task_id


def parse_image_count(raw: Optional[str], default: int) -> int:
    """Missing, non-numeric or zero counts fall back to the default"""
    if raw is None:
        return default
    try:
        count = int(str(raw).strip())
    except ValueError:
        return default
    return count or default


def build_blob_url(suffix: str, query_string: str = '') -> str:
    """
    Build a blob store URL on the trusted domain

    Args:
        suffix: Caller-supplied blob path (without the domain)
        query_string: Caller-supplied query string, appended verbatim

    Returns:
        str: Absolute URL whose scheme and host are always BLOB_BASE_URL's

    Raises:
        ValidationError: If the suffix or query could escape the blob path
    """
    suffix = suffix.lstrip('/')
    if not suffix or _UNSAFE_SUFFIX_RE.search(suffix):
        raise ValidationError('Bad image path')
    if _UNSAFE_QUERY_RE.search(query_string):
        raise ValidationError('Bad query string')

    return BLOB_BASE_URL + suffix + '?' + query_string


def capture_provider_result(call: Callable[[], Any]) -> ProviderResult:
    """Run a provider call, turning an upstream error response into a result value"""
    try:
        return ProviderResult.success(call())
    except HTTPError as e:
        return ProviderResult.from_error(e)


def relay_provider_result(result: ProviderResult) -> Any:
    """
    Body to hand back to the caller for a submission

    Provider error bodies carrying an 'error' field are published to the client
    as a normal response; any other upstream failure is raised.
    """
    if result.ok:
        return result.body

    if result.is_passthrough_error:
        print(f"⚠️ Relaying provider error (HTTP {result.status}) to client")
        return result.body

    raise HTTPError(result.status, result.body)


class LiveBackend:
    """Handlers that talk to the real provider"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def submit_image(self, request: InboundRequest) -> Any:
        if 'x-authorization' not in request.headers or not request.is_base64_encoded:
            raise ValidationError('Bad request')

        if self.settings.backend == 'labs':
            return self._submit_labs_task(request)
        return self._submit_variation(request)

    def _submit_variation(self, request: InboundRequest) -> Any:
        settings = self.settings
        image_size = request.query_parameters.get('size') or settings.default_image_size
        image_count = parse_image_count(request.query_parameters.get('count'), settings.default_batch_size)

        bearer_header = require_bearer(request, settings)

        if not is_valid_image_size(image_size):
            raise ValidationError('Bad image size', 'VALIDATION_003')

        if not is_valid_image_count(image_count):
            raise ValidationError('Bad image count', 'VALIDATION_004')

        input_image = request.body_bytes()
        print(f"🔄 Submitting variation request (size={image_size}, n={image_count}, "
              f"input={len(input_image)} bytes)")

        # Scale down and crop the centre square at the requested size
        conversion = convert.start_conversion(
            convert.thumbnail_square(image_size, settings.convert_binary)
        )

        form = UploadForm(max_data_size=settings.max_upload_bytes)
        form.append('n', image_count)
        form.append('size', image_size)
        form.append('response_format', 'url')
        form.append('user', '1')  # We only have a single user per API key, so any ID will do here
        form.append_file('image', conversion.stdout, filename='image', content_type='image/png')

        def upload() -> ProviderResult:
            try:
                return capture_provider_result(lambda: http_client.post_multipart(
                    VARIATIONS_URL,
                    form,
                    headers={'Authorization': bearer_header},
                    timeout=settings.http_timeout,
                ))
            finally:
                # The provider may answer before reading the whole image; let the converter finish
                conversion.drain()

        with ThreadPoolExecutor(max_workers=3) as pool:
            feeding = pool.submit(conversion.feed, input_image)
            uploading = pool.submit(upload)
            exited = pool.submit(conversion.wait)

        feeding.result()
        exited.result()

        try:
            result = uploading.result()
        except UploadTooLarge as e:
            raise ValidationError(str(e), 'VALIDATION_005') from e

        return relay_provider_result(result)

    def _submit_labs_task(self, request: InboundRequest) -> Any:
        settings = self.settings
        bearer_header = require_bearer(request, settings)

        input_image = request.body_bytes()
        print(f"🔄 Creating labs task (input={len(input_image)} bytes)")

        png = convert.run_conversion(
            convert.thumbnail_square(LABS_IMAGE_SIZE, settings.convert_binary),
            input_image,
        )

        payload = {
            'task_type': 'variations',
            'prompt': {
                'batch_size': LABS_BATCH_SIZE,
                'image': base64.b64encode(png).decode('ascii'),
            },
        }

        result = capture_provider_result(lambda: http_client.post_json(
            LABS_TASKS_URL,
            payload,
            headers={'Authorization': bearer_header},
            timeout=settings.http_timeout,
        ))
        return relay_provider_result(result)

    def poll_task(self, request: InboundRequest) -> Any:
        if 'x-authorization' not in request.headers or 'taskID' not in request.path_parameters:
            raise ValidationError('Bad request')

        bearer_header = require_bearer(request, self.settings)
        task_id = require_task_id(request)

        print(f"🔍 Polling task {task_id}")
        return http_client.retry(
            lambda: http_client.get(
                f"{LABS_TASKS_URL}/{task_id}",
                headers={'Authorization': bearer_header},
                timeout=self.settings.http_timeout,
            ),
            1,
            self.settings.poll_retry_delay_ms,
        )

    def get_image(self, request: InboundRequest) -> Dict[str, Any]:
        matches = _GET_IMAGE_PATH_RE.match(request.raw_path)
        if not matches:
            raise ValidationError('Bad request')

        image_url = build_blob_url(matches.group(1), request.raw_query_string)

        print(f"📥 Fetching generated image {matches.group(1)}")
        source_image = http_client.get(image_url, timeout=self.settings.http_timeout)
        if not isinstance(source_image, bytes):
            raise ProxyError('Blob store did not return an image', 'SERVICE_001')

        # Transcode to JPEG to reduce download time
        if self.settings.watermark_path:
            spec = convert.watermark(self.settings.watermark_path, self.settings.convert_binary)
        else:
            spec = convert.transcode(self.settings.convert_binary)

        jpeg = convert.run_conversion(spec, source_image)
        print(f"✅ Returning {len(jpeg)} byte JPEG")
        return image_response(jpeg)


def get_backend(settings: Optional[Settings] = None):
    """Handlers for the configured backend"""
    settings = settings or get_settings()
    if settings.backend == 'dummy':
        from .dummy import DummyBackend
        return DummyBackend(settings)
    return LiveBackend(settings)


def submit_image(request: InboundRequest, settings: Optional[Settings] = None) -> Any:
    return get_backend(settings).submit_image(request)


def poll_task(request: InboundRequest, settings: Optional[Settings] = None) -> Any:
    return get_backend(settings).poll_task(request)


def get_image(request: InboundRequest, settings: Optional[Settings] = None) -> Dict[str, Any]:
    return get_backend(settings).get_image(request)
