"""
Proxy Data Models
Defines inbound requests, provider results, responses and error types
"""

import base64
import binascii
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Mapping

# Error codes for different types of failures
ERROR_CODES = {
    'AUTH_002': 'Bad bearer token',
    'VALIDATION_001': 'Bad request',
    'VALIDATION_002': 'Bad task ID',
    'VALIDATION_003': 'Bad image size',
    'VALIDATION_004': 'Bad image count',
    'VALIDATION_005': 'Image too large',
    'PROCESSING_001': 'Image conversion failed',
    'SERVICE_001': 'Provider request failed',
    'SERVICE_002': 'Provider unreachable',
    'SERVICE_003': 'Internal processing error',
    'FILE_001': 'File not found',
}


class ProxyError(Exception):
    """Base class for failures surfaced to the hosting layer"""
    status_code = 500
    error_code = 'SERVICE_003'

    def __init__(self, message: Optional[str] = None, error_code: Optional[str] = None):
        if error_code is not None:
            self.error_code = error_code
        super().__init__(message or ERROR_CODES.get(self.error_code, 'Unknown error'))


class ValidationError(ProxyError):
    """Request rejected before any downstream I/O"""
    status_code = 400
    error_code = 'VALIDATION_001'

    def __init__(self, message: Optional[str] = None, error_code: Optional[str] = None):
        super().__init__(message, error_code)
        if self.error_code.startswith('AUTH_'):
            self.status_code = 401


class NotFound(ProxyError):
    status_code = 404
    error_code = 'FILE_001'


class ProcessError(ProxyError):
    """The image converter exited with a nonzero status"""
    error_code = 'PROCESSING_001'

    def __init__(self, exit_code: int):
        self.exit_code = exit_code
        super().__init__(f"Returned exit code {exit_code}")


class HTTPError(ProxyError):
    """Upstream answered with a status other than 200"""
    error_code = 'SERVICE_001'

    def __init__(self, status_code: int, body: Any):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Upstream returned HTTP {status_code}")


@dataclass(frozen=True)
class InboundRequest:
    """One invocation's request, independent of the hosting envelope"""
    headers: Mapping[str, str] = field(default_factory=dict)
    path_parameters: Mapping[str, str] = field(default_factory=dict)
    query_parameters: Mapping[str, str] = field(default_factory=dict)
    body: str = ''
    is_base64_encoded: bool = False
    raw_path: str = ''
    raw_query_string: str = ''

    @classmethod
    def from_event(cls, event: Mapping[str, Any]) -> 'InboundRequest':
        """
        Build a request from an API Gateway HTTP API (payload v2) event

        Args:
            event: Event dictionary handed to the function

        Returns:
            InboundRequest: Request with lower-cased header names
        """
        headers = event.get('headers') or {}
        return cls(
            headers={str(k).lower(): v for k, v in headers.items()},
            path_parameters=dict(event.get('pathParameters') or {}),
            query_parameters=dict(event.get('queryStringParameters') or {}),
            body=event.get('body') or '',
            is_base64_encoded=bool(event.get('isBase64Encoded')),
            raw_path=event.get('rawPath') or '',
            raw_query_string=event.get('rawQueryString') or '',
        )

    def body_bytes(self) -> bytes:
        """Request body as bytes, base64-decoded when flagged"""
        if not self.is_base64_encoded:
            return self.body.encode('utf-8')
        try:
            return base64.b64decode(self.body, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError('Body is not valid base64')


@dataclass(frozen=True)
class ProviderResult:
    """Outcome of a provider call, either a success body or an error body"""
    ok: bool
    status: int
    body: Any

    @classmethod
    def success(cls, body: Any) -> 'ProviderResult':
        return cls(ok=True, status=200, body=body)

    @classmethod
    def from_error(cls, error: HTTPError) -> 'ProviderResult':
        return cls(ok=False, status=error.status_code, body=error.body)

    @property
    def is_passthrough_error(self) -> bool:
        """Provider error bodies with an 'error' field are relayed to the client"""
        return not self.ok and isinstance(self.body, dict) and 'error' in self.body


def image_response(jpeg: bytes) -> Dict[str, Any]:
    """
    Wrap JPEG bytes in the hosting platform's binary response envelope

    Args:
        jpeg: Encoded JPEG image

    Returns:
        dict: Response with base64 body
    """
    return {
        'headers': {'Content-Type': 'image/jpeg'},
        'statusCode': 200,
        'body': base64.b64encode(jpeg).decode('ascii'),
        'isBase64Encoded': True,
    }


def create_error_response(error_code: str, details: Any = None) -> Dict[str, Any]:
    """
    Create standardized error response

    Args:
        error_code: Error code from ERROR_CODES
        details: Additional error details

    Returns:
        dict: Error response dictionary
    """
    return {
        'success': False,
        'error': ERROR_CODES.get(error_code, 'Unknown error'),
        'error_code': error_code,
        'details': details,
        'timestamp': datetime.now(timezone.utc).isoformat()
    }
