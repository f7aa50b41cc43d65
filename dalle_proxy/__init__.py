"""
DALL-E Proxy
Authenticates callers, normalises uploads with ImageMagick and relays DALL-E results
"""

from .handlers import get_backend, submit_image, poll_task, get_image
from .models import InboundRequest, ValidationError, ProcessError, HTTPError

__all__ = [
    'get_backend', 'submit_image', 'poll_task', 'get_image',
    'InboundRequest', 'ValidationError', 'ProcessError', 'HTTPError',
]
