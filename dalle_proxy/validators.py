"""
Request Validators
Shape checks for bearer tokens, task IDs and image options
"""

import re
from typing import Any, Optional

VALID_IMAGE_SIZES = ('256x256', '512x512', '1024x1024')

MIN_IMAGE_COUNT = 1
MAX_IMAGE_COUNT = 10

_TOKEN_CHARS = r'[a-zA-Z0-9_=-]+'
_TASK_ID_RE = re.compile(r'task-' + _TOKEN_CHARS)


def is_valid_bearer_header(header: Any, prefix: Optional[str] = None) -> bool:
    """
    Check that an authorization header carries a bearer token of the right shape

    Args:
        header: Raw header value
        prefix: Token prefix ('sess-' or 'sk-'); defaults to the configured one

    Returns:
        bool: True if the header is well formed
    """
    if not isinstance(header, str):
        return False

    if prefix is None:
        from .config import get_settings
        prefix = get_settings().bearer_prefix

    return re.fullmatch('Bearer ' + re.escape(prefix) + _TOKEN_CHARS, header) is not None


def is_valid_task_id(task_id: Any) -> bool:
    return isinstance(task_id, str) and _TASK_ID_RE.fullmatch(task_id) is not None


def is_valid_image_size(size: Any) -> bool:
    return isinstance(size, str) and size in VALID_IMAGE_SIZES


def is_valid_image_count(count: Any) -> bool:
    # bool is an int subclass but never a valid count
    if isinstance(count, bool) or not isinstance(count, int):
        return False
    return MIN_IMAGE_COUNT <= count <= MAX_IMAGE_COUNT
