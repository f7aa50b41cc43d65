"""
Proxy Configuration
Loads deployment settings from environment variables (and .env)
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

# Ensure .env variables are loaded even when this module is imported
load_dotenv()

BACKENDS = ('variations', 'labs', 'dummy')

# Each provider integration issues its own style of session token
BEARER_PREFIXES = {
    'variations': 'sk-',
    'labs': 'sess-',
    'dummy': 'sess-',
}

DEFAULT_FIXTURE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'fixtures')


@dataclass(frozen=True)
class Settings:
    """Immutable per-process settings"""
    backend: str = 'variations'
    bearer_prefix: str = 'sk-'
    convert_binary: str = '/opt/bin/convert'
    default_image_size: str = '1024x1024'
    default_batch_size: int = 4
    max_upload_bytes: int = 4 * 1024 * 1024
    poll_retry_delay_ms: int = 1000
    http_timeout: float = 60
    watermark_path: Optional[str] = None
    fixture_dir: str = DEFAULT_FIXTURE_DIR


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name, '').strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def load_settings() -> Settings:
    """
    Build settings from the environment

    Returns:
        Settings: Validated settings

    Raises:
        ValueError: If a variable holds an unusable value
    """
    backend = os.getenv('DALLE_PROXY_BACKEND', 'variations').strip().lower()
    if backend not in BACKENDS:
        raise ValueError(f"DALLE_PROXY_BACKEND must be one of {', '.join(BACKENDS)}, got {backend!r}")

    return Settings(
        backend=backend,
        bearer_prefix=os.getenv('BEARER_PREFIX', '').strip() or BEARER_PREFIXES[backend],
        convert_binary=os.getenv('CONVERT_BINARY', '').strip() or '/opt/bin/convert',
        default_image_size=os.getenv('DEFAULT_IMAGE_SIZE', '').strip() or '1024x1024',
        default_batch_size=_int_env('DEFAULT_BATCH_SIZE', 4),
        max_upload_bytes=_int_env('MAX_UPLOAD_BYTES', 4 * 1024 * 1024),
        poll_retry_delay_ms=_int_env('POLL_RETRY_DELAY_MS', 1000),
        http_timeout=_int_env('HTTP_TIMEOUT', 60),
        watermark_path=os.getenv('WATERMARK_PATH', '').strip() or None,
        fixture_dir=os.getenv('DUMMY_FIXTURE_DIR', '').strip() or DEFAULT_FIXTURE_DIR,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings for this process, loaded once (clear with get_settings.cache_clear())"""
    return load_settings()
