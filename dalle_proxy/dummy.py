"""
Dummy Backend
Serves canned task states and example images without contacting the provider
"""

import json
import os
import random
import re
from typing import Any, Callable, Dict, Optional

from .config import Settings, get_settings
from .handlers import require_bearer, require_task_id
from .models import InboundRequest, NotFound, ValidationError, image_response

_GENERATION_INDEX_RE = re.compile(r'generation-abcdefghijklmnopqrstuvw(\d+)')


class DummyBackend:
    """Same handler contract as the live backend, backed by fixture files"""

    def __init__(self, settings: Optional[Settings] = None, coin: Callable[[], float] = random.random):
        self.settings = settings or get_settings()
        self.coin = coin

    def _fixture_path(self, name: str) -> str:
        return os.path.join(self.settings.fixture_dir, name)

    def _load_json(self, name: str) -> Any:
        with open(self._fixture_path(name), 'r', encoding='utf-8') as f:
            return json.load(f)

    def submit_image(self, request: InboundRequest) -> Any:
        if 'x-authorization' not in request.headers or not request.is_base64_encoded:
            raise ValidationError('Bad request')

        require_bearer(request, self.settings)

        print(f"Ignoring uploaded image of size {len(request.body_bytes())}")
        return self._load_json('task-pending.json')

    def poll_task(self, request: InboundRequest) -> Any:
        if 'x-authorization' not in request.headers or 'taskID' not in request.path_parameters:
            raise ValidationError('Bad request')

        require_bearer(request, self.settings)
        require_task_id(request)

        if self.coin() < 0.5:
            return self._load_json('task-complete.json')
        return self._load_json('task-pending.json')

    def get_image(self, request: InboundRequest) -> Dict[str, Any]:
        if 'imagePath' not in request.path_parameters:
            raise ValidationError('Bad request')

        matches = _GENERATION_INDEX_RE.search(request.path_parameters['imagePath'])
        if not matches:
            raise ValidationError('Bad image path')

        image_index = int(matches.group(1), 10)
        image_path = self._fixture_path(f"example-{image_index}.jpg")
        if not os.path.exists(image_path):
            raise NotFound(f"No example image {image_index}")

        with open(image_path, 'rb') as f:
            return image_response(f.read())
