"""
Local API Endpoints
Flask routes that run the handlers outside the serverless platform
"""

import base64
import time

import requests
from flask import Blueprint, Response, current_app, jsonify, request
from flask_cors import cross_origin

from .config import get_settings
from .handlers import get_backend
from .models import HTTPError, InboundRequest, ProxyError, create_error_response

api_bp = Blueprint('api', __name__)


def _inbound_request(path_parameters=None) -> InboundRequest:
    """Translate the current Flask request into the handlers' request shape"""
    return InboundRequest(
        headers={k.lower(): v for k, v in request.headers.items()},
        path_parameters=path_parameters or {},
        query_parameters=request.args.to_dict(),
        body=base64.b64encode(request.get_data()).decode('ascii'),
        is_base64_encoded=True,
        raw_path=request.path,
        raw_query_string=request.query_string.decode('latin-1'),
    )


def _settings():
    return current_app.config.get('PROXY_SETTINGS') or get_settings()


def _backend():
    return get_backend(_settings())


def _respond(result):
    """Render a handler result the way the serverless platform would"""
    if isinstance(result, dict) and result.get('isBase64Encoded'):
        return Response(
            base64.b64decode(result['body']),
            status=result.get('statusCode', 200),
            headers=result.get('headers') or {},
        )
    return jsonify(result)


@api_bp.errorhandler(ProxyError)
def handle_proxy_error(e):
    if isinstance(e, HTTPError):
        print(f"❌ Upstream error: HTTP {e.status_code}")
        details = None if isinstance(e.body, bytes) else e.body
        return jsonify(create_error_response(e.error_code, details)), e.status_code

    print(f"❌ {type(e).__name__}: {e}")
    return jsonify(create_error_response(e.error_code, str(e))), e.status_code


@api_bp.errorhandler(requests.exceptions.RequestException)
def handle_transport_error(e):
    print(f"❌ Provider unreachable: {e}")
    return jsonify(create_error_response('SERVICE_002', str(e))), 502


@api_bp.route('/health', methods=['GET'])
@cross_origin()
def health_check():
    """
    Health check endpoint
    """
    return jsonify({
        'status': 'healthy',
        'backend': _settings().backend,
        'timestamp': time.time()
    })


@api_bp.route('/submitImage', methods=['POST'])
@cross_origin()
def submit_image():
    """
    Upload a JPEG (raw request body) for variations.

    Headers:
    - X-Authorization: Bearer token forwarded to the provider

    Query parameters:
    - size: Output size ('256x256', '512x512', '1024x1024')
    - count: Number of variations (1 to 10)
    """
    return _respond(_backend().submit_image(_inbound_request()))


@api_bp.route('/pollTask/<task_id>', methods=['GET'])
@cross_origin()
def poll_task(task_id):
    return _respond(_backend().poll_task(_inbound_request({'taskID': task_id})))


@api_bp.route('/getImage/<path:image_path>', methods=['GET'])
@cross_origin()
def get_image(image_path):
    return _respond(_backend().get_image(_inbound_request({'imagePath': image_path})))
