#!/usr/bin/env python3
"""
Local Development Server for the DALL-E Proxy
Serves the same handlers as the serverless functions over plain HTTP.
"""

import os
from flask import Flask
from flask_cors import CORS
from dotenv import load_dotenv

# Load environment variables before importing modules that rely on them
load_dotenv()

from dalle_proxy.config import get_settings
from dalle_proxy.endpoints import api_bp


def create_app(settings=None):
    """
    Create the Flask application

    Args:
        settings: Optional Settings overriding the environment

    Returns:
        Flask: Configured application
    """
    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = 10 * 1024 * 1024  # uploads are normalised to < 4MB anyway
    app.config['PROXY_SETTINGS'] = settings

    # Configure CORS
    CORS(app, resources={
        r"/*": {
            "origins": "*",
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type", "X-Authorization"],
        }
    })

    app.register_blueprint(api_bp)
    return app


if __name__ == "__main__":
    settings = get_settings()
    print(f"🚀 Starting DALL-E proxy (backend: {settings.backend})")
    create_app(settings).run(
        debug=os.getenv('FLASK_DEBUG', 'false').lower() == 'true',
        host='0.0.0.0',
        port=int(os.getenv('PORT', '5000')),
    )
