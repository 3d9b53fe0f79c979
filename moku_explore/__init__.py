# Load environment variables FIRST before any other imports
from dotenv import load_dotenv
load_dotenv()

import os
import time
import uuid

from flask import Flask, g, request


def create_app(runtime=None):
    """
    Create and configure the Flask application.

    Args:
        runtime: Optional FeedRuntime; built from the environment when omitted
    """
    app = Flask(__name__, instance_relative_config=True)

    # =============================================================================
    # CONFIGURATION
    # =============================================================================
    app.config.from_mapping(
        JSON_SORT_KEYS=False,
        HOST=os.environ.get('FLASK_HOST', '127.0.0.1'),
        PORT=int(os.environ.get('FLASK_PORT', '5000')),
        DEBUG=os.environ.get('FLASK_DEBUG', 'false').lower() in ('true', '1', 'yes'),
    )

    # =============================================================================
    # LOGGING
    # =============================================================================
    from .log import log, debug_log_event

    @app.before_request
    def assign_request_id():
        g.request_id = uuid.uuid4().hex[:12]
        g.request_start = time.time()

    @app.after_request
    def debug_request_log(response):
        try:
            duration_ms = None
            start_time = getattr(g, 'request_start', None)
            if start_time:
                duration_ms = int((time.time() - start_time) * 1000)
            debug_log_event({
                'event': 'request',
                'request_id': getattr(g, 'request_id', None),
                'method': request.method,
                'path': request.path,
                'query': request.query_string.decode('utf-8', errors='ignore'),
                'status': response.status_code,
                'duration_ms': duration_ms,
            })
        except Exception as exc:
            log(f"Debug log error: {exc}")
        return response

    @app.teardown_request
    def debug_exception_log(error=None):
        if not error:
            return
        try:
            debug_log_event({
                'event': 'exception',
                'request_id': getattr(g, 'request_id', None),
                'path': request.path if request else None,
                'error_type': error.__class__.__name__,
                'error': str(error),
            })
        except Exception as exc:
            log(f"Debug exception log error: {exc}")

    # =============================================================================
    # EXPLORE RUNTIME
    # =============================================================================
    from .runtime import FeedRuntime
    from .routes.explore_api import explore_bp, RUNTIME_EXTENSION

    if runtime is None:
        runtime = FeedRuntime()
    app.extensions[RUNTIME_EXTENSION] = runtime

    # =============================================================================
    # BLUEPRINTS & ROUTES
    # =============================================================================
    app.register_blueprint(explore_bp)

    log(f"Moku Explore ready - Suwayomi at {runtime.config.server_url}")
    return app

# App instance should be created by the caller (run.py or WSGI entrypoint)
