from typing import Optional

from flask import Blueprint, current_app, jsonify, request

from sources.client import QueryError
from moku_explore.log import drain_messages, log
from moku_explore.services.feed_service import ROW_CAP
from .validators import validate_fields, validate_genre

explore_bp = Blueprint('explore_api', __name__, url_prefix='/api/explore')

RUNTIME_EXTENSION = 'moku_explore'
TRUE_VALUES = ('1', 'true', 'yes', 'on')


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _runtime():
    return current_app.extensions[RUNTIME_EXTENSION]


def _error(message: str, detail: Optional[str] = None, code: str = 'invalid_request', status: int = 400):
    payload = {'error': message, 'code': code}
    if detail:
        payload['detail'] = detail
    return jsonify(payload), status


def _flag(name: str, default: str = 'false') -> bool:
    return request.args.get(name, default).lower() in TRUE_VALUES


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------

@explore_bp.route('', methods=['GET'])
def get_feed():
    """Feed snapshot; waits for the first load unless ?wait=false."""
    try:
        snapshot = _runtime().load(wait=_flag('wait', 'true'))
        return jsonify(snapshot.to_dict(row_cap=ROW_CAP))
    except Exception as exc:
        log(f"Explore feed failed: {exc}")
        return _error('Explore feed failed', detail=str(exc), code='server_error', status=500)


@explore_bp.route('/retry', methods=['POST'])
def retry_feed():
    """Clear cached foundations and rerun the pipeline."""
    try:
        snapshot = _runtime().retry()
        return jsonify(snapshot.to_dict(row_cap=ROW_CAP))
    except Exception as exc:
        log(f"Explore retry failed: {exc}")
        return _error('Explore retry failed', detail=str(exc), code='server_error', status=500)


# ---------------------------------------------------------------------------
# Genre drill-down
# ---------------------------------------------------------------------------

@explore_bp.route('/genre/<genre>', methods=['GET'])
def get_genre(genre: str):
    """All results for one genre. ?more=true fetches the next page."""
    error = validate_genre(genre)
    if error:
        return _error(error)
    try:
        runtime = _runtime()
        if _flag('more') and runtime.genre_search.genre == genre:
            return jsonify(runtime.load_more_genre())
        return jsonify(runtime.open_genre(genre))
    except Exception as exc:
        log(f"Genre drill '{genre}' failed: {exc}")
        return _error('Genre lookup failed', detail=str(exc), code='server_error', status=500)


# ---------------------------------------------------------------------------
# Library
# ---------------------------------------------------------------------------

@explore_bp.route('/library', methods=['POST'])
def add_to_library():
    """Add a record to the library."""
    data = request.get_json(silent=True) or {}
    error = validate_fields(data, [('id', int, None)])
    if error:
        return _error(error)

    record_id = data['id']
    try:
        in_library = _runtime().add_to_library(record_id)
    except QueryError as exc:
        log(f"Add to library failed for {record_id}: {exc}")
        return _error('Could not update library', detail=str(exc), code='upstream_error', status=502)
    except Exception as exc:
        log(f"Add to library failed for {record_id}: {exc}")
        return _error('Could not update library', detail=str(exc), code='server_error', status=500)
    return jsonify({'status': 'ok', 'id': record_id, 'inLibrary': in_library})


@explore_bp.route('/sources/<source_id>/access', methods=['POST'])
def record_source_access(source_id: str):
    """Count one visit to a catalog; feeds the popular/category source order."""
    _runtime().record_source_access(source_id)
    return jsonify({'status': 'ok'})


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

@explore_bp.route('/cache', methods=['GET'])
def cache_stats():
    runtime = _runtime()
    return jsonify({'stats': runtime.cache_stats(), 'keys': runtime.cache_keys()})


@explore_bp.route('/logs', methods=['GET'])
def get_logs():
    """Get pending log messages."""
    return jsonify({'logs': drain_messages()})
