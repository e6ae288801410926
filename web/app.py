#!/usr/bin/env python3

import logging
from datetime import datetime

from flask import Flask, Response, jsonify, request

from recall.config import get_config_manager
from recall.export import export_csv, export_filename
from recall.query import QueryEngine
from recall.storage import EventStore

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Lazily created so the daemon and tests can inject their own store
_storage = None
_engine = None


def set_storage(storage: EventStore):
    """Use the given store (and a query engine over it) for all requests."""
    global _storage, _engine
    _storage = storage
    _engine = QueryEngine(storage)


def get_storage() -> EventStore:
    """Get or create the event store from configuration."""
    global _storage
    if _storage is None:
        config = get_config_manager().config
        set_storage(EventStore(str(config.storage.db_path)))
    return _storage


def get_engine() -> QueryEngine:
    """Get or create the query engine."""
    get_storage()
    return _engine


@app.route('/api/search', methods=['GET'])
def api_search():
    """Search the timeline.

    Query params:
        q: Free-form search string

    Returns:
        {"events": [{"id", "timestamp", "app", "title", "tags"}, ...]}
    """
    query = request.args.get('q', '')
    try:
        events = get_engine().search(query)
        return jsonify({'events': [e.to_dict() for e in events]})
    except Exception as e:
        logger.exception("Search failed")
        return jsonify({'error': f'Search failed: {str(e)}'}), 500


@app.route('/api/statistics', methods=['GET'])
def api_statistics():
    """Top applications by number of recorded events.

    Returns:
        {"apps": [{"app", "count", "first_seen", "last_seen"}, ...]}
    """
    try:
        stats = get_storage().get_statistics()
        return jsonify({'apps': [s.to_dict() for s in stats]})
    except Exception as e:
        return jsonify({'error': f'Statistics failed: {str(e)}'}), 500


@app.route('/api/export', methods=['GET'])
def api_export():
    """Download search results as CSV.

    Query params:
        q: Free-form search string (same semantics as /api/search)
    """
    query = request.args.get('q', '')
    try:
        text = export_csv(get_engine(), query)
    except Exception as e:
        return jsonify({'error': f'Export failed: {str(e)}'}), 500

    return Response(
        text,
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename={export_filename()}'}
    )


@app.route('/api/events/<int:event_id>/tag', methods=['POST'])
def api_add_tag(event_id):
    """Set the tag of an event, replacing any previous tag.

    Request body:
        {"tag": "deep work"}
    """
    data = request.get_json(silent=True) or {}
    tag = data.get('tag')
    if not isinstance(tag, str):
        return jsonify({'error': 'tag is required'}), 400

    try:
        if not get_storage().add_tag(event_id, tag):
            return jsonify({'error': f'Event {event_id} not found'}), 404
        return jsonify({'success': True})
    except Exception as e:
        return jsonify({'error': f'Failed to add tag: {str(e)}'}), 500


@app.route('/api/blacklist', methods=['GET'])
def api_get_blacklist():
    """Return the list of blacklisted application substrings."""
    try:
        return jsonify({'blacklist': get_storage().get_blacklist()})
    except Exception as e:
        return jsonify({'error': f'Failed to load blacklist: {str(e)}'}), 500


@app.route('/api/blacklist', methods=['PUT'])
def api_set_blacklist():
    """Replace the blacklist.

    Request body:
        {"blacklist": ["1password", "keepass"]}
    """
    data = request.get_json(silent=True) or {}
    blacklist = data.get('blacklist')
    if not isinstance(blacklist, list) or not all(isinstance(b, str) for b in blacklist):
        return jsonify({'error': 'blacklist must be a list of strings'}), 400

    try:
        get_storage().set_blacklist(blacklist)
        return jsonify({'success': True, 'blacklist': blacklist})
    except Exception as e:
        return jsonify({'error': f'Failed to update blacklist: {str(e)}'}), 500


@app.route('/api/recent-searches', methods=['GET'])
def api_get_recent_searches():
    try:
        return jsonify({'searches': get_storage().get_recent_searches()})
    except Exception as e:
        return jsonify({'error': f'Failed to load recent searches: {str(e)}'}), 500


@app.route('/api/recent-searches', methods=['POST'])
def api_save_recent_search():
    """Remember a search.

    Request body:
        {"query": "after slack"}
    """
    data = request.get_json(silent=True) or {}
    query = data.get('query')
    if not isinstance(query, str):
        return jsonify({'error': 'query is required'}), 400

    try:
        return jsonify({'searches': get_storage().save_recent_search(query)})
    except Exception as e:
        return jsonify({'error': f'Failed to save search: {str(e)}'}), 500


@app.route('/api/timeline/<date_string>', methods=['GET'])
def api_timeline(date_string):
    """All events of one local day (YYYY-MM-DD), oldest first."""
    try:
        events = get_engine().timeline(date_string)
        return jsonify({'date': date_string, 'events': [e.to_dict() for e in events]})
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        return jsonify({'error': f'Timeline failed: {str(e)}'}), 500


@app.route('/api/status', methods=['GET'])
def get_status():
    """Database location, event count and the most recent event."""
    try:
        storage = get_storage()
        latest = storage.get_latest_event()
        return jsonify({
            'db_path': storage.db_path,
            'event_count': storage.count_events(),
            'latest_event': latest.to_dict() if latest else None,
            'server_time': datetime.now().astimezone().isoformat(),
        })
    except Exception as e:
        return jsonify({'error': f'Status failed: {str(e)}'}), 500


@app.route('/api/config', methods=['GET'])
def get_config():
    """Return current configuration."""
    return jsonify(get_config_manager().to_dict())


if __name__ == '__main__':
    web_config = get_config_manager().config.web
    app.run(debug=True, host=web_config.host, port=web_config.port)
