import logging

from flask import Blueprint, current_app, jsonify, request

from services.message_store import StoreError
from services.results import Failed, FailureKind

history_bp = Blueprint('history', __name__)

logger = logging.getLogger(__name__)


@history_bp.route('/messages', methods=['GET'])
def get_messages():
    """Últimos mensajes en orden cronológico (el más antiguo primero)."""
    relay = current_app.extensions['relay']
    try:
        messages = relay.history.get_recent(request.args.get('limit'))
    except StoreError as exc:
        relay.recorder.record(Failed('history', FailureKind.STORE, exc))
        return jsonify({'error': 'Failed to fetch messages'}), 500

    return jsonify([m.to_dict() for m in messages])


@history_bp.route('/health', methods=['GET'])
def health():
    relay = current_app.extensions['relay']
    return jsonify({
        'status': 'ok',
        'connections': len(relay.registry),
        'failures': relay.recorder.snapshot(),
    })
