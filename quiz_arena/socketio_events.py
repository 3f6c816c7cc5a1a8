from flask import current_app, request
from flask_login import current_user
from flask_socketio import emit

from quiz_arena import socketio, db
from quiz_arena.errors import ArenaError, SessionNotFoundError
from quiz_arena.models import User


def _arena():
    return current_app.extensions['arena']


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _session_id(data):
    try:
        return int((data or {}).get('sessionId'))
    except (TypeError, ValueError):
        return None


def _resolve_user(data):
    """The logged-in user, or the one named by ``userId`` in the payload."""
    if current_user.is_authenticated:
        return current_user
    try:
        user_id = int((data or {}).get('userId'))
    except (TypeError, ValueError):
        return None
    return db.session.get(User, user_id)


def _bound_user(session_id):
    """User id this socket plays as in ``session_id``, if any."""
    binding = _arena().binding(_get_sid())
    if not binding or binding[0] != session_id:
        return None
    return binding[1]


def handle_connect(auth=None):
    emit('connected', {'message': f'Connected to {request.namespace}'})


def handle_disconnect(reason=None):
    result = _arena().handle_disconnect(_get_sid())
    if result:
        current_app.logger.info(f"[disconnect] sid={_get_sid()} ended session={result['sessionId']}")


def handle_find_match(data):
    topic = (data or {}).get('topic')
    if not topic:
        emit('match_error', {'message': 'topic is required'})
        return
    user = _resolve_user(data)
    if user is None:
        emit('match_error', {'message': 'Unknown user'})
        return
    try:
        _arena().request_match(topic, user.id, user.username, _get_sid())
    except ArenaError as exc:
        emit('match_error', {'message': str(exc)})


def handle_cancel_match(data=None):
    entry = _arena().cancel_waiting(_get_sid())
    emit('match_cancelled', {'cancelled': entry is not None})


def handle_player_ready(data):
    session_id = _session_id(data)
    user_id = _bound_user(session_id)
    if user_id is None:
        current_app.logger.info(f"[ready-ignored] sid={_get_sid()} session={session_id}")
        return
    try:
        _arena().player_ready(session_id, user_id)
    except SessionNotFoundError as exc:
        current_app.logger.info(f"[stale-event] event=player_ready {exc}")


def handle_submit_answer(data):
    session_id = _session_id(data)
    user_id = _bound_user(session_id)
    if user_id is None:
        current_app.logger.info(f"[answer-ignored] sid={_get_sid()} session={session_id}")
        return
    try:
        _arena().submit_answer(session_id, user_id, (data or {}).get('answer'))
    except SessionNotFoundError as exc:
        current_app.logger.info(f"[stale-event] event=submit_answer {exc}")


def handle_forfeit_match(data):
    session_id = _session_id(data)
    user_id = _bound_user(session_id)
    if user_id is None:
        return
    try:
        _arena().forfeit(session_id, user_id)
    except SessionNotFoundError as exc:
        current_app.logger.info(f"[stale-event] event=forfeit_match {exc}")


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register the duel event handlers on ``namespace``."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('find_match', handle_find_match, namespace=namespace)
    socketio.on_event('cancel_match', handle_cancel_match, namespace=namespace)
    socketio.on_event('player_ready', handle_player_ready, namespace=namespace)
    socketio.on_event('submit_answer', handle_submit_answer, namespace=namespace)
    socketio.on_event('forfeit_match', handle_forfeit_match, namespace=namespace)
    socketio.on_event('ping', handle_ping, namespace=namespace)
