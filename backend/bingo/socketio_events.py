"""Realtime gateway: Socket.IO handlers on namespace ``/ws``.

Every action re-loads its session from the store and re-checks membership and
status before touching it. Failures go back to the acting socket as an
``error`` event; the connection is never dropped for a bad action.
"""

from flask_socketio import join_room, leave_room, emit, ConnectionRefusedError
from bingo import socketio, db
from flask import current_app, request
from bingo.auth import extract_bearer, verify_identity
from bingo.errors import (
    AuthError, DuplicateNumberError, GameError, InvalidActionError, NotAuthorizedError,
)
from bingo.models import ACTIVE, COMPLETED, FIRST, Game
from bingo.services.games import engine
from bingo.services.games.board import Board
from bingo.services.games.store import store
from bingo.services.presence import Identity, presence
from typing import Any, Dict
import functools
import time

NAMESPACE = '/ws'


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _user_payload(identity: Identity) -> Dict[str, Any]:
    return {'user_id': identity.user_id, 'username': identity.username, 'timestamp': time.time()}


def _room_ref(data):
    return data.get('room_code') or data.get('game_id') or data.get('session_id')


def _load_member_game(identity: Identity, data) -> Game:
    ref = _room_ref(data)
    if not ref:
        raise InvalidActionError('room_code is required')
    game = store.load(ref)
    if not game.is_participant(identity.user_id):
        raise NotAuthorizedError('You are not in this room')
    return game


def _require_joined(game: Game) -> None:
    if not presence.in_room(_get_sid(), game.room):
        raise NotAuthorizedError('Join the room first')


def _action(name: str):
    """Resolve the caller's identity and turn any failure into a scoped error event."""
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(data=None):
            identity = presence.identity_for(_get_sid())
            if identity is None:
                emit('error', {'code': AuthError.code, 'message': 'Not authenticated', 'action': name})
                return None
            try:
                if isinstance(data, str):
                    data = {'room_code': data}
                return fn(identity, data if isinstance(data, dict) else {})
            except GameError as exc:
                db.session.rollback()
                current_app.logger.warning(
                    f"[action-error] action={name} user={identity.user_id} code={exc.code} {exc.message}"
                )
                payload = exc.to_dict()
                payload['action'] = name
                emit('error', payload)
            except Exception:
                db.session.rollback()
                current_app.logger.exception(f"[action-failed] action={name} user={identity.user_id}")
                emit('error', {'code': 'internal_error', 'message': f'Failed to {name.replace("_", " ")}', 'action': name})
            return None
        return wrapper
    return decorator


# ---- Broadcast helpers (usable from HTTP routes too) ----

def boards_payload(game: Game) -> Dict[str, Any]:
    if game.shared_board:
        return {'board': game.first_board}
    return {'boards': {str(game.first_user_id): game.first_board, str(game.second_user_id): game.second_board}}


def broadcast_game_started(game: Game) -> None:
    payload = {'room_code': game.room_code, 'game': game.to_dict(), 'started_at': game.started_at}
    payload.update(boards_payload(game))
    presence.broadcast_to_session(game.room, 'game_started', payload)


def broadcast_number_called(game: Game, outcome: engine.CallOutcome, identity: Identity) -> None:
    presence.broadcast_to_session(game.room, 'number_called', {
        'room_code': game.room_code,
        'game_id': game.id,
        'number': outcome.number,
        'called_by': identity.user_id,
        'called_by_username': identity.username,
        'called_at': game.called_numbers[-1]['called_at'],
        'history_length': outcome.history_length,
        'next_turn': outcome.next_turn,
        'next_turn_user_id': outcome.next_turn_user_id,
        'completed_lines': {'first': game.first_completed_lines, 'second': game.second_completed_lines},
    })


def broadcast_game_completed(game: Game) -> None:
    winner = game.to_dict()['winner']
    presence.broadcast_to_session(game.room, 'game_completed', {
        'room_code': game.room_code,
        'winner': winner,
        'game': game.to_dict(),
        'completed_at': game.completed_at,
        'duration_seconds': game.duration_seconds,
    })
    current_app.logger.info(f"[win] game={game.id} room={game.room_code} winner={game.winner_id}")


def publish_call(game: Game, outcome: engine.CallOutcome, identity: Identity) -> None:
    broadcast_number_called(game, outcome, identity)
    if outcome.winner_id is not None:
        broadcast_game_completed(game)


# ---- Connection lifecycle ----

def handle_connect(auth=None):
    token = extract_bearer(auth, request.headers)
    try:
        identity = verify_identity(token)
    except AuthError as exc:
        current_app.logger.warning(f"[connect-refused] sid={_get_sid()} {exc.message}")
        raise ConnectionRefusedError(exc.message)
    previous = presence.register(identity, _get_sid())
    if previous is not None:
        current_app.logger.info(f"[connect] user={identity.user_id} superseded sid={previous.sid}")
    current_app.logger.info(f"[connect] user={identity.username} sid={_get_sid()}")
    emit('connected', {
        'message': f'Connected to {NAMESPACE}',
        'user': identity.to_dict(),
        'online_user_ids': presence.online_user_ids(),
    })
    socketio.emit('user_connected', _user_payload(identity), namespace=NAMESPACE, skip_sid=_get_sid())


def handle_disconnect(reason=None):
    sid = _get_sid()
    entry = presence.unregister(sid)
    if entry is None:
        return
    identity = entry.identity
    current_app.logger.info(f"[disconnect] user={identity.username} sid={sid} rooms={len(entry.rooms)}")
    for room in sorted(entry.rooms):
        payload = _user_payload(identity)
        payload['room_code'] = room.split(':', 1)[-1]
        socketio.emit('player_disconnected', payload, to=room, namespace=NAMESPACE, skip_sid=sid)
    # A newer connection for the same user keeps them online
    if not presence.is_online(identity.user_id):
        socketio.emit('user_disconnected', _user_payload(identity), namespace=NAMESPACE, skip_sid=sid)


# ---- Room membership ----

def _join(identity: Identity, game: Game) -> bool:
    if not presence.join(_get_sid(), game.room):
        return False
    join_room(game.room)
    payload = _user_payload(identity)
    payload['room_code'] = game.room_code
    emit('player_joined', payload, to=game.room, include_self=False)
    current_app.logger.info(f"[join] user={identity.username} room={game.room}")
    return True


@_action('join_room')
def handle_join_room(identity: Identity, data):
    game = _load_member_game(identity, data)
    joined = _join(identity, game)
    emit('room_joined', {
        'room_code': game.room_code,
        'room': game.room,
        'already_joined': not joined,
        'game': game.to_dict(viewer_id=identity.user_id),
        'players_online': [member.to_dict() for member in presence.members_of(game.room)],
    })


@_action('join_rooms')
def handle_join_rooms(identity: Identity, data):
    codes = []
    for game in store.find_active_for_user(identity.user_id):
        if engine.expire_if_due(game):
            store.save(game)
            continue
        _join(identity, game)
        codes.append(game.room_code)
    emit('rooms_joined', {'room_codes': codes})


@_action('leave_room')
def handle_leave_room(identity: Identity, data):
    ref = _room_ref(data)
    if not ref:
        raise InvalidActionError('room_code is required')
    game = store.find_by_room_or_id(ref)
    room = game.room if game else f"game:{str(ref).upper()}"
    presence.leave(_get_sid(), room)
    leave_room(room)
    payload = _user_payload(identity)
    payload['room_code'] = room.split(':', 1)[-1]
    emit('player_left', payload, to=room)
    emit('room_left', {
        'room': room,
        'room_code': payload['room_code'],
        'rooms': sorted(presence.rooms_for(_get_sid())),
    })


# ---- Lobby ----

@_action('set_ready')
def handle_set_ready(identity: Identity, data):
    game = _load_member_game(identity, data)
    is_ready = engine.parse_flag(data.get('is_ready'), 'is_ready', True)
    everyone_ready = engine.set_ready(game, identity.user_id, is_ready)
    store.save(game)
    emit('ready_status_changed', {
        'room_code': game.room_code,
        'user_id': identity.user_id,
        'username': identity.username,
        'is_ready': is_ready,
        'all_players_ready': everyone_ready,
        'player_count': len(set(game.participant_ids)),
    }, to=game.room)


@_action('start_game')
def handle_start_game(identity: Identity, data):
    game = _load_member_game(identity, data)
    engine.start(game, identity.user_id)
    store.save(game)
    current_app.logger.info(f"[start] game={game.id} room={game.room_code} by={identity.username}")
    broadcast_game_started(game)


@_action('update_room_settings')
def handle_update_room_settings(identity: Identity, data):
    game = _load_member_game(identity, data)
    settings = engine.update_settings(game, identity.user_id, data.get('settings') or {})
    store.save(game)
    emit('room_settings_updated', {
        'room_code': game.room_code,
        'settings': settings,
        'updated_by': identity.username,
    }, to=game.room)


# ---- Play ----

@_action('call_number')
def handle_call_number(identity: Identity, data):
    game = _load_member_game(identity, data)
    outcome = engine.call_and_evaluate(game, identity.user_id, data.get('number'))
    if not outcome.accepted:
        raise DuplicateNumberError('Number already called', number=outcome.number,
                                   history_length=outcome.history_length)
    store.save(game)
    current_app.logger.info(
        f"[call] game={game.id} number={outcome.number} by={identity.username} next={outcome.next_turn}"
    )
    publish_call(game, outcome, identity)


@_action('check_win')
def handle_check_win(identity: Identity, data):
    game = _load_member_game(identity, data)
    if game.status not in (ACTIVE, COMPLETED):
        raise InvalidActionError('Game is not active', status=game.status)
    board_matches = None
    client_board = data.get('board')
    if client_board is not None:
        # Display aid only; the authoritative board decides
        try:
            board_matches = Board.from_json(client_board) == game.board_for_user(identity.user_id)
        except InvalidActionError:
            board_matches = False
    was_active = game.status == ACTIVE
    winner_id = engine.evaluate(game, identity.user_id)
    store.save(game)
    if was_active and game.status == COMPLETED:
        broadcast_game_completed(game)
    role = game.roles_of(identity.user_id)[0]
    lines = game.first_completed_lines if role == FIRST else game.second_completed_lines
    is_winner = winner_id is not None and winner_id == identity.user_id
    emit('win_check_result', {
        'room_code': game.room_code,
        'is_winner': is_winner,
        'winner_id': winner_id,
        'status': game.status,
        'completed_lines': lines,
        'win_pattern': game.win_pattern,
        'board_matches': board_matches,
        'message': 'Bingo!' if is_winner else 'No win yet, keep playing!',
    })


# ---- Chat passthrough ----

@_action('send_message')
def handle_send_message(identity: Identity, data):
    game = _load_member_game(identity, data)
    _require_joined(game)
    message = str(data.get('message') or '').strip()
    if not message:
        return
    limit = int(current_app.config.get('CHAT_MAX_LENGTH', 500))
    if len(message) > limit:
        raise InvalidActionError(f'Message must be at most {limit} characters')
    emit('new_message', {
        'room_code': game.room_code,
        'user_id': identity.user_id,
        'username': identity.username,
        'message': message,
        'timestamp': time.time(),
    }, to=game.room)


@_action('typing')
def handle_typing(identity: Identity, data):
    game = _load_member_game(identity, data)
    _require_joined(game)
    is_typing = engine.parse_flag(data.get('is_typing'), 'is_typing', True)
    emit('typing', {
        'room_code': game.room_code,
        'user_id': identity.user_id,
        'username': identity.username,
        'is_typing': is_typing,
    }, to=game.room, include_self=False)


def handle_ping(data):
    emit('pong', data or {})


def _transport(event: str, payload: Any, to: str) -> None:
    socketio.emit(event, payload, to=to, namespace=NAMESPACE)


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on namespace '/ws'."""
    presence.bind(_transport)
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('join_room', handle_join_room, namespace=NAMESPACE)
    socketio.on_event('join_session', handle_join_room, namespace=NAMESPACE)
    socketio.on_event('join_rooms', handle_join_rooms, namespace=NAMESPACE)
    socketio.on_event('leave_room', handle_leave_room, namespace=NAMESPACE)
    socketio.on_event('set_ready', handle_set_ready, namespace=NAMESPACE)
    socketio.on_event('start_game', handle_start_game, namespace=NAMESPACE)
    socketio.on_event('update_room_settings', handle_update_room_settings, namespace=NAMESPACE)
    socketio.on_event('call_number', handle_call_number, namespace=NAMESPACE)
    socketio.on_event('check_win', handle_check_win, namespace=NAMESPACE)
    socketio.on_event('send_message', handle_send_message, namespace=NAMESPACE)
    socketio.on_event('typing', handle_typing, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)
