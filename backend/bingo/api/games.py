from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from bingo import db
from bingo.errors import DuplicateNumberError, GameError, NotAuthorizedError, NotFoundError, InvalidActionError
from bingo.models import MAX_ID, User, PENDING, ACTIVE, COMPLETED, CANCELLED
from bingo.services.games import engine
from bingo.services.games.board import BOARD_SIZE, MAX_NUMBER_LIMIT
from bingo.services.games.patterns import MAX_REQUIRED_LINES
from bingo.services.games.store import store
from bingo.services.presence import Identity, presence
from bingo.socketio_events import broadcast_game_started, publish_call


games = Blueprint('games', __name__)

STATUSES = (PENDING, ACTIVE, COMPLETED, CANCELLED)


@games.errorhandler(GameError)
def _handle_game_error(exc: GameError):
    db.session.rollback()
    current_app.logger.info(f"[api-error] path={request.path} code={exc.code} {exc.message}")
    payload = {'error': exc.message}
    payload.update(exc.to_dict())
    return jsonify(payload), exc.status_code


def _identity() -> Identity:
    return Identity(user_id=current_user.id, username=current_user.username, role=current_user.role or 'user')


def _load_for_participant(game_ref):
    game = store.load(game_ref)
    if not game.is_participant(current_user.id):
        raise NotAuthorizedError('Access denied. You are not part of this game.')
    return game


def _int_arg(data, key, default, min_value=None, max_value=None):
    value = data.get(key, default)
    if isinstance(value, bool):
        raise InvalidActionError(f'{key} must be an integer')
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise InvalidActionError(f'{key} must be an integer')
    if (min_value is not None and value < min_value) or (max_value is not None and value > max_value):
        raise InvalidActionError(f'{key} must be between {min_value} and {max_value}')
    return value


@games.route('/', methods=['POST'])
@login_required
def create_game():
    """Create a session; the caller is the first participant (host)."""
    data = request.get_json(silent=True) or {}
    cfg = current_app.config
    game_type = data.get('game_type') or 'multiplayer'
    opponent_id = data.get('opponent_id')
    if game_type not in ('multiplayer', 'solo'):
        raise InvalidActionError('game_type must be multiplayer or solo')
    if game_type == 'multiplayer' and not opponent_id:
        raise InvalidActionError('Opponent ID is required for multiplayer games')

    max_number = _int_arg(data, 'max_number', cfg.get('BOARD_MAX_NUMBER', 25),
                          BOARD_SIZE * BOARD_SIZE - 1, cfg.get('BOARD_MAX_NUMBER_LIMIT', MAX_NUMBER_LIMIT))
    required_lines = _int_arg(data, 'required_lines', cfg.get('DEFAULT_REQUIRED_LINES', 5), 1, MAX_REQUIRED_LINES)
    shared_board = engine.parse_flag(data.get('shared_board'), 'shared_board', True)

    opponent = None
    if game_type == 'multiplayer':
        opponent_id = _int_arg(data, 'opponent_id', None, 1, MAX_ID)
        if opponent_id == current_user.id:
            raise InvalidActionError('You cannot invite yourself')
        opponent = db.session.get(User, opponent_id)
        if not opponent or not opponent.is_active:
            raise NotFoundError('Opponent not found')
    other_id = opponent.id if opponent else current_user.id

    new_game = engine.create_session(
        current_user.id,
        opponent.id if opponent else None,
        win_pattern=data.get('win_pattern') or cfg.get('DEFAULT_WIN_PATTERN', 'lines'),
        required_lines=required_lines,
        max_number=max_number,
        shared_board=shared_board,
        invitation_ttl=cfg.get('INVITATION_TTL_SEC', 24 * 60 * 60),
        existing=store.find_active_by_participants(current_user.id, other_id),
    )
    # create_session may have lazily expired the pair's old invitation
    db.session.commit()
    store.create(new_game)
    current_app.logger.info(f"[create] game={new_game.id} room={new_game.room_code} by={current_user.username}")

    if opponent:
        presence.send_to_user(opponent.id, 'game_invitation', {
            'game_id': new_game.id,
            'room_code': new_game.room_code,
            'from': {'id': current_user.id, 'username': current_user.username},
            'expires_at': new_game.invitation_expires_at,
        })

    return jsonify({'message': 'Game created successfully', 'game': new_game.to_dict(current_user.id)}), 201


@games.route('/', methods=['GET'])
@login_required
def list_games():
    status = request.args.get('status')
    if status and status not in STATUSES:
        raise InvalidActionError(f'status must be one of {", ".join(STATUSES)}')
    page = max(1, request.args.get('page', 1, type=int))
    limit = min(100, max(1, request.args.get('limit', 10, type=int)))
    rows, total = store.list_for_user(current_user.id, status=status, page=page, limit=limit)
    return jsonify({
        'games': [g.to_dict(current_user.id) for g in rows],
        'total': total,
        'current_page': page,
        'total_pages': (total + limit - 1) // limit,
    })


@games.route('/<string:game_ref>', methods=['GET'])
@login_required
def get_game(game_ref):
    game = _load_for_participant(game_ref)
    return jsonify({'game': game.to_dict(current_user.id)})


@games.route('/<string:game_ref>/accept', methods=['POST'])
@games.route('/<string:game_ref>/join', methods=['POST'])
@login_required
def accept_game(game_ref):
    game = store.load(game_ref)
    engine.accept(game, current_user.id)
    store.save(game)
    current_app.logger.info(f"[accept] game={game.id} by={current_user.username}")
    presence.send_to_user(game.first_user_id, 'invitation_accepted', {
        'game_id': game.id,
        'room_code': game.room_code,
        'by': {'id': current_user.id, 'username': current_user.username},
    })
    broadcast_game_started(game)
    return jsonify({'message': 'Game started successfully', 'game': game.to_dict(current_user.id)})


@games.route('/<string:game_ref>/decline', methods=['POST'])
@login_required
def decline_game(game_ref):
    game = store.load(game_ref)
    engine.decline(game, current_user.id)
    store.save(game)
    presence.send_to_user(game.first_user_id, 'invitation_declined', {
        'game_id': game.id,
        'room_code': game.room_code,
        'by': {'id': current_user.id, 'username': current_user.username},
    })
    return jsonify({'message': 'Game invitation declined', 'game': game.to_dict(current_user.id)})


@games.route('/<string:game_ref>/cancel', methods=['POST'])
@login_required
def cancel_game(game_ref):
    game = store.load(game_ref)
    engine.cancel(game, current_user.id)
    store.save(game)
    presence.broadcast_to_session(game.room, 'game_cancelled', {
        'room_code': game.room_code,
        'status': game.status,
        'end_reason': game.end_reason,
    })
    return jsonify({'message': 'Game cancelled successfully', 'game': game.to_dict(current_user.id)})


@games.route('/<string:game_ref>/call-number', methods=['POST'])
@login_required
def call_number(game_ref):
    data = request.get_json(silent=True) or {}
    game = _load_for_participant(game_ref)
    outcome = engine.call_and_evaluate(game, current_user.id, data.get('number'))
    if not outcome.accepted:
        raise DuplicateNumberError('Number has already been called', number=outcome.number)
    store.save(game)
    publish_call(game, outcome, _identity())
    winner = game.to_dict()['winner']
    return jsonify({'message': 'Number called successfully', 'game': game.to_dict(current_user.id), 'winner': winner})
