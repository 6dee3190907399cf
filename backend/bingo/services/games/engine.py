"""Turn-based bingo state machine.

Pure logic over a ``Game`` row: nothing here touches the database session or
the socket layer. Callers load, mutate through these functions, then save.

    pending -> active -> completed
    pending -> cancelled
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from bingo.errors import ConflictError, ExpiredError, InvalidActionError, NotAuthorizedError
from bingo.models import (
    ACTIVE, CANCELLED, COMPLETED, FIRST, PENDING, SECOND, Game, pair_key,
)
from .board import BOARD_SIZE, MAX_NUMBER_LIMIT, MIN_NUMBER, Board, generate_board
from .patterns import LINES, MAX_REQUIRED_LINES, completed_lines, is_winning, validate_pattern

DEFAULT_INVITATION_TTL = 24 * 60 * 60

BoardFactory = Callable[[int], Board]


@dataclass
class CallOutcome:
    accepted: bool
    number: int
    history_length: int
    next_turn: str
    next_turn_user_id: int
    winner_id: Optional[int] = None


def _now(now: Optional[float]) -> float:
    return time.time() if now is None else now


def _require_participant(game: Game, actor_id) -> None:
    if not game.is_participant(actor_id):
        raise NotAuthorizedError('You are not a player in this game')


def _require_owner(game: Game, actor_id, message: str) -> None:
    if actor_id is None or int(actor_id) != game.first_user_id:
        raise NotAuthorizedError(message)


def _finish(game: Game, status: str, reason: str, now: float, winner_id=None) -> None:
    game.status = status
    game.end_reason = reason
    game.winner_id = winner_id
    game.active_pair_key = None
    if status == COMPLETED:
        game.completed_at = now


def create_session(owner_id: int, opponent_id: Optional[int] = None, *,
                   board_factory: BoardFactory = generate_board,
                   win_pattern: str = LINES, required_lines: int = 5,
                   max_number: int = 25, shared_board: bool = True,
                   invitation_ttl: float = DEFAULT_INVITATION_TTL,
                   existing: Optional[Game] = None, now: Optional[float] = None) -> Game:
    """Build a new pending session. ``existing`` is the pair's current
    non-terminal session, if the store found one."""
    now = _now(now)
    if existing is not None:
        expire_if_due(existing, now)
        if not existing.is_terminal:
            raise ConflictError('There is already an active game with this opponent',
                                game_id=existing.id, room_code=existing.room_code)
    if not 1 <= int(required_lines) <= MAX_REQUIRED_LINES:
        raise InvalidActionError(f'required_lines must be between 1 and {MAX_REQUIRED_LINES}')
    validate_pattern(win_pattern, required_lines)
    smallest = BOARD_SIZE * BOARD_SIZE - 1
    if not smallest <= int(max_number) <= MAX_NUMBER_LIMIT:
        raise InvalidActionError(f'max_number must be between {smallest} and {MAX_NUMBER_LIMIT}')
    solo = opponent_id is None or int(opponent_id) == int(owner_id)
    second_id = int(owner_id) if solo else int(opponent_id)

    first_board = board_factory(max_number)
    first_board.validate(max_number)
    if shared_board:
        second_board = first_board
    else:
        second_board = board_factory(max_number)
        second_board.validate(max_number)

    return Game(
        game_type='solo' if solo else 'multiplayer',
        status=PENDING,
        first_user_id=int(owner_id),
        second_user_id=second_id,
        active_pair_key=pair_key(owner_id, second_id),
        win_pattern=win_pattern,
        required_lines=int(required_lines),
        max_number=int(max_number),
        shared_board=bool(shared_board),
        first_board=first_board.to_json(),
        second_board=second_board.to_json(),
        called_numbers=[],
        current_turn=FIRST,
        first_completed_lines=0,
        second_completed_lines=0,
        ready_user_ids=[],
        invitation_accepted=False,
        invitation_expires_at=now + invitation_ttl,
        created_at=now,
    )


def is_expired(game: Game, now: Optional[float] = None) -> bool:
    return game.status == PENDING and game.invitation_expires_at < _now(now)


def expire_if_due(game: Game, now: Optional[float] = None) -> bool:
    """Cancel a pending session whose invitation window has passed.

    Returns True if this call changed the session.
    """
    if is_expired(game, now):
        _finish(game, CANCELLED, 'expired', _now(now))
        return True
    return False


def _activate(game: Game, now: float) -> None:
    game.status = ACTIVE
    game.invitation_accepted = True
    game.started_at = now


def _check_not_expired(game: Game, now: float) -> None:
    if expire_if_due(game, now) or (game.status == CANCELLED and game.end_reason == 'expired'):
        raise ExpiredError('This invitation has expired', game_id=game.id)


def accept(game: Game, actor_id, now: Optional[float] = None) -> Game:
    now = _now(now)
    _require_participant(game, actor_id)
    _check_not_expired(game, now)
    if game.status != PENDING:
        raise InvalidActionError('Cannot join this game', status=game.status)
    _activate(game, now)
    return game


def decline(game: Game, actor_id, now: Optional[float] = None) -> Game:
    now = _now(now)
    if actor_id is None or int(actor_id) != game.second_user_id:
        raise NotAuthorizedError('You can only decline games where you are the opponent')
    _check_not_expired(game, now)
    if game.status != PENDING:
        raise InvalidActionError('Game is not pending', status=game.status)
    _finish(game, CANCELLED, 'declined', now)
    return game


def cancel(game: Game, actor_id, now: Optional[float] = None) -> Game:
    """Owner cancels: pending -> cancelled, active -> completed with no winner."""
    now = _now(now)
    _require_owner(game, actor_id, 'Only the creator can cancel a game')
    expire_if_due(game, now)
    if game.status == COMPLETED:
        raise InvalidActionError('Cannot cancel a completed game')
    if game.status == CANCELLED:
        raise InvalidActionError('Game is already cancelled')
    if game.status == PENDING:
        _finish(game, CANCELLED, 'cancelled', now)
    else:
        _finish(game, COMPLETED, 'abandoned', now)
    return game


def set_ready(game: Game, actor_id, ready: bool, now: Optional[float] = None) -> bool:
    """Record readiness. Returns whether every participant is now ready."""
    _require_participant(game, actor_id)
    _check_not_expired(game, _now(now))
    if game.status != PENDING:
        raise InvalidActionError('Ready status can only change before the game starts')
    ready_ids = set(game.ready_user_ids or [])
    if ready:
        ready_ids.add(int(actor_id))
    else:
        ready_ids.discard(int(actor_id))
    game.ready_user_ids = sorted(ready_ids)
    return all_ready(game)


def all_ready(game: Game) -> bool:
    return set(game.participant_ids).issubset(set(game.ready_user_ids or []))


def start(game: Game, actor_id, now: Optional[float] = None) -> Game:
    now = _now(now)
    _require_owner(game, actor_id, 'Only the host can start the game')
    _check_not_expired(game, now)
    if game.status != PENDING:
        raise InvalidActionError('Game has already started or is finished', status=game.status)
    if not all_ready(game):
        raise InvalidActionError('Not all players are ready')
    _activate(game, now)
    return game


def update_settings(game: Game, actor_id, settings: Dict) -> Dict:
    """Host-only change of the win settings while the game is still pending."""
    _require_owner(game, actor_id, 'Only the host can update room settings')
    if game.status != PENDING:
        raise InvalidActionError('Settings are fixed once the game has started')
    if not isinstance(settings, dict):
        raise InvalidActionError('settings must be an object')
    pattern = settings.get('win_pattern', game.win_pattern)
    try:
        required = int(settings.get('required_lines', game.required_lines))
    except (TypeError, ValueError):
        raise InvalidActionError('required_lines must be an integer')
    if not 1 <= required <= MAX_REQUIRED_LINES:
        raise InvalidActionError(f'required_lines must be between 1 and {MAX_REQUIRED_LINES}')
    validate_pattern(pattern, required)
    game.win_pattern = pattern
    game.required_lines = required
    return {'win_pattern': game.win_pattern, 'required_lines': game.required_lines,
            'max_number': game.max_number, 'shared_board': game.shared_board}


def is_user_turn(game: Game, actor_id) -> bool:
    if game.status != ACTIVE or not game.is_participant(actor_id):
        return False
    return game.current_turn in game.roles_of(actor_id)


def parse_number(value, max_number: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidActionError(f'Invalid number. Must be between {MIN_NUMBER} and {max_number}.')
    if value < MIN_NUMBER or value > max_number:
        raise InvalidActionError(f'Invalid number. Must be between {MIN_NUMBER} and {max_number}.')
    return value


def parse_flag(value, name: str, default: bool) -> bool:
    """JSON booleans only; a string such as "false" is rejected, not coerced."""
    if value is None:
        return default
    if not isinstance(value, bool):
        raise InvalidActionError(f'{name} must be true or false')
    return value


def call_number(game: Game, actor_id, number, now: Optional[float] = None) -> bool:
    """Append ``number`` to the history and pass the turn.

    A number that was already called is a no-op returning False, so a client
    retrying after a lost acknowledgement cannot double-apply its call.
    """
    if game.status != ACTIVE:
        raise InvalidActionError('Game is not active', status=game.status)
    _require_participant(game, actor_id)
    number = parse_number(number, game.max_number)
    if number in game.called:
        return False
    if not is_user_turn(game, actor_id):
        raise NotAuthorizedError('It is not your turn')
    entry = {'number': number, 'called_by': int(actor_id), 'called_at': _now(now)}
    game.called_numbers = list(game.called_numbers or []) + [entry]
    game.last_called_number = number
    game.last_called_by = int(actor_id)
    game.current_turn = SECOND if game.current_turn == FIRST else FIRST
    return True


def evaluate(game: Game, actor_id=None, now: Optional[float] = None) -> Optional[int]:
    """Recompute completed lines and settle the winner.

    The acting participant's board is checked first, so when both boards
    satisfy the pattern after the same call the caller wins.
    """
    called = set(game.called)
    first_board = game.board_for(FIRST)
    second_board = game.board_for(SECOND)
    game.first_completed_lines = completed_lines(first_board, called)
    game.second_completed_lines = completed_lines(second_board, called)

    if game.status != ACTIVE:
        return game.winner_id

    order = [(FIRST, game.first_user_id, first_board), (SECOND, game.second_user_id, second_board)]
    if actor_id is not None and int(actor_id) == game.second_user_id and not game.is_solo:
        order.reverse()
    for _role, user_id, board in order:
        if is_winning(board, called, game.win_pattern, game.required_lines):
            _finish(game, COMPLETED, 'won', _now(now), winner_id=user_id)
            return user_id
    return None


def call_and_evaluate(game: Game, actor_id, number, now: Optional[float] = None) -> CallOutcome:
    """One call-number transaction: call, then settle the winner."""
    now = _now(now)
    accepted = call_number(game, actor_id, number, now)
    winner_id = evaluate(game, actor_id, now) if accepted else None
    return CallOutcome(
        accepted=accepted,
        number=number,
        history_length=len(game.called_numbers or []),
        next_turn=game.current_turn,
        next_turn_user_id=game.current_turn_user_id,
        winner_id=winner_id,
    )
