"""Session store: persistence boundary for ``Game`` rows.

``save`` is a compare-and-swap on ``Game.version``; a concurrent writer that
got there first turns into ``ConflictError`` instead of a lost update.
"""

import time
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from bingo import db
from bingo.errors import ConflictError, NotFoundError
from bingo.models import MAX_ID, NON_TERMINAL, Game, generate_room_code
from . import engine


class SessionStore:

    def create(self, game: Game) -> Game:
        if not game.room_code:
            game.room_code = generate_room_code()
        db.session.add(game)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError('There is already an active game with this opponent')
        return game

    def save(self, game: Game) -> Game:
        db.session.add(game)
        try:
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            raise ConflictError('Game was updated concurrently, please retry', game_id=game.id)
        except IntegrityError:
            db.session.rollback()
            raise ConflictError('There is already an active game with this opponent', game_id=game.id)
        return game

    def find_by_room_or_id(self, ref) -> Optional[Game]:
        if ref is None:
            return None
        ref = str(ref).strip()
        if not ref:
            return None
        if ref.startswith('game:'):
            ref = ref[len('game:'):]
        if ref.isdigit() and int(ref) <= MAX_ID:
            game = db.session.get(Game, int(ref))
            if game:
                return game
        return Game.query.filter_by(room_code=ref.upper()).first()

    def find_active_by_participants(self, a: int, b: int) -> Optional[Game]:
        """Non-terminal session for the unordered pair (a, b)."""
        return Game.query.filter(
            or_(
                (Game.first_user_id == a) & (Game.second_user_id == b),
                (Game.first_user_id == b) & (Game.second_user_id == a),
            ),
            Game.status.in_(NON_TERMINAL),
        ).first()

    def find_active_for_user(self, user_id: int) -> List[Game]:
        return Game.query.filter(
            or_(Game.first_user_id == user_id, Game.second_user_id == user_id),
            Game.status.in_(NON_TERMINAL),
        ).order_by(Game.created_at.desc()).all()

    def list_for_user(self, user_id: int, status: Optional[str] = None, page: int = 1, limit: int = 10):
        query = Game.query.filter(or_(Game.first_user_id == user_id, Game.second_user_id == user_id))
        if status:
            query = query.filter(Game.status == status)
        total = query.count()
        games = query.order_by(Game.created_at.desc(), Game.id.desc()).limit(limit).offset((page - 1) * limit).all()
        return games, total

    def load(self, ref, now: Optional[float] = None) -> Game:
        """Fetch a session, applying lazy invitation expiry before returning it."""
        game = self.find_by_room_or_id(ref)
        if not game:
            raise NotFoundError('Game not found')
        if engine.expire_if_due(game, time.time() if now is None else now):
            self.save(game)
        return game


store = SessionStore()
