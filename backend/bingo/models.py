from bingo import db, bcrypt
from flask_login import UserMixin
import string
import random

from bingo.services.games.board import Board

PENDING = 'pending'
ACTIVE = 'active'
COMPLETED = 'completed'
CANCELLED = 'cancelled'

NON_TERMINAL = (PENDING, ACTIVE)
TERMINAL = (COMPLETED, CANCELLED)

# Largest value an Integer primary key column holds
MAX_ID = 2 ** 31 - 1

FIRST = 'first'
SECOND = 'second'


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(32), nullable=False, default='user')
    # Overrides UserMixin.is_active; inactive users cannot authenticate
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'role': self.role,
        }


def generate_room_code(length=6):
    """Generate a unique, short room code."""
    while True:
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        # All-digit codes would be read as game ids
        if code.isdigit():
            continue
        if not Game.query.filter_by(room_code=code).first():
            return code


def pair_key(a: int, b: int) -> str:
    lo, hi = sorted((int(a), int(b)))
    return f"{lo}:{hi}"


class Game(db.Model):
    """One bingo session between two participants (or one, for solo play)."""

    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    room_code = db.Column(db.String(8), unique=True, index=True, nullable=False)
    game_type = db.Column(db.String(16), nullable=False, default='multiplayer')  # multiplayer, solo
    status = db.Column(db.String(16), nullable=False, default=PENDING, index=True)
    end_reason = db.Column(db.String(16), nullable=True)  # won, declined, cancelled, expired, abandoned

    first_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    second_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    winner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    first_user = db.relationship('User', foreign_keys=[first_user_id])
    second_user = db.relationship('User', foreign_keys=[second_user_id])
    winner = db.relationship('User', foreign_keys=[winner_id])

    # Set while pending/active, cleared on a terminal transition
    active_pair_key = db.Column(db.String(32), unique=True, nullable=True)

    # Settings, fixed once the game is active
    win_pattern = db.Column(db.String(16), nullable=False, default='lines')
    required_lines = db.Column(db.Integer, nullable=False, default=5)
    max_number = db.Column(db.Integer, nullable=False, default=25)
    shared_board = db.Column(db.Boolean, nullable=False, default=True)

    first_board = db.Column(db.JSON, nullable=False)
    second_board = db.Column(db.JSON, nullable=False)
    called_numbers = db.Column(db.JSON, nullable=False, default=list)  # [{number, called_by, called_at}]
    current_turn = db.Column(db.String(8), nullable=False, default=FIRST)
    last_called_number = db.Column(db.Integer, nullable=True)
    last_called_by = db.Column(db.Integer, nullable=True)
    first_completed_lines = db.Column(db.Integer, nullable=False, default=0)
    second_completed_lines = db.Column(db.Integer, nullable=False, default=0)
    ready_user_ids = db.Column(db.JSON, nullable=False, default=list)

    invitation_accepted = db.Column(db.Boolean, nullable=False, default=False)
    # Epoch seconds
    invitation_expires_at = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.Float, nullable=False)
    started_at = db.Column(db.Float, nullable=True)
    completed_at = db.Column(db.Float, nullable=True)

    version = db.Column(db.Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    @property
    def room(self) -> str:
        return f"game:{self.room_code}"

    @property
    def participant_ids(self):
        return (self.first_user_id, self.second_user_id)

    @property
    def is_solo(self) -> bool:
        return self.first_user_id == self.second_user_id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL

    @property
    def called(self):
        return [c['number'] for c in (self.called_numbers or [])]

    @property
    def duration_seconds(self):
        if self.started_at is None or self.completed_at is None:
            return None
        return self.completed_at - self.started_at

    @property
    def current_turn_user_id(self):
        return self.first_user_id if self.current_turn == FIRST else self.second_user_id

    def is_participant(self, user_id) -> bool:
        return user_id is not None and int(user_id) in self.participant_ids

    def roles_of(self, user_id):
        """Roles the user holds; both for a solo game."""
        roles = []
        if int(user_id) == self.first_user_id:
            roles.append(FIRST)
        if int(user_id) == self.second_user_id:
            roles.append(SECOND)
        return roles

    def board_for(self, role: str) -> Board:
        grid = self.first_board if role == FIRST else self.second_board
        return Board.from_json(grid)

    def board_for_user(self, user_id) -> Board:
        roles = self.roles_of(user_id)
        return self.board_for(roles[0]) if roles else None

    def to_dict(self, viewer_id=None):
        def _user(u, uid):
            return {'id': uid, 'username': u.username if u else None}

        data = {
            'id': self.id,
            'room_code': self.room_code,
            'game_type': self.game_type,
            'status': self.status,
            'end_reason': self.end_reason,
            'first': _user(self.first_user, self.first_user_id),
            'second': _user(self.second_user, self.second_user_id),
            'winner': _user(self.winner, self.winner_id) if self.winner_id else None,
            'settings': {
                'win_pattern': self.win_pattern,
                'required_lines': self.required_lines,
                'max_number': self.max_number,
                'shared_board': self.shared_board,
            },
            'called_numbers': list(self.called_numbers or []),
            'current_turn': self.current_turn,
            'current_turn_user_id': self.current_turn_user_id,
            'last_called_number': self.last_called_number,
            'last_called_by': self.last_called_by,
            'completed_lines': {FIRST: self.first_completed_lines, SECOND: self.second_completed_lines},
            'ready_user_ids': list(self.ready_user_ids or []),
            'invitation_accepted': self.invitation_accepted,
            'invitation_expires_at': self.invitation_expires_at,
            'created_at': self.created_at,
            'started_at': self.started_at,
            'completed_at': self.completed_at,
            'duration_seconds': self.duration_seconds,
        }
        if self.shared_board:
            data['board'] = self.first_board
        elif viewer_id is not None and self.is_participant(viewer_id):
            roles = self.roles_of(viewer_id)
            data['board'] = self.first_board if roles[0] == FIRST else self.second_board
        return data
