from datetime import timedelta

from app import db
from flask_login import UserMixin

SESSION_WAITING = 'waiting'
SESSION_ACTIVE = 'active'
SESSION_FINISHED = 'finished'
LIVE_STATUSES = (SESSION_WAITING, SESSION_ACTIVE)

# Value of GameSession.live_slot while a session is waiting or active. The
# unique constraint on that column allows a single live session; finished
# sessions clear it to NULL.
LIVE_SLOT = 1


def iso(dt):
    """Serialize a naive UTC datetime for clients."""
    if dt is None:
        return None
    return dt.isoformat() + 'Z'


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(20), unique=True, nullable=False, index=True)
    total_wins = db.Column(db.Integer, default=0, nullable=False)
    total_losses = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False)
    tokens = db.relationship('AuthToken', back_populates='user', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'total_wins': self.total_wins,
            'total_losses': self.total_losses,
            'created_at': iso(self.created_at),
        }


class AuthToken(db.Model):
    __tablename__ = 'auth_token'
    id = db.Column(db.Integer, primary_key=True)
    # SHA-256 hex digest; the raw bearer token is never stored
    token_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False)
    user = db.relationship('User', back_populates='tokens')


class GameSession(db.Model):
    __tablename__ = 'game_sessions'
    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(16), nullable=False, default=SESSION_WAITING, index=True)
    live_slot = db.Column(db.Integer, unique=True, nullable=True)
    max_players = db.Column(db.Integer, nullable=False)
    current_players = db.Column(db.Integer, nullable=False, default=0)
    session_duration = db.Column(db.Integer, nullable=False)
    session_date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False)
    started_at = db.Column(db.DateTime, nullable=True)
    ended_at = db.Column(db.DateTime, nullable=True, index=True)
    winning_number = db.Column(db.Integer, nullable=True)
    participants = db.relationship('Participant', back_populates='session', lazy='dynamic')

    @property
    def is_live(self):
        return self.status in LIVE_STATUSES

    @property
    def deadline(self):
        if self.started_at is None:
            return None
        return self.started_at + timedelta(seconds=self.session_duration)

    def is_overdue(self, now):
        return self.status == SESSION_ACTIVE and self.deadline is not None and now >= self.deadline

    def time_remaining(self, now):
        if self.status == SESSION_WAITING:
            return self.session_duration
        if self.status != SESSION_ACTIVE or self.deadline is None:
            return 0
        return max(0, int((self.deadline - now).total_seconds()))

    def to_dict(self):
        return {
            'id': self.id,
            'status': self.status,
            'session_date': self.session_date.isoformat() if self.session_date else None,
            'max_players': self.max_players,
            'current_players': self.current_players,
            'session_duration': self.session_duration,
            'winning_number': self.winning_number,
            'created_at': iso(self.created_at),
            'started_at': iso(self.started_at),
            'ended_at': iso(self.ended_at),
        }


class Participant(db.Model):
    __tablename__ = 'session_participants'
    __table_args__ = (
        db.UniqueConstraint('session_id', 'user_id', name='uq_participant_session_user'),
    )
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_sessions.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    chosen_number = db.Column(db.Integer, nullable=True)
    is_winner = db.Column(db.Boolean, default=False, nullable=False)
    is_starter = db.Column(db.Boolean, default=False, nullable=False)
    joined_at = db.Column(db.DateTime, nullable=False)
    session = db.relationship('GameSession', back_populates='participants')
    user = db.relationship('User')

    def to_dict(self):
        return {
            'id': self.id,
            'session_id': self.session_id,
            'user_id': self.user_id,
            'chosen_number': self.chosen_number,
            'is_winner': self.is_winner,
            'is_starter': self.is_starter,
            'joined_at': iso(self.joined_at),
        }
