import hashlib
import secrets
from typing import Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app import db
from app.models import AuthToken, User
from app.services.sessions.errors import InvalidUsername


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def bearer_token(req) -> Optional[str]:
    header = req.headers.get('Authorization', '')
    scheme, _, value = header.partition(' ')
    if scheme.lower() != 'bearer' or not value.strip():
        return None
    return value.strip()


class TokenIssuer:
    """Opaque bearer tokens bound to a user, valid until revoked on logout."""

    def issue(self, user: User, now) -> str:
        token = secrets.token_urlsafe(32)
        db.session.add(AuthToken(token_hash=hash_token(token), user_id=user.id, created_at=now))
        db.session.commit()
        return token

    def resolve(self, token: Optional[str]) -> Optional[User]:
        if not token:
            return None
        row = AuthToken.query.filter_by(token_hash=hash_token(token)).first()
        return row.user if row else None

    def revoke(self, token: Optional[str]) -> bool:
        if not token:
            return False
        deleted = AuthToken.query.filter_by(token_hash=hash_token(token)).delete()
        db.session.commit()
        return deleted > 0


def normalize_username(raw) -> str:
    username = (raw or '').strip() if isinstance(raw, str) else ''
    lo = int(current_app.config.get('USERNAME_MIN_LENGTH', 3))
    hi = int(current_app.config.get('USERNAME_MAX_LENGTH', 20))
    if not lo <= len(username) <= hi:
        raise InvalidUsername(f'Username must be between {lo} and {hi} characters')
    return username


def get_or_create_user(username: str, now) -> Tuple[User, bool]:
    user = User.query.filter_by(username=username).first()
    if user:
        return user, False
    user = User(username=username, total_wins=0, total_losses=0, created_at=now)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        # Someone registered the same name concurrently
        db.session.rollback()
        return User.query.filter_by(username=username).one(), False
    return user, True
