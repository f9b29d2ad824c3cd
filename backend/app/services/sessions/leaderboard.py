from datetime import timedelta

from sqlalchemy import case, func, select

from app import db
from app.models import GameSession, Participant, User, SESSION_FINISHED
from .errors import InvalidFilter

# Rolling windows measured back from now against the session's end time
WINDOWS = {
    'all': None,
    'daily': timedelta(days=1),
    'weekly': timedelta(days=7),
    'monthly': timedelta(days=30),
}


def _entry(user_id, username, wins, losses):
    return {
        'id': user_id,
        'username': username,
        'total_wins': int(wins or 0),
        'total_losses': int(losses or 0),
    }


def compute_leaderboard(filter_name, now, limit=50):
    """Rank users by wins (desc), then username (asc).

    ``all`` reads the counters kept on the user row; other windows count
    participant outcomes of sessions finished inside the window. Users
    without a decided game in the window are left out.
    """
    filter_name = (filter_name or 'all').lower()
    if filter_name not in WINDOWS:
        raise InvalidFilter(f"Unknown leaderboard filter '{filter_name}'")

    window = WINDOWS[filter_name]
    if window is None:
        stmt = (
            select(User.id, User.username, User.total_wins, User.total_losses)
            .where((User.total_wins + User.total_losses) > 0)
            .order_by(User.total_wins.desc(), User.username.asc())
        )
    else:
        wins = func.sum(case((Participant.is_winner.is_(True), 1), else_=0))
        losses = func.sum(case((Participant.is_winner.is_(True), 0), else_=1))
        stmt = (
            select(User.id, User.username, wins.label('wins'), losses.label('losses'))
            .join(Participant, Participant.user_id == User.id)
            .join(GameSession, Participant.session_id == GameSession.id)
            .where(GameSession.status == SESSION_FINISHED, GameSession.ended_at >= now - window)
            .group_by(User.id, User.username)
            .order_by(wins.desc(), User.username.asc())
        )
    if limit:
        stmt = stmt.limit(limit)
    return [_entry(*row) for row in db.session.execute(stmt)]
