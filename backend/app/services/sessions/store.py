from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app import db
from app.models import (
    GameSession,
    Participant,
    User,
    LIVE_SLOT,
    LIVE_STATUSES,
    SESSION_ACTIVE,
    SESSION_FINISHED,
    SESSION_WAITING,
)
from .errors import SessionFull, SessionNotActive, StoreConflict


def _guarded(stmt):
    # Bulk statements here never need the identity map kept in sync: every
    # caller commits (expiring loaded rows) or re-reads right after.
    return stmt.execution_options(synchronize_session=False)


def lock_session(session_id: int, statuses):
    """SELECT ... FOR UPDATE on the session row, only while it is in one of `statuses`.

    Writers that touch participant rows take this lock first, which orders
    them against the status-guarded UPDATE in finalize. SQLite has no row
    locks and serializes writers on its own, so the clause is left out there.
    """
    return (
        select(GameSession.id, GameSession.started_at, GameSession.session_duration)
        .where(GameSession.id == session_id, GameSession.status.in_(statuses))
        .with_for_update()
    )


class SessionStore:
    """Transactional access to sessions and participants.

    Every mutating method is one transaction and either commits or rolls back
    before returning. Races are settled by the database: a unique live slot
    for "one live session", conditional UPDATEs for capacity and status.
    """

    # ---- reads ----

    def get_session(self, session_id: int) -> Optional[GameSession]:
        return db.session.get(GameSession, session_id)

    def get_live_session(self) -> Optional[GameSession]:
        return GameSession.query.filter(GameSession.status.in_(LIVE_STATUSES)).first()

    def latest_finished_session(self) -> Optional[GameSession]:
        return (
            GameSession.query.filter_by(status=SESSION_FINISHED)
            .order_by(GameSession.ended_at.desc(), GameSession.id.desc())
            .first()
        )

    def active_sessions(self) -> List[GameSession]:
        return GameSession.query.filter_by(status=SESSION_ACTIVE).all()

    def find_participant(self, session_id: int, user_id: int) -> Optional[Participant]:
        return Participant.query.filter_by(session_id=session_id, user_id=user_id).first()

    def find_live_participation(self, user_id: int) -> Optional[Participant]:
        return (
            Participant.query.join(GameSession)
            .filter(Participant.user_id == user_id, GameSession.status.in_(LIVE_STATUSES))
            .first()
        )

    def latest_participation(self, user_id: int) -> Optional[Participant]:
        return (
            Participant.query.filter_by(user_id=user_id)
            .order_by(Participant.joined_at.desc(), Participant.id.desc())
            .first()
        )

    def participants_with_users(self, session_id: int) -> List[Tuple[Participant, User]]:
        rows = db.session.execute(
            select(Participant, User)
            .join(User, Participant.user_id == User.id)
            .where(Participant.session_id == session_id)
            .order_by(Participant.joined_at, Participant.id)
        )
        return [(p, u) for p, u in rows]

    # ---- writes ----

    def create_live_session(self, max_players: int, duration: int, now) -> Tuple[GameSession, bool]:
        """Insert a waiting session unless a live one exists.

        Returns ``(session, created)``. Losing the insert race to a concurrent
        creator is not an error: the winner's row is returned.
        """
        session = GameSession(
            status=SESSION_WAITING,
            live_slot=LIVE_SLOT,
            max_players=max_players,
            current_players=0,
            session_duration=duration,
            session_date=now.date(),
            created_at=now,
        )
        db.session.add(session)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = self.get_live_session()
            if existing is None:
                raise StoreConflict('Live session vanished during creation')
            return existing, False
        return session, True

    def add_participant(self, session_id: int, user_id: int, now) -> Tuple[Participant, bool]:
        """Reserve a seat and insert the participant in one transaction.

        Returns ``(participant, inserted)``; an existing row for the same user
        is returned with ``inserted=False`` and no seat is consumed.
        """
        result = db.session.execute(_guarded(
            update(GameSession)
            .where(
                GameSession.id == session_id,
                GameSession.status.in_(LIVE_STATUSES),
                GameSession.current_players < GameSession.max_players,
            )
            .values(current_players=GameSession.current_players + 1)
        ))
        if result.rowcount == 0:
            db.session.rollback()
            session = self.get_session(session_id)
            if session is None or not session.is_live:
                raise SessionNotActive()
            raise SessionFull()

        seats_taken = db.session.execute(
            select(GameSession.current_players).where(GameSession.id == session_id)
        ).scalar_one()
        participant = Participant(
            session_id=session_id,
            user_id=user_id,
            is_starter=(seats_taken == 1),
            is_winner=False,
            joined_at=now,
        )
        db.session.add(participant)
        try:
            db.session.commit()
        except IntegrityError:
            # Same user joined concurrently; the rollback also returns the seat
            db.session.rollback()
            existing = self.find_participant(session_id, user_id)
            if existing is None:
                raise StoreConflict('Participant insert conflicted')
            return existing, False
        return participant, True

    def remove_participant(self, participant: Participant) -> bool:
        """Delete a participant of a live session and release its seat."""
        session_id = participant.session_id
        # Session row first, then participant: the same lock order as finalize
        if db.session.execute(lock_session(session_id, LIVE_STATUSES)).first() is None:
            db.session.rollback()
            return False
        result = db.session.execute(_guarded(
            delete(Participant).where(
                Participant.id == participant.id,
                Participant.session_id == session_id,
            )
        ))
        if result.rowcount == 0:
            db.session.rollback()
            return False
        db.session.execute(_guarded(
            update(GameSession)
            .where(GameSession.id == session_id, GameSession.current_players > 0)
            .values(current_players=GameSession.current_players - 1)
        ))
        db.session.commit()
        db.session.expunge(participant)
        return True

    def set_chosen_number(self, session_id: int, participant_id: int, number: int, now) -> bool:
        """Last write wins; only accepted while the session is active and before its deadline.

        The session row stays locked until commit, so a concurrent finalize
        either sees this write or runs entirely before it.
        """
        row = db.session.execute(lock_session(session_id, (SESSION_ACTIVE,))).first()
        if row is None or row.started_at is None:
            db.session.rollback()
            return False
        if now >= row.started_at + timedelta(seconds=row.session_duration):
            db.session.rollback()
            return False
        result = db.session.execute(_guarded(
            update(Participant)
            .where(Participant.id == participant_id, Participant.session_id == session_id)
            .values(chosen_number=number)
        ))
        if result.rowcount == 0:
            db.session.rollback()
            return False
        db.session.commit()
        return True

    def activate(self, session_id: int, now) -> bool:
        """waiting -> active; starts the session clock. Only one caller wins."""
        result = db.session.execute(_guarded(
            update(GameSession)
            .where(GameSession.id == session_id, GameSession.status == SESSION_WAITING)
            .values(status=SESSION_ACTIVE, started_at=now)
        ))
        if result.rowcount == 0:
            db.session.rollback()
            return False
        db.session.commit()
        return True

    def finalize(self, session_id: int, winning_number: int, now, from_statuses=(SESSION_ACTIVE,)) -> bool:
        """Finish a session and apply results atomically.

        The status-guarded UPDATE decides the single winner of a finalize race.
        Winner flags and user win/loss counters are written in the same
        transaction, so a failure leaves the session untouched for a retry.
        Returns False when another caller already finished the session.
        """
        try:
            result = db.session.execute(_guarded(
                update(GameSession)
                .where(GameSession.id == session_id, GameSession.status.in_(from_statuses))
                .values(
                    status=SESSION_FINISHED,
                    winning_number=winning_number,
                    ended_at=now,
                    live_slot=None,
                )
            ))
            if result.rowcount == 0:
                db.session.rollback()
                return False

            participants = Participant.query.filter_by(session_id=session_id).with_for_update().all()
            winner_ids = []
            loser_ids = []
            for p in participants:
                p.is_winner = p.chosen_number == winning_number
                (winner_ids if p.is_winner else loser_ids).append(p.user_id)
            if winner_ids:
                db.session.execute(_guarded(
                    update(User).where(User.id.in_(winner_ids)).values(total_wins=User.total_wins + 1)
                ))
            if loser_ids:
                db.session.execute(_guarded(
                    update(User).where(User.id.in_(loser_ids)).values(total_losses=User.total_losses + 1)
                ))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return True
