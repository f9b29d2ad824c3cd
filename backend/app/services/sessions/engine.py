import random
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from flask import current_app

from app.models import (
    GameSession,
    Participant,
    User,
    LIVE_STATUSES,
    SESSION_ACTIVE,
    SESSION_FINISHED,
    SESSION_WAITING,
)
from .errors import (
    AlreadyActive,
    InvalidNumber,
    NotAParticipant,
    SessionNotActive,
    StoreConflict,
)
from .notifier import DELETE, INSERT, UPDATE

NUMBER_MIN = 1
NUMBER_MAX = 9
JOIN_ATTEMPTS = 3

SESSIONS_TABLE = GameSession.__tablename__
PARTICIPANTS_TABLE = Participant.__tablename__


def get_engine() -> 'SessionEngine':
    return current_app.extensions['session_engine']


@dataclass
class JoinResult:
    session: GameSession
    participant: Participant
    created_session: bool = False


@dataclass
class FinalizeResult:
    session: GameSession
    participants: List[Tuple[Participant, User]] = field(default_factory=list)
    finalized_now: bool = False

    @property
    def winning_number(self):
        return self.session.winning_number

    @property
    def winners(self) -> List[Tuple[Participant, User]]:
        return [(p, u) for p, u in self.participants if p.is_winner]


def _winner_entry(participant, user):
    return {
        'user_id': user.id,
        'username': user.username,
        'chosen_number': participant.chosen_number,
    }


def _player_entry(participant, user, reveal=False):
    entry = {
        'id': participant.id,
        'user_id': user.id,
        'username': user.username,
        'is_starter': participant.is_starter,
        'hasSelectedNumber': participant.chosen_number is not None,
    }
    if reveal:
        entry['chosen_number'] = participant.chosen_number
        entry['is_winner'] = participant.is_winner
    return entry


class SessionEngine:
    """Lifecycle of the single live session: join, select, leave, finalize.

    The engine holds no session state of its own; every decision is re-read
    from the store, and every race is settled by the store's guarded writes.
    Any entry point that notices the live session past its deadline
    finalizes it before doing anything else.
    """

    def __init__(self, store, notifier, clock, config, rng=None):
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.config = config
        self.rng = rng or random.Random()
        self.scheduler = None

    # ---- operations ----

    def join(self, user) -> JoinResult:
        for _ in range(JOIN_ATTEMPTS):
            session = self._live_session()
            created = False
            if session is None:
                try:
                    session, created = self.store.create_live_session(
                        int(self.config['MAX_PLAYERS']),
                        int(self.config['SESSION_DURATION_SEC']),
                        self.clock.now(),
                    )
                except StoreConflict:
                    continue
                if created:
                    current_app.logger.info(
                        f"[session-create] session={session.id} max_players={session.max_players} duration={session.session_duration}s"
                    )
                    self.notifier.publish(SESSIONS_TABLE, INSERT, new=session.to_dict())

            existing = self.store.find_participant(session.id, user.id)
            if existing is not None:
                return JoinResult(session, existing, created)

            elsewhere = self.store.find_live_participation(user.id)
            if elsewhere is not None and elsewhere.session_id != session.id:
                raise AlreadyActive()

            try:
                participant, inserted = self.store.add_participant(session.id, user.id, self.clock.now())
            except (SessionNotActive, StoreConflict):
                # Finished or replaced while attaching; retry against the new state
                continue

            if inserted:
                current_app.logger.info(
                    f"[session-join] session={session.id} user={user.id} starter={participant.is_starter}"
                )
                self.notifier.publish(PARTICIPANTS_TABLE, INSERT, new=participant.to_dict())
                self._after_seat_taken(session.id)
            return JoinResult(self.store.get_session(session.id), participant, created)

        raise SessionNotActive('Could not join a session, please try again')

    def select_number(self, user, number) -> Participant:
        number = self._validate_number(number)
        session = self._live_session()
        if session is None or session.status != SESSION_ACTIVE:
            raise SessionNotActive()
        participant = self.store.find_participant(session.id, user.id)
        if participant is None:
            raise NotAParticipant()
        if not self.store.set_chosen_number(session.id, participant.id, number, self.clock.now()):
            raise SessionNotActive()

        participant = self.store.find_participant(session.id, user.id)
        current_app.logger.info(f"[number-select] session={session.id} user={user.id} number={number}")
        self.notifier.publish(PARTICIPANTS_TABLE, UPDATE, new=participant.to_dict())
        return participant

    def leave(self, user) -> GameSession:
        session = self._live_session()
        participant = self.store.find_participant(session.id, user.id) if session else None
        if participant is None:
            raise NotAParticipant()

        old = participant.to_dict()
        if not self.store.remove_participant(participant):
            raise SessionNotActive()

        session = self.store.get_session(session.id)
        current_app.logger.info(
            f"[session-leave] session={session.id} user={user.id} remaining={session.current_players}"
        )
        self.notifier.publish(PARTICIPANTS_TABLE, DELETE, old=old)
        self.notifier.publish(SESSIONS_TABLE, UPDATE, new=session.to_dict())

        if (
            self.config.get('END_SESSION_WHEN_EMPTY')
            and session.status == SESSION_ACTIVE
            and session.current_players == 0
        ):
            current_app.logger.info(f"[session-empty] session={session.id} finalizing early")
            self.finalize(session.id)
        return session

    def finalize(self, session_id: int, force: bool = False) -> FinalizeResult:
        """Finish a session exactly once and return its results.

        Safe to call any number of times from any process: the store's
        status-guarded update lets one caller draw and persist the winning
        number; everyone else re-reads that result. ``force`` also accepts a
        session that is still waiting (administrative reset).
        """
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotActive('Session not found')

        finalized_now = False
        if session.status != SESSION_FINISHED:
            from_statuses = LIVE_STATUSES if force else (SESSION_ACTIVE,)
            if session.status not in from_statuses:
                raise SessionNotActive('Session has not started yet')
            before = session.to_dict()
            winning_number = self.rng.randint(NUMBER_MIN, NUMBER_MAX)
            finalized_now = self.store.finalize(session_id, winning_number, self.clock.now(), from_statuses)
            session = self.store.get_session(session_id)
            if not finalized_now:
                current_app.logger.info(f"[finalize-lost-race] session={session_id} status={session.status}")
                if session.status != SESSION_FINISHED:
                    raise StoreConflict('Session changed during finalization')

        result = FinalizeResult(session, self.store.participants_with_users(session.id), finalized_now)
        if finalized_now:
            current_app.logger.info(
                f"[session-finalize] session={session.id} winning_number={session.winning_number} "
                f"winners={len(result.winners)} participants={len(result.participants)}"
            )
            self.notifier.publish(SESSIONS_TABLE, UPDATE, new=session.to_dict(), old=before)
            for participant, _ in result.participants:
                self.notifier.publish(PARTICIPANTS_TABLE, UPDATE, new=participant.to_dict())
        return result

    def reset(self) -> Optional[FinalizeResult]:
        """Administrative reset: force-finish whatever session is live."""
        session = self.store.get_live_session()
        if session is None:
            return None
        current_app.logger.info(f"[session-reset] session={session.id} status={session.status}")
        return self.finalize(session.id, force=True)

    # ---- read models ----

    def current_session_state(self) -> dict:
        session = self._live_session()
        now = self.clock.now()
        if session is not None:
            state = {
                'session': session.to_dict(),
                'timeRemaining': session.time_remaining(now),
                'playersList': [_player_entry(p, u) for p, u in self.store.participants_with_users(session.id)],
            }
            if session.status == SESSION_WAITING:
                state['waitingForPlayers'] = True
            return state

        latest = self.store.latest_finished_session()
        window = int(self.config.get('RESULTS_DISPLAY_SEC', 30))
        if latest is not None and latest.ended_at is not None and (now - latest.ended_at).total_seconds() <= window:
            result = FinalizeResult(latest, self.store.participants_with_users(latest.id))
            return {
                'showResults': True,
                'winners': [_winner_entry(p, u) for p, u in result.winners],
                'totalPlayers': len(result.participants),
                'session': latest.to_dict(),
            }
        return {'waitingForPlayers': True}

    def my_session_state(self, user) -> dict:
        self._live_session()
        participant = self.store.latest_participation(user.id)
        if participant is None:
            return {'session': None, 'participant': None, 'playersInSession': []}

        session = participant.session
        finished = session.status == SESSION_FINISHED
        rows = self.store.participants_with_users(session.id)
        state = {
            'session': session.to_dict(),
            'participant': participant.to_dict(),
            'playersInSession': [_player_entry(p, u, reveal=finished) for p, u in rows],
            'timeRemaining': session.time_remaining(self.clock.now()),
        }
        if finished:
            state['winningNumber'] = session.winning_number
            state['isWinner'] = participant.is_winner
            state['winners'] = [_winner_entry(p, u) for p, u in rows if p.is_winner]
        return state

    # ---- helpers ----

    def _live_session(self) -> Optional[GameSession]:
        session = self.store.get_live_session()
        if session is not None and session.is_overdue(self.clock.now()):
            current_app.logger.info(f"[finalize-lazy] session={session.id} deadline passed")
            self.finalize(session.id)
            session = self.store.get_live_session()
        return session

    def _after_seat_taken(self, session_id: int) -> None:
        session = self.store.get_session(session_id)
        min_players = max(1, int(self.config.get('MIN_PLAYERS_TO_START', 1)))
        before = session.to_dict()
        if session.status == SESSION_WAITING and session.current_players >= min_players:
            if self.store.activate(session_id, self.clock.now()):
                session = self.store.get_session(session_id)
                current_app.logger.info(f"[session-start] session={session_id} deadline={session.deadline}")
                if self.scheduler is not None:
                    self.scheduler.wake()
        self.notifier.publish(SESSIONS_TABLE, UPDATE, new=session.to_dict(), old=before)

    @staticmethod
    def _validate_number(number) -> int:
        if isinstance(number, bool) or not isinstance(number, int):
            raise InvalidNumber()
        if not NUMBER_MIN <= number <= NUMBER_MAX:
            raise InvalidNumber()
        return number
