import threading

from app import db
from app.auth import get_or_create_user
from app.models import GameSession, Participant, User
from app.services.sessions.errors import SessionFull


def _players(app, count):
    engine = app.extensions['session_engine']
    with app.app_context():
        return [get_or_create_user(f'player{i}', engine.clock.now())[0].id for i in range(count)]


def _run_together(app, fn, args):
    """Release one thread per arg into fn at the same moment; returns results or raised errors."""
    args = list(args)
    barrier = threading.Barrier(len(args), timeout=30)
    outcomes = [None] * len(args)

    def worker(i, arg):
        with app.app_context():
            barrier.wait()
            try:
                outcomes[i] = fn(arg)
            except Exception as exc:
                outcomes[i] = exc

    threads = [threading.Thread(target=worker, args=(i, arg)) for i, arg in enumerate(args)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    assert not any(t.is_alive() for t in threads)
    return outcomes


def test_concurrent_joins_share_one_session_within_capacity(threaded_app):
    engine = threaded_app.extensions['session_engine']
    user_ids = _players(threaded_app, 8)

    def join(user_id):
        return engine.join(db.session.get(User, user_id)).participant.user_id

    outcomes = _run_together(threaded_app, join, user_ids)

    joined = [o for o in outcomes if isinstance(o, int)]
    refused = [o for o in outcomes if isinstance(o, SessionFull)]
    assert len(joined) == 3 and len(refused) == 5, outcomes
    with threaded_app.app_context():
        assert GameSession.query.count() == 1
        session = GameSession.query.one()
        assert session.current_players == session.max_players == 3
        assert Participant.query.count() == 3
        assert {p.user_id for p in session.participants} == set(joined)
        assert Participant.query.filter_by(is_starter=True).count() == 1


def test_concurrent_finalize_applies_results_once(threaded_app):
    engine = threaded_app.extensions['session_engine']
    user_ids = _players(threaded_app, 3)
    with threaded_app.app_context():
        for user_id in user_ids:
            engine.join(db.session.get(User, user_id))
        engine.select_number(db.session.get(User, user_ids[0]), 7)
        session_id = engine.store.get_live_session().id
    engine.clock.advance(60)

    outcomes = _run_together(threaded_app, lambda _: engine.finalize(session_id).finalized_now, range(6))

    assert outcomes.count(True) == 1 and outcomes.count(False) == 5, outcomes
    with threaded_app.app_context():
        users = {u.id: u for u in User.query.all()}
        assert users[user_ids[0]].total_wins == 1
        assert sum(u.total_wins + u.total_losses for u in users.values()) == 3
        session = db.session.get(GameSession, session_id)
        assert session.winning_number == 7
        assert Participant.query.filter_by(is_winner=True).count() == 1
