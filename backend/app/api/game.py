from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from app.services.sessions.engine import get_engine
from app.services.sessions.leaderboard import compute_leaderboard

game = Blueprint('game', __name__)


@game.route('/game-current-session', methods=['GET'])
@login_required
def current_session():
    return jsonify(get_engine().current_session_state())


@game.route('/game-join-session', methods=['POST'])
@login_required
def join_session():
    result = get_engine().join(current_user)
    return jsonify({
        'success': True,
        'session': result.session.to_dict(),
        'participant': result.participant.to_dict(),
    })


@game.route('/game-select-number', methods=['POST'])
@login_required
def select_number():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or 'number' not in data:
        return jsonify({'error': 'number is required'}), 400
    participant = get_engine().select_number(current_user, data['number'])
    return jsonify({
        'message': f'Number {participant.chosen_number} selected successfully!',
        'participant': participant.to_dict(),
    })


@game.route('/game-leave-session', methods=['POST'])
@login_required
def leave_session():
    get_engine().leave(current_user)
    return jsonify({'success': True})


@game.route('/game-my-session', methods=['GET'])
@login_required
def my_session():
    return jsonify(get_engine().my_session_state(current_user))


@game.route('/game-leaderboard', methods=['GET'])
@login_required
def leaderboard():
    engine = get_engine()
    rows = compute_leaderboard(
        request.args.get('filter', 'all'),
        engine.clock.now(),
        limit=int(current_app.config.get('LEADERBOARD_LIMIT', 50)),
    )
    return jsonify({'leaderboard': rows})
