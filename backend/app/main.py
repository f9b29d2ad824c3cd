from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user

from app.auth import TokenIssuer, bearer_token, get_or_create_user, normalize_username
from app.services.sessions.engine import get_engine

main = Blueprint('main', __name__)
tokens = TokenIssuer()


@main.route('/auth-login', methods=['POST', 'OPTIONS'])
def login():
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200
    data = request.get_json(silent=True) or {}
    username = normalize_username(data.get('username'))
    now = get_engine().clock.now()
    user, created = get_or_create_user(username, now)
    token = tokens.issue(user, now)
    current_app.logger.info(f"[login] user={user.id} created={created}")
    return jsonify({'token': token, 'user': user.to_dict()})


@main.route('/auth-logout', methods=['POST'])
@login_required
def logout():
    tokens.revoke(bearer_token(request))
    current_app.logger.info(f"[logout] user={current_user.id}")
    return jsonify({'success': True})
