from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

# Endpoint names double as URL paths, e.g. POST /functions/v1/game-join-session
API_PREFIX = '/functions/v1'


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Session services: one engine and one scheduler per app
    from app.services.sessions.clock import Clock
    from app.services.sessions.engine import SessionEngine
    from app.services.sessions.notifier import SocketIONotifier
    from app.services.sessions.scheduler import SessionScheduler
    from app.services.sessions.store import SessionStore

    engine = SessionEngine(SessionStore(), SocketIONotifier(socketio), Clock(), flask_app.config)
    scheduler = SessionScheduler(flask_app, engine)
    engine.scheduler = scheduler
    flask_app.extensions['session_engine'] = engine
    flask_app.extensions['session_scheduler'] = scheduler

    # Import and register blueprints here
    from app.main import main
    flask_app.register_blueprint(main, url_prefix=API_PREFIX)

    from app.api.game import game
    flask_app.register_blueprint(game, url_prefix=API_PREFIX)

    from app.services.sessions.errors import AuthRequired, GameError

    @flask_app.errorhandler(GameError)
    def handle_game_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    # Register Socket.IO event handlers
    from app.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    # Bearer tokens instead of cookie sessions
    from app.auth import TokenIssuer, bearer_token
    tokens = TokenIssuer()

    @login_manager.request_loader
    def load_user_from_request(req):
        return tokens.resolve(bearer_token(req))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify(AuthRequired().to_dict()), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from app.auth import get_or_create_user
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users
            now = engine.clock.now()
            for u in ['testuser1', 'testuser2', 'testuser3']:
                get_or_create_user(u, now)
            print('Database has been reset and seeded!')

    @click.command('session-reset')
    def session_reset_command():
        """Force-finishes the live session, drawing its winning number."""
        with flask_app.app_context():
            result = engine.reset()
            if result is None:
                print('No live session.')
            else:
                print(f'Session {result.session.id} finished, winning number {result.winning_number}.')

    @click.command('scheduler-tick')
    def scheduler_tick_command():
        """Finalizes every session whose deadline has passed."""
        with flask_app.app_context():
            finalized = scheduler.tick()
            print(f'Finalized sessions: {finalized}')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(session_reset_command)
    flask_app.cli.add_command(scheduler_tick_command)

    return flask_app
