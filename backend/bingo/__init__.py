from flask import Flask
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
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(
        flask_app,
        cors_allowed_origins=allowed_origins,
        message_queue=flask_app.config.get('SOCKETIO_MESSAGE_QUEUE'),
    )

    # Core services are module-level singletons bound to the current app
    from bingo.services.game.store import store
    from bingo.services.game.narration import narrator
    store.init_app(flask_app)
    narrator.init_app(flask_app)

    from bingo.main import main
    flask_app.register_blueprint(main)

    from bingo.api.game import game
    flask_app.register_blueprint(game, url_prefix='/api/game')

    from bingo.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # The lease holder starts drawing as soon as it sees an active game
    from bingo.services.game.scheduler import register_phase_watcher
    register_phase_watcher(flask_app)

    # Flask-Login user loader: accounts live in the shared game state
    from bingo.models import Account

    @login_manager.user_loader
    def load_user(user_id):
        return Account.from_state(store.get(), user_id, flask_app.config.get('CALLER_NAME'))

    @click.command('state-reset')
    def state_reset_command():
        """Drops, recreates, and seeds the shared game state."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            store.init_app(flask_app)
            state = store.get()
            print(f"Game state has been reset and seeded with {len(state['users'])} account(s)!")

    flask_app.cli.add_command(state_reset_command)

    return flask_app
