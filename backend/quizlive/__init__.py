from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config
from quizlive.errors import QuizError
from quizlive.services.sessions.coordinator import SessionCoordinator

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)
coordinator = SessionCoordinator()

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from quizlive.main import main
    flask_app.register_blueprint(main, url_prefix='/api/auth')

    from quizlive.api.quizzes import quizzes
    flask_app.register_blueprint(quizzes, url_prefix='/api/quiz')

    # The gateway delivers coordinator events; the store is the SQL-backed quiz store
    from quizlive.services.quizzes.store import QuizStore
    from quizlive.socketio_events import gateway, register_socketio_handlers
    coordinator.init_app(flask_app, store=QuizStore(), publisher=gateway.publish, socketio=socketio)
    register_socketio_handlers()

    @flask_app.errorhandler(QuizError)
    def handle_quiz_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    from quizlive.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'success': False, 'error': 'Login required'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users
            users = ['testuser1', 'testuser2', 'testuser3']
            for u in users:
                user = User(username=u, email=f'{u}@example.com')
                user.set_password('password')
                db.session.add(user)

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
