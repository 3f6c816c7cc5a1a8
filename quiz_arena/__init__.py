import json
import logging

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8081",
    "http://127.0.0.1:8081",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

QUESTION_FIELDS = ('question_text', 'option_a', 'option_b', 'option_c', 'option_d', 'correct_answer')


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(getattr(logging, str(flask_app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from quiz_arena.main import main
    flask_app.register_blueprint(main)

    from quiz_arena.api.quiz import quiz
    flask_app.register_blueprint(quiz, url_prefix='/api/quiz')

    # The arena is the registry of queues and live sessions; handlers reach it
    # through app.extensions
    from quiz_arena.realtime import SocketTransport
    from quiz_arena.services.arena import Arena
    from quiz_arena.services.timers import BackgroundScheduler
    namespace = flask_app.config.get('SOCKETIO_NAMESPACE', '/ws')
    arena = Arena(flask_app, SocketTransport(socketio, namespace), BackgroundScheduler(socketio))
    flask_app.extensions['arena'] = arena

    from quiz_arena.socketio_events import register_socketio_handlers
    register_socketio_handlers(namespace)

    from quiz_arena.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users
            users = ['testuser1', 'testuser2', 'testuser3']
            for u in users:
                user = User(username=u, rating=flask_app.config.get('DEFAULT_RATING', 1200))
                user.set_password('password')
                db.session.add(user)

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('import-questions')
    @click.argument('path', type=click.Path(exists=True, dir_okay=False))
    @click.option('--topic', default=None, help='Topic for entries that do not name one.')
    @click.option('--difficulty', default=None)
    def import_questions_command(path, topic, difficulty):
        """Loads a JSON array of multiple-choice questions."""
        from quiz_arena.models import QuizQuestion
        with open(path, encoding='utf-8') as fh:
            entries = json.load(fh)
        added = 0
        with flask_app.app_context():
            for entry in entries:
                entry_topic = entry.get('topic') or topic
                if not entry_topic or not all(entry.get(f) for f in QUESTION_FIELDS):
                    click.echo(f"Skipping incomplete question: {str(entry)[:60]}")
                    continue
                answer = str(entry['correct_answer']).strip().upper()
                if answer not in ('A', 'B', 'C', 'D'):
                    click.echo(f"Skipping question with bad answer {answer!r}: {entry['question_text'][:40]}")
                    continue
                db.session.add(QuizQuestion(
                    topic=entry_topic,
                    difficulty=entry.get('difficulty') or difficulty,
                    question_text=entry['question_text'],
                    option_a=entry['option_a'],
                    option_b=entry['option_b'],
                    option_c=entry['option_c'],
                    option_d=entry['option_d'],
                    correct_answer=answer,
                ))
                added += 1
            db.session.commit()
        click.echo(f"Imported {added} questions.")

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(import_questions_command)

    return flask_app


def start_server(flask_app, **kwargs):
    """Seed the matchmaking queues, then serve Socket.IO.

    CLI commands build the app without calling this, so they work against a
    database that has no tables yet.
    """
    # Queues must exist before the first find_match; a failure here stops startup
    if flask_app.config.get('LOAD_TOPICS_ON_STARTUP'):
        with flask_app.app_context():
            flask_app.extensions['arena'].load_topics()
    socketio.run(flask_app, **kwargs)
