import itertools
import os
import sys
import pytest

# Ensure the project root (containing the `quiz_arena` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from quiz_arena import create_app, db, socketio
from quiz_arena.models import User, QuizQuestion
from quiz_arena.services.timers import TimerHandle

NS = '/ws'


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    LOG_LEVEL = 'DEBUG'
    SOCKETIO_NAMESPACE = NS
    LOAD_TOPICS_ON_STARTUP = False
    ANSWER_DURATION_SEC = 10
    REVEAL_DURATION_SEC = 3
    READY_TIMEOUT_SEC = 0
    QUESTIONS_PER_GAME = 10
    POINTS_PER_CORRECT_ANSWER = 10
    ELO_K_FACTOR = 32
    DEFAULT_RATING = 1200


class ManualScheduler:
    """Scheduler driven by the test: timers fire only on ``advance``."""

    def __init__(self):
        self.now = 0.0
        self._pending = []
        self._seq = itertools.count()

    def call_later(self, delay, callback, *args, label=''):
        handle = TimerHandle(label)
        self._pending.append((self.now + delay, next(self._seq), handle, callback, args))
        return handle

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [t for t in self._pending if t[0] <= target]
            if not due:
                break
            entry = min(due, key=lambda t: (t[0], t[1]))
            self._pending.remove(entry)
            self.now = entry[0]
            if not entry[2].cancelled:
                entry[3](*entry[4])
        self.now = target

    def armed(self):
        return [t[2] for t in self._pending if not t[2].cancelled]


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import quiz_arena.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def scheduler():
    return ManualScheduler()


@pytest.fixture()
def arena(flask_app, scheduler):
    arena = flask_app.extensions['arena']
    arena.scheduler = scheduler
    return arena


def _add_questions(topic, count, answer='A'):
    for i in range(count):
        db.session.add(QuizQuestion(
            topic=topic,
            difficulty='easy',
            question_text=f'{topic} question {i + 1}?',
            option_a='first',
            option_b='second',
            option_c='third',
            option_d='fourth',
            correct_answer=answer,
        ))
    db.session.commit()


@pytest.fixture()
def questions(arena):
    """Twelve 'Arrays' and three 'Graphs' questions, all answered with A."""
    _add_questions('Arrays', 12)
    _add_questions('Graphs', 3)
    arena.load_topics()
    return arena


def _add_user(username, rating=1200):
    user = User(username=username, rating=rating)
    user.set_password('password')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture()
def users(flask_app):
    return [_add_user(name) for name in ('alice', 'bob', 'carol', 'dave')]


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def make(flask_test_client=None):
        test_client = socketio.test_client(flask_app, namespace=NS, flask_test_client=flask_test_client)
        test_client.get_received(NS)  # drop 'connected'
        clients.append(test_client)
        return test_client

    yield make
    for test_client in clients:
        try:
            if test_client.is_connected(NS):
                test_client.disconnect(namespace=NS)
        except Exception:
            pass


def received(test_client):
    """All pending events as (name, payload) pairs."""
    return [(pkt['name'], pkt['args'][0] if pkt['args'] else None) for pkt in test_client.get_received(NS)]


def payloads(events, name):
    return [data for event, data in events if event == name]
