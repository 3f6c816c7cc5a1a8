from quiz_arena import db
from quiz_arena.models import User


def test_register_login_and_check(client):
    res = client.post('/register', json={'username': 'alice', 'password': 'secret'})
    assert res.status_code == 201
    user = res.get_json()['user']
    assert user['username'] == 'alice'
    assert user['rating'] == 1200

    res = client.get('/check_login')
    assert res.status_code == 200
    assert res.get_json()['user']['id'] == user['id']

    assert client.post('/logout').status_code == 200
    assert client.get('/check_login').status_code == 401

    res = client.post('/login', json={'username': 'alice', 'password': 'wrong'})
    assert res.status_code == 401
    res = client.post('/login', json={'username': 'alice', 'password': 'secret'})
    assert res.status_code == 200
    assert res.get_json()['success'] is True


def test_register_rejects_duplicates_and_missing_fields(client):
    assert client.post('/register', json={'username': 'bob'}).status_code == 400
    assert client.post('/register', json={'username': 'bob', 'password': 'x'}).status_code == 201
    res = client.post('/register', json={'username': 'bob', 'password': 'y'})
    assert res.status_code == 400
    assert res.get_json()['message'] == 'Username already exists'


def test_topics_lists_seeded_queues(client, questions):
    res = client.get('/api/quiz/topics')
    assert res.status_code == 200
    assert res.get_json() == ['Arrays', 'Graphs']


def test_topics_empty_before_loading(client, arena):
    assert client.get('/api/quiz/topics').get_json() == []


def test_leaderboard_orders_by_rating(client, users):
    alice, bob, carol, dave = users
    bob.rating = 1300
    carol.rating = 1100
    db.session.commit()

    res = client.get('/api/quiz/leaderboard?limit=3')
    assert res.status_code == 200
    names = [u['username'] for u in res.get_json()]
    assert names == ['bob', 'alice', 'dave']

    assert client.get('/api/quiz/leaderboard?limit=abc').status_code == 400


def test_user_rating_defaults(flask_app):
    user = User(username='zed')
    user.set_password('pw')
    db.session.add(user)
    db.session.commit()
    assert user.rating == 1200
    assert user.check_password('pw')
    assert not user.check_password('nope')


def test_import_questions_command(flask_app, tmp_path):
    from quiz_arena.models import QuizQuestion
    path = tmp_path / 'questions.json'
    path.write_text(
        '[{"question_text": "Push onto a stack?", "option_a": "push", "option_b": "pop",'
        ' "option_c": "peek", "option_d": "shift", "correct_answer": "a"},'
        ' {"question_text": "Missing options"}]',
        encoding='utf-8',
    )
    runner = flask_app.test_cli_runner()
    result = runner.invoke(args=['import-questions', str(path), '--topic', 'Stack and Queues'])
    assert result.exit_code == 0, result.output
    assert 'Imported 1 questions.' in result.output

    stored = QuizQuestion.query.all()
    assert len(stored) == 1
    assert stored[0].topic == 'Stack and Queues'
    assert stored[0].correct_answer == 'A'
    assert flask_app.extensions['arena'].load_topics() == ['Stack and Queues']


def test_db_reset_runs_against_empty_database():
    from conftest import TestConfig
    from quiz_arena import create_app

    class LoadingConfig(TestConfig):
        LOAD_TOPICS_ON_STARTUP = True

    # No create_all: the database has no tables at all
    application = create_app(LoadingConfig)
    result = application.test_cli_runner().invoke(args=['db-reset'])
    assert result.exit_code == 0, result.output
    with application.app_context():
        assert sorted(u.username for u in User.query.all()) == ['testuser1', 'testuser2', 'testuser3']
        db.session.remove()
        db.drop_all()


def test_start_server_seeds_queues_before_serving(flask_app, monkeypatch):
    from conftest import _add_questions
    from quiz_arena import socketio, start_server

    _add_questions('Arrays', 2)
    flask_app.config['LOAD_TOPICS_ON_STARTUP'] = True
    served = []
    monkeypatch.setattr(socketio, 'run', lambda app, **kwargs: served.append(
        (app.extensions['arena'].queues.topics, kwargs)))

    start_server(flask_app, debug=False)
    assert served == [(['Arrays'], {'debug': False})]


def test_start_server_can_skip_seeding(flask_app, monkeypatch):
    from quiz_arena import socketio, start_server

    served = []
    monkeypatch.setattr(socketio, 'run', lambda app, **kwargs: served.append(app.extensions['arena'].queues.topics))
    start_server(flask_app)
    assert served == [[]]


def test_rating_history_endpoint(client, arena, users):
    from quiz_arena.services.rating import apply_match_result
    alice, bob = users[:2]
    assert client.get(f'/api/quiz/users/{alice.id}/rating-history').get_json()['history'] == []

    apply_match_result(arena.rating_store, alice.id, bob.id, winner_id=alice.id)
    apply_match_result(arena.rating_store, alice.id, bob.id, winner_id=bob.id)

    res = client.get(f'/api/quiz/users/{alice.id}/rating-history')
    assert res.status_code == 200
    body = res.get_json()
    assert body['user']['rating'] == 1199
    assert [h['rating'] for h in body['history']] == [1199, 1216]

    limited = client.get(f'/api/quiz/users/{alice.id}/rating-history?limit=1').get_json()
    assert [h['rating'] for h in limited['history']] == [1199]
    assert client.get(f'/api/quiz/users/{alice.id}/rating-history?limit=x').status_code == 400
    assert client.get('/api/quiz/users/9999/rating-history').status_code == 404
