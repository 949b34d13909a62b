from fastapi.testclient import TestClient

from hanzi.main import app
from conftest import SAMPLE_CHARACTERS, register


def _setup(client):
    register(client)
    client.post('/characters', json=SAMPLE_CHARACTERS)
    return {c['character']: c for c in client.get('/characters').json()}


def _start(client, quiz_type, count=5):
    r = client.post('/quiz/sessions')
    assert r.status_code == 201
    sid = r.json()['session_id']
    assert r.json()['stage'] == 'type-selection'
    r = client.post(f'/quiz/sessions/{sid}/type', json={'quizType': quiz_type})
    assert r.json()['stage'] == 'count-selection'
    r = client.post(f'/quiz/sessions/{sid}/count', json={'count': count})
    assert r.json()['stage'] == 'question'
    return sid, r.json()


def test_multiple_choice_session_persists_results(client, quiz_store, scheduler):
    by_glyph = _setup(client)
    sid, view = _start(client, 'multiple-choice')
    assert view['total'] == 5
    for i in range(5):
        question = view['question']
        target = by_glyph[question['character']]
        option_ids = [o['id'] for o in question['options']]
        assert target['id'] in option_ids
        choice = target['id'] if i != 0 else next(o for o in option_ids if o != target['id'])
        view = client.post(f'/quiz/sessions/{sid}/answer', json={'answer': choice}).json()
        assert view['feedback']['correct'] == (i != 0)
        assert view['question']['phase'] == 'feedback'
        assert len(scheduler.pending) == 1
        assert scheduler.pending[0].delay == 2.0
        scheduler.fire_all()
        view = client.get(f'/quiz/sessions/{sid}').json()
    assert view['stage'] == 'complete'
    assert view['summary'] == {'totalQuestions': 5, 'correctAnswers': 4, 'attempts': 5, 'accuracy': 80,
                               'saved': True, 'saveError': None}

    history = client.get('/quiz-history').json()
    assert len(history) == 1
    assert history[0]['quizType'] == 'Multiple Choice'
    assert history[0]['totalQuestions'] == 5
    assert history[0]['correctAnswers'] == 4
    assert history[0]['accuracy'] == 80

    progress = client.get('/progress').json()
    assert sum(p['correct'] for p in progress.values()) == 4
    assert sum(p['incorrect'] for p in progress.values()) == 1


def test_input_during_feedback_is_rejected_and_timer_not_reset(client, quiz_store, scheduler):
    by_glyph = _setup(client)
    sid, view = _start(client, 'recognition')
    target = by_glyph[view['question']['character']]
    client.post(f'/quiz/sessions/{sid}/answer', json={'answer': target['pinyin']})
    r = client.post(f'/quiz/sessions/{sid}/answer', json={'answer': target['pinyin']})
    assert r.status_code == 409
    assert len(scheduler.handles) == 1
    scheduler.fire_all()
    view = client.get(f'/quiz/sessions/{sid}').json()
    assert view['question']['number'] == 2
    assert view['question']['phase'] == 'presented'


def test_writing_quiz_flow(client, quiz_store, scheduler):
    _setup(client)
    sid, view = _start(client, 'reverse', count=10)
    assert view['total'] == 5
    for _ in range(5):
        assert 'hint' in view['question']
        r = client.post(f'/quiz/sessions/{sid}/assess', json={'correct': True})
        assert r.status_code == 409
        client.post(f'/quiz/sessions/{sid}/reveal')
        view = client.post(f'/quiz/sessions/{sid}/assess', json={'correct': True}).json()
        assert view['feedback']['message'] == 'Great job!'
        scheduler.fire_all()
        view = client.get(f'/quiz/sessions/{sid}').json()
    assert view['summary']['accuracy'] == 100
    assert client.get('/quiz-history').json()[0]['quizType'] == 'Writing'


def test_abandoning_cancels_pending_advance(client, quiz_store, scheduler):
    by_glyph = _setup(client)
    sid, view = _start(client, 'recognition')
    target = by_glyph[view['question']['character']]
    client.post(f'/quiz/sessions/{sid}/answer', json={'answer': target['pinyin']})
    handle = scheduler.pending[0]
    assert client.delete(f'/quiz/sessions/{sid}').json() == {'success': True}
    assert handle.cancelled
    # a timer that slipped through does nothing once the session is gone
    handle.callback()
    assert client.get(f'/quiz/sessions/{sid}').status_code == 404
    assert client.get('/progress').json() == {}


def test_sessions_are_private_to_their_owner(client, quiz_store):
    _setup(client)
    sid = client.post('/quiz/sessions').json()['session_id']
    other = TestClient(app)
    register(other, 'intruder')
    assert other.get(f'/quiz/sessions/{sid}').status_code == 404
    assert other.delete(f'/quiz/sessions/{sid}').status_code == 404


def test_cannot_start_without_characters(client, quiz_store):
    register(client)
    r = client.post('/quiz/sessions')
    assert r.status_code == 400


def test_back_and_restart(client, quiz_store, scheduler):
    by_glyph = _setup(client)
    sid = client.post('/quiz/sessions').json()['session_id']
    client.post(f'/quiz/sessions/{sid}/type', json={'quizType': 'recognition'})
    view = client.post(f'/quiz/sessions/{sid}/back').json()
    assert view['stage'] == 'type-selection'
    client.post(f'/quiz/sessions/{sid}/type', json={'quizType': 'recognition'})
    view = client.post(f'/quiz/sessions/{sid}/count', json={'count': 5}).json()
    while view['stage'] != 'complete':
        target = by_glyph[view['question']['character']]
        client.post(f'/quiz/sessions/{sid}/answer', json={'answer': target['pinyin']})
        scheduler.fire_all()
        view = client.get(f'/quiz/sessions/{sid}').json()
    view = client.post(f'/quiz/sessions/{sid}/restart').json()
    assert view['stage'] == 'type-selection'
    assert 'summary' not in view


def test_save_failure_is_reported_on_session(client, quiz_store, scheduler, monkeypatch):
    by_glyph = _setup(client)

    def fail(username, summary):
        raise OSError('disk full')

    monkeypatch.setattr(quiz_store, '_on_complete', fail)
    sid, view = _start(client, 'recognition')
    while view['stage'] != 'complete':
        target = by_glyph[view['question']['character']]
        client.post(f'/quiz/sessions/{sid}/answer', json={'answer': target['pinyin']})
        scheduler.fire_all()
        view = client.get(f'/quiz/sessions/{sid}').json()
    assert view['summary']['saved'] is False
    assert view['summary']['saveError'] == 'disk full'
