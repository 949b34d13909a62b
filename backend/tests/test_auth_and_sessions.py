import hashlib

from fastapi.testclient import TestClient

from hanzi import storage
from hanzi.main import app
from conftest import register


def test_register_login_and_me(client):
    r = client.post('/auth/register', json={'username': 'ab', 'password': 'pass'})
    assert r.status_code == 200
    assert r.json() == {'success': True, 'username': 'ab'}
    assert 'user' in r.cookies
    me = client.get('/auth/me')
    assert me.json() == {'user': 'ab'}
    # register also creates the per-user data area
    assert storage.user_dir('ab', create=False).is_dir()

    r2 = client.post('/auth/login', json={'username': 'ab', 'password': 'pass'})
    assert r2.status_code == 200
    assert r2.json()['access_token']


def test_register_validation_errors(client):
    r = client.post('/auth/register', json={'username': 'a', 'password': 'pass'})
    assert r.status_code == 400
    assert '2-20' in r.json()['detail']
    r = client.post('/auth/register', json={'username': 'x' * 21, 'password': 'pass'})
    assert r.status_code == 400
    r = client.post('/auth/register', json={'username': 'bad name', 'password': 'pass'})
    assert r.status_code == 400
    r = client.post('/auth/register', json={'username': 'goodname', 'password': 'abc'})
    assert r.status_code == 400
    assert not storage.users_file().exists()


def test_register_duplicate_user(client):
    register(client, 'dupe')
    r = client.post('/auth/register', json={'username': 'dupe', 'password': 'other'})
    assert r.status_code == 409
    assert r.json()['detail'] == 'Username already exists'


def test_login_rejects_bad_credentials(client):
    register(client, 'someone', 'secret')
    r = client.post('/auth/login', json={'username': 'someone', 'password': 'wrong'})
    assert r.status_code == 401
    r = client.post('/auth/login', json={'username': 'nobody', 'password': 'secret'})
    assert r.status_code == 401


def test_protected_endpoints_require_session():
    anon = TestClient(app)
    assert anon.get('/characters').status_code == 401
    assert anon.get('/progress').status_code == 401
    assert anon.get('/quiz-history').status_code == 401
    assert anon.post('/quiz/sessions').status_code == 401
    assert anon.get('/auth/me').json() == {'user': None}


def test_bearer_token_and_invalid_token(client):
    register(client, 'bearer')
    token = client.post('/auth/login', json={'username': 'bearer', 'password': 'pass'}).json()['access_token']
    other = TestClient(app)
    r = other.get('/characters', headers={'Authorization': f'Bearer {token}'})
    assert r.status_code == 200
    r = other.get('/characters', headers={'Authorization': 'Bearer invalid.token.here'})
    assert r.status_code == 401


def test_logout_clears_session(client):
    register(client, 'leaver')
    assert client.get('/characters').status_code == 200
    r = client.post('/auth/logout')
    assert r.status_code == 200
    assert client.get('/characters').status_code == 401


def test_session_for_deleted_user_is_rejected(client):
    register(client, 'ghost')
    storage.write_rows(storage.users_file(), storage.USERS_HEADER, [])
    assert client.get('/characters').status_code == 401
    assert client.get('/auth/me').json() == {'user': None}


def test_legacy_sha256_hash_is_accepted_and_upgraded(client):
    legacy = hashlib.sha256(b'oldpass').hexdigest()
    storage.write_rows(storage.users_file(), storage.USERS_HEADER, [('veteran', legacy)])
    r = client.post('/auth/login', json={'username': 'veteran', 'password': 'oldpass'})
    assert r.status_code == 200
    rows = storage.read_rows(storage.users_file(), storage.USERS_HEADER)
    assert rows[0][0] == 'veteran'
    assert rows[0][1] != legacy
    assert rows[0][1].startswith('$pbkdf2-sha256$')
    # upgraded hash still verifies
    assert client.post('/auth/login', json={'username': 'veteran', 'password': 'oldpass'}).status_code == 200


def test_users_csv_layout(client):
    register(client, 'layout')
    text = storage.users_file().read_text(encoding='utf-8')
    lines = text.strip().splitlines()
    assert lines[0] == 'username,passwordHash'
    assert lines[1].startswith('layout,')


def test_failed_logins_are_throttled(client, monkeypatch):
    from hanzi.utils.rate_limit import FailedLoginThrottle
    monkeypatch.setattr('hanzi.main._login_throttle', FailedLoginThrottle())
    monkeypatch.setattr('hanzi.main.settings.LOGIN_RATE_LIMIT_PER_MIN', 2)
    register(client, 'target')
    for _ in range(2):
        assert client.post('/auth/login', json={'username': 'target', 'password': 'nope'}).status_code == 401
    r = client.post('/auth/login', json={'username': 'target', 'password': 'pass'})
    assert r.status_code == 429
    assert 'Retry-After' in r.headers


def test_request_id_header_exists(client):
    r = client.get('/health')
    assert r.status_code == 200
    assert 'X-Request-ID' in r.headers
    r = client.get('/health', headers={'X-Request-ID': 'abc123'})
    assert r.headers['X-Request-ID'] == 'abc123'
