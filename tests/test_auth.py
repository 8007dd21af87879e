import hashlib

import mysql.connector

from apps.utils.passwords import hash_password

USER = {
    'id': 1, 'first_name': 'Ama', 'last_name': 'Mensah', 'email': 'ama@example.com',
    'phone_number': '+233200000000', 'type': 'admin', 'status': 'active',
}


def register_user(db, password='secret123', **overrides):
    row = dict(USER, password=hash_password(password))
    row.update(overrides)
    db.on('FROM users WHERE email = %s', [row])
    return row


def test_csrf_token(client):
    response = client.get('/api/auth/csrf-token')
    assert response.status_code == 200
    assert response.get_json()['csrfToken']


def test_login_requires_fields(client, db):
    response = client.post('/api/auth/login', json={'email': 'ama@example.com'})
    assert response.status_code == 400


def test_login_rejects_bad_password(client, db):
    register_user(db)

    response = client.post('/api/auth/login', json={'email': 'ama@example.com', 'password': 'nope'})

    assert response.status_code == 401
    assert response.get_json()['message'] == 'Invalid credentials'
    assert db.queries('INSERT INTO sessions') == []


def test_login_unknown_user(client, db):
    response = client.post('/api/auth/login', json={'email': 'who@example.com', 'password': 'x'})
    assert response.status_code == 401


def test_login_inactive_user(client, db):
    register_user(db, status='inactive')

    response = client.post('/api/auth/login', json={'email': 'ama@example.com', 'password': 'secret123'})

    assert response.status_code == 403


def test_login_creates_session(client, db):
    register_user(db)
    db.on('FROM user_program_roles', [{'program_id': 2, 'program_name': 'Reach', 'scope_name': 'Ashanti'}])

    response = client.post('/api/auth/login', json={'email': 'ama@example.com', 'password': 'secret123'})

    body = response.get_json()
    assert response.status_code == 200
    assert 'password' not in body['user']
    assert body['user']['programRoles'][0]['program_name'] == 'Reach'

    _, params = db.queries('INSERT INTO sessions')[0]
    token = params[1]
    assert params[0] == 1
    assert (params[3] - params[2]).total_seconds() == 24 * 3600
    assert db.queries('UPDATE users SET last_login')
    assert db.commits == 1

    with client.session_transaction() as sess:
        assert sess['id'] == 1
        assert sess['token'] == token
        assert sess['role'] == 'admin'


def test_login_upgrades_legacy_hash(client, db):
    salt = 'a1b2c3'
    digest = hashlib.pbkdf2_hmac('sha512', b'secret123', salt.encode(), 1000, dklen=64).hex()
    db.on('FROM users WHERE email = %s', [dict(USER, password=f'{salt}:{digest}')])

    response = client.post('/api/auth/login', json={'email': 'ama@example.com', 'password': 'secret123'})

    assert response.status_code == 200
    _, params = db.queries('UPDATE users SET password')[0]
    assert params[0].startswith(('scrypt:', 'pbkdf2:'))


def test_login_database_error(client, db):
    db.error = mysql.connector.Error("down")
    response = client.post('/api/auth/login', json={'email': 'ama@example.com', 'password': 'secret123'})
    assert response.status_code == 500


def test_me_requires_login(client, db):
    response = client.get('/api/auth/me')
    assert response.status_code == 401


def test_me_returns_user(client, db, login):
    login()
    db.on('FROM users WHERE id = %s', [USER])

    response = client.get('/api/auth/me')

    assert response.get_json()['user']['email'] == 'ama@example.com'


def test_me_user_gone(client, db, login):
    login()

    response = client.get('/api/auth/me')

    assert response.status_code == 404


def test_revoked_session_is_cleared(client, db):
    with client.session_transaction() as sess:
        sess['id'] = 1
        sess['token'] = 'revoked-token'

    response = client.get('/api/auth/me')

    assert response.status_code == 401
    _, params = db.queries('FROM sessions WHERE token')[0]
    assert params[0] == 'revoked-token'


def test_logout_removes_session(client, db, login):
    login(token='abc')

    response = client.post('/api/auth/logout')

    assert response.status_code == 200
    _, params = db.queries('DELETE FROM sessions WHERE token')[0]
    assert params == ('abc',)
    with client.session_transaction() as sess:
        assert 'id' not in sess


def test_session_check_survives_database_outage(client, db):
    with client.session_transaction() as sess:
        sess['id'] = 1
        sess['token'] = 'tok'
    db.error = mysql.connector.Error("db down")

    response = client.get('/api/statistics')

    assert response.status_code == 200
    assert response.get_json()['success'] is True
    with client.session_transaction() as sess:
        assert sess['token'] == 'tok'


def test_database_outage_during_session_check_keeps_json_errors(client, db):
    with client.session_transaction() as sess:
        sess['id'] = 1
        sess['token'] = 'tok'
    db.error = mysql.connector.Error("db down")

    response = client.get('/api/auth/me')

    assert response.status_code == 500
    assert response.get_json()['success'] is False
