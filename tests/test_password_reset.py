from datetime import datetime

import pytest
import requests

from apps.utils.tokens import TokenService

USER = {'id': 4, 'email': 'kofi@example.com', 'phone_number': '+233244000000'}

FUTURE = datetime(2999, 1, 1)
PAST = datetime(2000, 1, 1)


class FakeResponse:
    def __init__(self, status_code=200, text='{}'):
        self.status_code = status_code
        self.text = text


@pytest.fixture
def sms(app, monkeypatch):
    app.config['INFOBIP_API_KEY'] = 'test-key'
    sent = []

    def fake_post(url, headers=None, json=None, timeout=None):
        sent.append({'url': url, 'headers': headers, 'json': json})
        return FakeResponse()

    monkeypatch.setattr(requests, 'post', fake_post)
    return sent


def otp_record(**overrides):
    record = {'id': 11, 'user_id': 4, 'otp_code': '123456', 'attempts': 0, 'expires_at': FUTURE}
    record.update(overrides)
    return record


def test_forgot_password_unknown_account_is_generic(client, db, sms):
    response = client.post('/api/auth/forgot-password', json={'identifier': 'nobody@example.com'})

    assert response.status_code == 200
    assert response.get_json()['success'] is True
    assert db.queries('INSERT INTO password_reset_otp') == []
    assert sms == []


def test_forgot_password_by_phone_sends_sms(client, db, sms):
    db.on('FROM users WHERE email = %s OR phone_number = %s', [USER])

    response = client.post('/api/auth/forgot-password', json={'identifier': '+233244000000'})

    assert response.status_code == 200
    _, params = db.queries('INSERT INTO password_reset_otp')[0]
    assert params[0] == 4
    assert params[2] == 'phone'
    assert len(params[1]) == 6

    message = sms[0]['json']['messages'][0]
    assert message['destinations'] == [{'to': '+233244000000'}]
    assert params[1] in message['text']
    assert sms[0]['headers']['Authorization'] == 'App test-key'


def test_forgot_password_by_email_does_not_text(client, db, sms):
    db.on('FROM users WHERE email = %s OR phone_number = %s', [USER])

    response = client.post('/api/auth/forgot-password', json={'email': 'kofi@example.com'})

    assert response.status_code == 200
    _, params = db.queries('INSERT INTO password_reset_otp')[0]
    assert params[2] == 'email'
    assert sms == []


def test_forgot_password_requires_identifier(client, db):
    response = client.post('/api/auth/forgot-password', json={})
    assert response.status_code == 400


def test_verify_otp_success_issues_token(client, db, cache):
    db.on('FROM users WHERE email = %s OR phone_number = %s', [USER])
    db.on('SELECT * FROM password_reset_otp', [otp_record()])

    response = client.post('/api/auth/verify-otp', json={'identifier': 'kofi@example.com', 'otp': '123456'})

    body = response.get_json()
    assert response.status_code == 200
    assert f"reset:{body['token']}" in cache.store
    assert cache.ttls[f"reset:{body['token']}"] == 3600
    assert db.queries('DELETE FROM password_reset_otp')


def test_verify_otp_mismatch_counts_attempt(client, db, cache):
    db.on('FROM users WHERE email = %s OR phone_number = %s', [USER])
    db.on('SELECT * FROM password_reset_otp', [otp_record(attempts=2)])

    response = client.post('/api/auth/verify-otp', json={'identifier': 'kofi@example.com', 'otp': '000000'})

    assert response.status_code == 400
    _, params = db.queries('SET attempts = attempts + 1')[0]
    assert params == (11,)
    assert cache.store == {}


@pytest.mark.parametrize('record, message', [
    (otp_record(attempts=5), 'Too many failed attempts.'),
    (otp_record(expires_at=PAST), 'OTP expired.'),
])
def test_verify_otp_rejected(client, db, cache, record, message):
    db.on('FROM users WHERE email = %s OR phone_number = %s', [USER])
    db.on('SELECT * FROM password_reset_otp', [record])

    response = client.post('/api/auth/verify-otp', json={'identifier': 'kofi@example.com', 'otp': '123456'})

    assert response.status_code == 400
    assert response.get_json()['message'] == message


def test_verify_otp_token_store_down(client, db, cache):
    db.on('FROM users WHERE email = %s OR phone_number = %s', [USER])
    db.on('SELECT * FROM password_reset_otp', [otp_record()])
    cache.fail = True

    response = client.post('/api/auth/verify-otp', json={'identifier': 'kofi@example.com', 'otp': '123456'})

    assert response.status_code == 503


def test_check_reset_token(app, client, cache):
    with app.app_context():
        token = TokenService.create_token('PASSWORD_RESET', 'kofi@example.com', {'userId': 4})

    assert client.get(f'/api/auth/reset-password?token={token}').get_json()['identifier'] == 'kofi@example.com'
    assert client.get('/api/auth/reset-password?token=unknown').status_code == 400
    assert client.get('/api/auth/reset-password').status_code == 400


def test_reset_password(app, client, db, cache):
    with app.app_context():
        token = TokenService.create_token('PASSWORD_RESET', 'kofi@example.com', {'userId': 4})

    response = client.post('/api/auth/reset-password', json={'token': token, 'password': 'new-password'})

    assert response.status_code == 200
    _, params = db.queries('UPDATE users SET password')[0]
    assert params[1] == 4
    assert params[0] != 'new-password'
    assert db.queries('DELETE FROM sessions WHERE user_id')
    assert f'reset:{token}' not in cache.store


def test_reset_password_too_short(app, client, db, cache):
    with app.app_context():
        token = TokenService.create_token('PASSWORD_RESET', 'kofi@example.com', {'userId': 4})

    response = client.post('/api/auth/reset-password', json={'token': token, 'password': 'short'})

    assert response.status_code == 400
    assert db.queries('UPDATE users') == []
