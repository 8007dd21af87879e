import hashlib

from apps.utils.passwords import (
    hash_password, verify_password, is_legacy_hash, generate_token,
)


def legacy_hash(password, salt='9f8e7d'):
    digest = hashlib.pbkdf2_hmac('sha512', password.encode(), salt.encode(), 1000, dklen=64).hex()
    return f'{salt}:{digest}'


def test_hash_and_verify():
    stored = hash_password('correct horse')
    assert stored != 'correct horse'
    assert verify_password('correct horse', stored)
    assert not verify_password('wrong', stored)
    assert not is_legacy_hash(stored)


def test_legacy_hashes_verify():
    stored = legacy_hash('secret123')
    assert is_legacy_hash(stored)
    assert verify_password('secret123', stored)
    assert not verify_password('secret124', stored)


def test_verify_empty_values():
    assert not verify_password('', hash_password('x'))
    assert not verify_password('x', None)


def test_generate_token():
    token = generate_token()
    assert len(token) == 64
    assert token != generate_token()
    assert len(generate_token(8)) == 16

