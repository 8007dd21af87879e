"""
Password hashing and random secrets for user accounts.

New hashes are produced by werkzeug. Accounts migrated from the previous
portal still carry ``salt:hexdigest`` PBKDF2-SHA512 hashes (1000 rounds,
64 byte key); those are verified here until the user resets the password.
"""
import hashlib
import hmac
import secrets

from werkzeug.security import generate_password_hash, check_password_hash

LEGACY_ITERATIONS = 1000
LEGACY_KEY_LENGTH = 64


def hash_password(password):
    return generate_password_hash(password)


def _verify_legacy(password, stored_hash):
    salt, _, digest = stored_hash.partition(':')
    calculated = hashlib.pbkdf2_hmac(
        'sha512', password.encode('utf-8'), salt.encode('utf-8'),
        LEGACY_ITERATIONS, dklen=LEGACY_KEY_LENGTH
    ).hex()
    return hmac.compare_digest(calculated, digest)


def is_legacy_hash(stored_hash):
    # werkzeug hashes always look like "method$salt$hash"
    return ':' in stored_hash and '$' not in stored_hash


def verify_password(password, stored_hash):
    """True when ``password`` matches ``stored_hash`` (werkzeug or legacy format)."""
    if not password or not stored_hash:
        return False
    if is_legacy_hash(stored_hash):
        return _verify_legacy(password, stored_hash)
    return check_password_hash(stored_hash, password)


def generate_token(nbytes=32):
    """Hex encoded random token."""
    return secrets.token_hex(nbytes)

