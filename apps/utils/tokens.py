from apps.utils.cache import CacheService
from apps.utils.passwords import generate_token

# Token types: cache key prefix and lifetime in seconds
TOKEN_TYPES = {
    'PASSWORD_RESET': {'prefix': 'reset', 'ttl': 60 * 60},
    'OTP': {'prefix': 'otp', 'ttl': 10 * 60},
    'EMAIL_VERIFICATION': {'prefix': 'verify', 'ttl': 24 * 60 * 60},
}


def _token_type(token_type):
    if token_type not in TOKEN_TYPES:
        raise ValueError(f"Invalid token type: {token_type}")
    return TOKEN_TYPES[token_type]


class TokenService:
    """Single-purpose tokens kept in the cache until they expire or are used."""

    @staticmethod
    def create_token(token_type, identifier, data=None, ttl=None):
        meta = _token_type(token_type)
        token = generate_token()
        payload = dict(data or {}, identifier=identifier)

        if not CacheService.set(f"{meta['prefix']}:{token}", payload, ttl or meta['ttl']):
            raise RuntimeError("Token storage is unavailable")
        return token

    @staticmethod
    def verify_token(token_type, token):
        """Payload stored with the token, or None when unknown or expired."""
        if not token:
            return None
        meta = _token_type(token_type)
        return CacheService.get(f"{meta['prefix']}:{token}")

    @staticmethod
    def invalidate_token(token_type, token):
        meta = _token_type(token_type)
        return CacheService.invalidate(f"{meta['prefix']}:{token}")
