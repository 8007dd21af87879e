import secrets
from datetime import timedelta

from apps.utils.dates import get_local_time_naive


def generate_otp():
    """6-digit one-time code as a string."""
    return str(secrets.randbelow(900000) + 100000)


def otp_expiry(minutes=5):
    return get_local_time_naive() + timedelta(minutes=minutes)


def otp_expired(expires_at):
    return expires_at < get_local_time_naive()
