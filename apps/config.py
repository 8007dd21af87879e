import os
import secrets


class Config:
    """Base configuration class."""
    # Survey spreadsheets are read in memory, never stored
    ALLOWED_EXTENSIONS = {'xlsx', 'xls'}
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024

    # Falls back to a per-process key, which logs everyone out on restart
    SECRET_KEY = os.getenv('SECRET_KEY') or secrets.token_hex(32)

    # MySQL Configuration
    MYSQL_HOST = os.getenv('MYSQL_HOST', 'localhost')
    MYSQL_PORT = int(os.getenv('MYSQL_PORT', '3306'))
    MYSQL_USER = os.getenv('MYSQL_USER', 'root')
    MYSQL_PASSWORD = os.getenv('MYSQL_PASSWORD', '')
    MYSQL_DATABASE = os.getenv('MYSQL_DATABASE', 'school_indicators')
    MYSQL_POOL_NAME = os.getenv('MYSQL_POOL_NAME', 'indicators_pool')
    MYSQL_POOL_SIZE = int(os.getenv('MYSQL_POOL_SIZE', '10'))

    # Redis cache
    REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
    CACHE_TTL = int(os.getenv('CACHE_TTL', '3600'))

    # Reporting defaults
    DEFAULT_ACADEMIC_YEAR = os.getenv('DEFAULT_ACADEMIC_YEAR', '2024/2025')
    DEFAULT_TERM = os.getenv('DEFAULT_TERM', '1')
    TIMEZONE = os.getenv('TIMEZONE', 'Africa/Accra')

    # Accounts
    SESSION_TTL_HOURS = int(os.getenv('SESSION_TTL_HOURS', '24'))
    OTP_EXPIRY_MINUTES = int(os.getenv('OTP_EXPIRY_MINUTES', '5'))
    OTP_MAX_ATTEMPTS = int(os.getenv('OTP_MAX_ATTEMPTS', '5'))
    INFOBIP_BASE_URL = os.getenv('INFOBIP_BASE_URL', 'https://api.infobip.com')
    INFOBIP_API_KEY = os.getenv('INFOBIP_API_KEY')
    SMS_SENDER = os.getenv('SMS_SENDER', 'SchoolApp')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


class TestingConfig(Config):
    TESTING = True
    WTF_CSRF_ENABLED = False
    SECRET_KEY = 'testing-secret-key'
