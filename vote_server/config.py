# vote_server/config.py

import os
from datetime import timedelta


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value not in (None, '') else default


class Config:
    PORT = _env_int('PORT', 4000)
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-me-in-production')
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', 'change-me-in-production-vote-server-jwt')
    JWT_TOKEN_LOCATION = ['headers']

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///vote_server.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Flask-Limiter: coarse per-address request limits
    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL', 'memory://')
    RATELIMIT_DEFAULT = os.environ.get('RATELIMIT_DEFAULT', '10000/hour')
    RATELIMIT_ENABLED = _env_flag('RATELIMIT_ENABLED', True)
    LOGIN_RATE_LIMIT = os.environ.get('LOGIN_RATE_LIMIT', '30/minute')
    VOTE_RATE_LIMIT = os.environ.get('VOTE_RATE_LIMIT', '10/minute')

    # Rate guard: per-key attempt counters for login and vote
    RATE_GUARD_ENABLED = _env_flag('RATE_GUARD_ENABLED', True)
    LOGIN_MAX_ATTEMPTS = _env_int('LOGIN_MAX_ATTEMPTS', 10)
    LOGIN_WINDOW_SECONDS = _env_int('LOGIN_WINDOW_SECONDS', 900)
    VOTE_MAX_ATTEMPTS = _env_int('VOTE_MAX_ATTEMPTS', 5)
    VOTE_WINDOW_SECONDS = _env_int('VOTE_WINDOW_SECONDS', 900)

    SESSION_TTL = timedelta(hours=_env_int('SESSION_TTL_HOURS', 24))
    SESSION_EXPIRY_ENFORCED = _env_flag('SESSION_EXPIRY_ENFORCED', True)
    SESSION_POLICY = os.environ.get('SESSION_POLICY', 'single')

    SCHEDULER_ENABLED = _env_flag('SCHEDULER_ENABLED', True)
    SCHEDULER_INTERVAL_SECONDS = _env_int('SCHEDULER_INTERVAL_SECONDS', 60)
    SCHEDULER_INITIAL_DELAY_SECONDS = _env_int('SCHEDULER_INITIAL_DELAY_SECONDS', 5)

    ARGON2_TIME_COST = _env_int('ARGON2_TIME_COST', 3)
    ARGON2_MEMORY_COST = _env_int('ARGON2_MEMORY_COST', 65536)
    ARGON2_PARALLELISM = _env_int('ARGON2_PARALLELISM', 4)

    # PEM encoded Ed25519 private key; takes precedence over the key file
    AUDIT_SIGNING_KEY = os.environ.get('AUDIT_SIGNING_KEY')
    # generated on first start and reused so the audit chain verifies across restarts
    AUDIT_SIGNING_KEY_FILE = os.environ.get('AUDIT_SIGNING_KEY_FILE', 'audit_signing_key.pem')

    BOOTSTRAP_DEFAULT_ELECTION = _env_flag('BOOTSTRAP_DEFAULT_ELECTION', True)
    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL')
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD')


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    RATELIMIT_STORAGE_URI = 'memory://'
    RATELIMIT_ENABLED = False
    SCHEDULER_ENABLED = False
    BOOTSTRAP_DEFAULT_ELECTION = False
    ADMIN_EMAIL = None
    ADMIN_PASSWORD = None
    SESSION_EXPIRY_ENFORCED = True
    SESSION_POLICY = 'single'
    RATE_GUARD_ENABLED = True
    ARGON2_TIME_COST = 1
    ARGON2_MEMORY_COST = 8
    ARGON2_PARALLELISM = 1
    AUDIT_SIGNING_KEY = None
    AUDIT_SIGNING_KEY_FILE = None
