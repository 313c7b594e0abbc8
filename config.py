import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import FrozenSet, List

from dotenv import load_dotenv

load_dotenv()


def _csv(value):
    return [item.strip() for item in (value or '').split(',') if item.strip()]


def _env(name, default):
    return lambda: os.getenv(name, default)


def _env_int(name, default):
    return lambda: int(os.getenv(name, default))


def _database_url():
    url = os.getenv('DATABASE_URL', 'sqlite:///bookhive.db')
    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql://', 1)
    return url


@dataclass(frozen=True)
class AdminConfig:
    """Allow-list and shared secret that grant the admin role at login."""
    emails: FrozenSet[str] = frozenset()
    password: str = ''

    @classmethod
    def from_env(cls):
        return cls(
            emails=frozenset(e.lower() for e in _csv(os.getenv('ADMIN_EMAILS'))),
            password=os.getenv('ADMIN_PASSWORD', '').strip(),
        )

    def is_admin_email(self, email):
        return str(email or '').strip().lower() in self.emails


@dataclass
class Settings:
    database_url: str = field(default_factory=_database_url)
    secret_key: str = field(default_factory=_env('SECRET_KEY', 'dev-secret-change-me'))
    jwt_secret_key: str = field(
        default_factory=lambda: os.getenv('JWT_SECRET_KEY') or os.getenv('SECRET_KEY', 'dev-secret-change-me'))
    token_expiry_days: int = field(default_factory=_env_int('TOKEN_EXPIRY_DAYS', '7'))
    admin: AdminConfig = field(default_factory=AdminConfig.from_env)
    cors_origins: List[str] = field(default_factory=lambda: _csv(os.getenv('CORS_ORIGINS', 'http://localhost:3000')))
    environment: str = field(default_factory=_env('ENVIRONMENT', 'development'))
    max_upload_size: int = field(default_factory=_env_int('MAX_UPLOAD_SIZE', '10485760'))  # 10MB
    bcrypt_rounds: int = field(default_factory=_env_int('BCRYPT_ROUNDS', '12'))
    log_level: str = field(default_factory=_env('LOG_LEVEL', 'DEBUG'))
    port: int = field(default_factory=_env_int('PORT', '3000'))
    testing: bool = False

    @property
    def token_expiry(self):
        return timedelta(days=self.token_expiry_days)

    @property
    def is_production(self):
        return self.environment.lower() == 'production'
