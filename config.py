"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # Preferred URL scheme (for url_for with _external=True)
    PREFERRED_URL_SCHEME = os.getenv('PREFERRED_URL_SCHEME', 'http')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'quoteflow')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'quoteflow')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'quoteflow')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Public supplier portal. Invitation links are built as
    # {PUBLIC_BASE_URL}/supplier/quote/{token}
    PUBLIC_BASE_URL = os.getenv('PUBLIC_BASE_URL', 'http://localhost:5000')
    BUSINESS_NAME = os.getenv('BUSINESS_NAME', 'Compras')

    # Winner resolution policy
    # AUTO_WINNER_TIE_BREAK: earliest_response | shortest_delivery
    AUTO_WINNER_TIE_BREAK = os.getenv('AUTO_WINNER_TIE_BREAK', 'earliest_response')
    # SAVINGS_BASELINE: average | highest
    SAVINGS_BASELINE = os.getenv('SAVINGS_BASELINE', 'average')

    # Deadline alerts (flask check-deadlines)
    DEADLINE_ALERT_WINDOW_HOURS = int(os.getenv('DEADLINE_ALERT_WINDOW_HOURS', '24'))

    # Purchase orders
    PO_NUMBER_PREFIX = os.getenv('PO_NUMBER_PREFIX', 'PO')

    # Email configuration (Flask-Mail)
    MAIL_SERVER = os.getenv('SMTP_HOST', 'smtp.gmail.com')
    MAIL_PORT = int(os.getenv('SMTP_PORT', 587))
    MAIL_USE_TLS = True
    MAIL_USE_SSL = False
    MAIL_USERNAME = os.getenv('SMTP_USER') or ''
    MAIL_PASSWORD = os.getenv('SMTP_PASSWORD') or ''
    MAIL_DEFAULT_SENDER = (
        os.getenv('SMTP_FROM')
        or MAIL_USERNAME
        or 'no-reply@localhost'
    )
    MAIL_DEBUG = False
    MAIL_SUPPRESS_SEND = os.getenv('MAIL_SUPPRESS_SEND', 'false').lower() == 'true'


class TestConfig(Config):
    """Configuration used by the test suite (in-memory SQLite, no SMTP)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    WTF_CSRF_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    MAIL_USERNAME = 'tests@localhost'
    PUBLIC_BASE_URL = 'http://testserver'
