import os
from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))

# Load environment variables from .env file, fallback to .env.development
env_path = os.path.join(os.path.dirname(__file__), '.env')
if not os.path.exists(env_path):
    env_path = os.path.join(os.path.dirname(__file__), '.env.development')
load_dotenv(env_path)


class Config:
    """Base configuration class"""
    SECRET_KEY = os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        if os.environ.get('FLASK_ENV') == 'production':
            raise ValueError("SECRET_KEY must be set in production")
        SECRET_KEY = 'dev-secret-key'

    # Fix Render's DATABASE_URL if needed
    SQLALCHEMY_DATABASE_URL = os.environ.get('DATABASE_URL')
    if (SQLALCHEMY_DATABASE_URL and
            SQLALCHEMY_DATABASE_URL.startswith('postgres://')):
        SQLALCHEMY_DATABASE_URL = SQLALCHEMY_DATABASE_URL.replace(
            'postgres://',
            'postgresql://',
            1
        )

    SQLALCHEMY_DATABASE_URI = SQLALCHEMY_DATABASE_URL or 'sqlite:///samplechain.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_POOL_SIZE = 10
    SQLALCHEMY_POOL_RECYCLE = 300
    SQLALCHEMY_POOL_TIMEOUT = 20
    SQLALCHEMY_MAX_OVERFLOW = 5
    SQLALCHEMY_CONNECT_TIMEOUT = 10
    DEBUG = os.environ.get('FLASK_ENV') == 'development'

    # Secure cookie settings
    SESSION_COOKIE_SECURE = os.environ.get('FLASK_ENV') == 'production'
    SESSION_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SECURE = os.environ.get('FLASK_ENV') == 'production'
    REMEMBER_COOKIE_HTTPONLY = True

    # Redis configuration with fallback
    REDIS_URL = os.environ.get('REDIS_URL', 'redis://localhost:6379')

    # Rate limiting configuration
    RATELIMIT_STRATEGY = 'fixed-window'
    RATELIMIT_HEADERS_ENABLED = True
    RATELIMIT_DEFAULT = "200 per day"
    RATELIMIT_STORAGE_URI = REDIS_URL

    # SocketIO runs on eventlet behind gunicorn
    SOCKETIO_ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE', 'eventlet')

    # Admin user configuration
    ADMIN_USERNAME = os.environ.get('ADMIN_USERNAME', 'admin')
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD')
    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL')

    # Timezone used when rendering custody timestamps
    TIMEZONE = os.environ.get('TIMEZONE', 'America/Chicago')

    # Shipment request limits
    MAX_SHIPMENT_ITEMS = 10
    DEFAULT_QUANTITY_UNIT = 'ml'

    # Carrier integration. Without credentials the sandbox carrier is used.
    CARRIER_API_BASE_URL = os.environ.get(
        'CARRIER_API_BASE_URL', 'https://apis-sandbox.fedex.com'
    )
    CARRIER_API_KEY = os.environ.get('CARRIER_API_KEY')
    CARRIER_SECRET_KEY = os.environ.get('CARRIER_SECRET_KEY')
    CARRIER_ACCOUNT_NUMBER = os.environ.get('CARRIER_ACCOUNT_NUMBER')
    CARRIER_CONNECT_TIMEOUT = float(os.environ.get('CARRIER_CONNECT_TIMEOUT') or 5)
    CARRIER_READ_TIMEOUT = float(os.environ.get('CARRIER_READ_TIMEOUT') or 20)
    CARRIER_DEFAULT_SERVICE = 'FEDEX_GROUND'

    # Ship-from address and hazmat offeror
    LAB_COMPANY_NAME = os.environ.get('LAB_COMPANY_NAME', 'Reference Sample Lab')
    LAB_CONTACT_NAME = os.environ.get('LAB_CONTACT_NAME', 'Lab Shipping')
    LAB_PHONE = os.environ.get('LAB_PHONE', '2255551234')
    LAB_EMERGENCY_PHONE = os.environ.get('LAB_EMERGENCY_PHONE', '1-800-555-0199')
    LAB_SHIP_FROM_STREET = os.environ.get('LAB_SHIP_FROM_STREET', '100 Research Park Dr')
    LAB_SHIP_FROM_CITY = os.environ.get('LAB_SHIP_FROM_CITY', 'Baton Rouge')
    LAB_SHIP_FROM_STATE = os.environ.get('LAB_SHIP_FROM_STATE', 'LA')
    LAB_SHIP_FROM_POSTAL_CODE = os.environ.get('LAB_SHIP_FROM_POSTAL_CODE', '70808')
    LAB_SHIP_FROM_COUNTRY = os.environ.get('LAB_SHIP_FROM_COUNTRY', 'US')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    # Fix Render's DATABASE_URL if needed
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    if SQLALCHEMY_DATABASE_URI and SQLALCHEMY_DATABASE_URI.startswith('postgres://'):
        SQLALCHEMY_DATABASE_URI = SQLALCHEMY_DATABASE_URI.replace('postgres://', 'postgresql://', 1)

    REDIS_URL = os.environ.get('REDIS_URL') or Config.REDIS_URL
    RATELIMIT_STORAGE_URI = REDIS_URL

    # Production security settings
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True
    REMEMBER_COOKIE_DURATION = 3600 * 24 * 7  # 7 days in production

    # Production logging
    LOG_TO_STDOUT = os.environ.get('LOG_TO_STDOUT', 'true').lower() == 'true'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///samplechain.db'
    RATELIMIT_STORAGE_URI = 'memory://'  # Memory storage in development


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    WTF_CSRF_ENABLED = False  # Disable CSRF protection in tests
    RATELIMIT_ENABLED = False  # Disable rate limiting in tests
    RATELIMIT_STORAGE_URI = 'memory://'
    SOCKETIO_ASYNC_MODE = 'threading'
    ADMIN_PASSWORD = None


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config():
    """Get configuration class based on environment"""
    env = os.environ.get('FLASK_ENV', 'development')
    return config.get(env, config['default'])
