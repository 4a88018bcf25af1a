# samplechain/__init__.py

from flask import Flask, jsonify
from config import ProductionConfig, get_config
from samplechain.extensions import db, login_manager, socketio, migrate, limiter, engine_options
from samplechain.models import User
import os
import logging
from logging.handlers import RotatingFileHandler
from sqlalchemy.exc import SQLAlchemyError, OperationalError, DisconnectionError


def configure_logging(app):
    if app.config.get('LOG_TO_STDOUT'):
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(logging.INFO)
        app.logger.addHandler(stream_handler)
    else:
        if not os.path.exists('logs'):
            os.mkdir('logs')
        file_handler = RotatingFileHandler('logs/samplechain.log',
                                           maxBytes=10240000,
                                           backupCount=10)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s '
            '[in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)

    app.logger.setLevel(logging.INFO)
    app.logger.info('SampleChain startup')


def ensure_admin(app):
    """Create the configured admin account if it is missing."""
    if not app.config.get('ADMIN_PASSWORD'):
        return
    if User.query.filter_by(username=app.config['ADMIN_USERNAME']).first():
        return
    admin = User(
        username=app.config['ADMIN_USERNAME'],
        email=app.config['ADMIN_EMAIL'] or f"{app.config['ADMIN_USERNAME']}@localhost",
        role='admin'
    )
    admin.set_password(app.config['ADMIN_PASSWORD'])
    db.session.add(admin)
    try:
        db.session.commit()
        app.logger.info(f"Admin user {admin.username} created")
    except SQLAlchemyError as e:
        db.session.rollback()
        app.logger.error(f"Error creating admin user: {str(e)}")


def create_app(config_class=None, overrides=None):
    app = Flask(__name__)
    app.config.from_object(config_class or get_config())
    if overrides:
        app.config.update(overrides)

    # Force production config if FLASK_ENV is production
    if os.environ.get('FLASK_ENV') == 'production' and not app.config.get('TESTING'):
        app.config.from_object(ProductionConfig)
        configure_logging(app)

    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = engine_options(app.config)

    # Initialize Flask extensions
    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db, render_as_batch=True)

    # Redis message queue lets every worker reach every user room
    socketio.init_app(
        app,
        message_queue=app.config.get('REDIS_URL') if os.environ.get('FLASK_ENV') == 'production' else None,
        async_mode=app.config['SOCKETIO_ASYNC_MODE']
    )

    limiter.init_app(app)

    from samplechain.carrier import init_carrier
    init_carrier(app)

    login_manager.session_protection = 'strong'

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'unauthorized', 'message': 'Authentication required.'}), 401

    # Socket event handlers register on import
    from samplechain import notifications  # noqa: F401

    from samplechain.api import bp as api_bp
    from samplechain.auth import bp as auth_bp
    app.register_blueprint(api_bp, url_prefix='/api')
    app.register_blueprint(auth_bp, url_prefix='/auth')

    from samplechain.errors import register_error_handlers
    register_error_handlers(app)

    # Register CLI commands
    from samplechain.cli import init_cli
    init_cli(app)

    with app.app_context():
        # Production schema is managed with `flask db upgrade`
        if os.environ.get('FLASK_ENV') != 'production':
            db.create_all()
        ensure_admin(app)

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(error):
        app.logger.error(f'Database error occurred: {str(error)}')
        db.session.rollback()
        if isinstance(error, OperationalError):
            return jsonify({'error': 'database_unavailable',
                            'message': 'Database connection error. Please try again later.'}), 503
        elif isinstance(error, DisconnectionError):
            db.session.remove()  # Clean up the session
            return jsonify({'error': 'database_disconnected',
                            'message': 'Lost connection to database. Please retry.'}), 500
        return jsonify({'error': 'internal_error', 'message': 'An unexpected database error occurred.'}), 500

    @app.teardown_appcontext
    def cleanup(resp_or_exc):
        """Ensure proper cleanup of database sessions"""
        db.session.remove()

    return app
