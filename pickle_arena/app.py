import logging
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_socketio import SocketIO
from flask_cors import CORS
from pickle_arena.config import config

db = SQLAlchemy()
socketio = SocketIO()

logger = logging.getLogger(__name__)


def _parse_allowed_origins(raw_origins):
    if not raw_origins:
        return '*'

    if isinstance(raw_origins, (list, tuple, set)):
        cleaned = [origin for origin in raw_origins if origin]
        return cleaned or '*'

    raw_text = str(raw_origins).strip()
    if not raw_text or raw_text == '*':
        return '*'

    origins = [origin.strip() for origin in raw_text.split(',') if origin.strip()]
    return origins or '*'


def _configure_logging(level_name):
    numeric_level = getattr(logging, str(level_name or 'INFO').upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_app(config_name='development'):
    app = Flask(__name__)
    app.config.from_object(config[config_name])
    _configure_logging(app.config.get('LOG_LEVEL'))

    allowed_origins = _parse_allowed_origins(app.config.get('CORS_ALLOWED_ORIGINS', '*'))
    if str(config_name).strip().lower() == 'production':
        secret_key = str(app.config.get('SECRET_KEY') or '').strip()
        if not secret_key or secret_key == 'dev-secret-key-change-in-prod':
            raise RuntimeError('SECRET_KEY must be set to a non-default value in production')
        if allowed_origins == '*':
            raise RuntimeError('CORS_ALLOWED_ORIGINS must be explicitly set in production')

    db.init_app(app)
    socketio.init_app(
        app,
        cors_allowed_origins=allowed_origins,
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE', 'threading'),
    )
    CORS(app, resources={r'/api/*': {'origins': allowed_origins}})

    from pickle_arena.routes.auth import auth_bp
    from pickle_arena.routes.arena import arena_bp
    from pickle_arena.routes.arena.helpers import init_arena

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(arena_bp, url_prefix='/api/arena')

    with app.app_context():
        from pickle_arena import models  # noqa: F401
        db.create_all()

    init_arena(app)
    logger.info('Pickle Arena app created (%s)', config_name)
    return app
