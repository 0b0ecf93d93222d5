import logging
import os
from flask import Flask
from .config import Config


def _build_repository(app):
    from .repository import InMemoryRepository, SqlRepository

    url = app.config.get('DATABASE_URL')
    if not url:
        app.logger.warning("DATABASE_URL is not set; using an empty in-memory repository")
        return InMemoryRepository()

    from .db import init_db, make_engine, make_session_factory

    engine = make_engine(url)
    if app.config.get('CREATE_TABLES'):
        init_db(engine)
    return SqlRepository(make_session_factory(engine))


def create_app(config_overrides=None, repository=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    logging.basicConfig(
        level=str(app.config.get('LOG_LEVEL') or 'INFO').upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    from .services.session_cache import SessionCache
    from .routes import main_bp

    if repository is None:
        repository = _build_repository(app)
    app.extensions['attendance_repository'] = repository
    app.extensions['attendance_sessions'] = SessionCache(ttl_seconds=app.config['SESSION_TTL_SECONDS'])

    app.register_blueprint(main_bp)

    return app
