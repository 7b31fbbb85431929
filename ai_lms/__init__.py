import os
import logging
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()


def create_app(config=None):
    app = Flask(__name__)

    # 1. Secret Key (signs the cookie that carries the browser's storage namespace)
    app.secret_key = os.environ.get('SECRET_KEY', 'dev_secret_key_fallback')

    # 2. Database Configuration
    # Prioritize 'DATABASE_URL' from environment (Docker/Render)
    # Fallback to local SQLite if no URL is found
    database_url = os.environ.get('DATABASE_URL')

    if database_url:
        # SQLAlchemy requires 'postgresql://' instead of 'postgres://'
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        app.config['SQLALCHEMY_DATABASE_URI'] = database_url
    else:
        app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///ai_lms.db'

    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO')

    from ai_lms import ai_service
    from ai_lms.state import SESSION_TTL_MS, STATE_CACHE_SIZE, StateRegistry
    from ai_lms.storage import DatabaseStore

    app.config['SESSION_TTL_MS'] = SESSION_TTL_MS
    app.config['STATE_CACHE_SIZE'] = int(os.environ.get('STATE_CACHE_SIZE', STATE_CACHE_SIZE))
    app.config['AI_SERVICE'] = ai_service

    # Test and deployment overrides
    if config:
        app.config.update(config)

    # 3. Logging
    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # 4. Initialize Plugins
    db.init_app(app)
    migrate.init_app(app, db)

    # 5. Register Blueprints (Routes)
    from ai_lms.routes import routes
    app.register_blueprint(routes)

    # 6. Per-browser state containers
    app.extensions['lms_states'] = StateRegistry(
        DatabaseStore,
        ai=app.config['AI_SERVICE'],
        session_ttl_ms=app.config['SESSION_TTL_MS'],
        max_states=app.config['STATE_CACHE_SIZE'],
    )

    # 7. Create Database Tables (if they don't exist)
    with app.app_context():
        from ai_lms import models  # noqa: F401
        db.create_all()

    return app
