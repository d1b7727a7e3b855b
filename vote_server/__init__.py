# vote_server/__init__.py

import logging

from flask import Flask
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from werkzeug.middleware.proxy_fix import ProxyFix

logger = logging.getLogger(__name__)

# Extensions are bound to an application in create_app
db = SQLAlchemy()  # Database ORM
migrate = Migrate()  # DB migrations
jwt = JWTManager()  # Signed session tokens
limiter = Limiter(key_func=get_remote_address)  # Per-address request limits


def create_app(config_object=None):
    from vote_server.config import Config

    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Fix proxy headers so remote_addr is the client address
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)

    # Ensure model modules are imported so SQLAlchemy metadata is populated
    from vote_server.database import models  # noqa: F401
    from vote_server.cli import register_commands
    from vote_server.errors import register_error_handlers
    from vote_server.routes import api_bp
    from vote_server.admin_routes import admin_bp
    from vote_server.services import init_services

    register_error_handlers(app)
    app.register_blueprint(api_bp)
    app.register_blueprint(admin_bp)
    register_commands(app)
    services = init_services(app)

    with app.app_context():
        db.create_all()
        if app.config.get('BOOTSTRAP_DEFAULT_ELECTION'):
            services.elections.bootstrap_default()
        if app.config.get('ADMIN_EMAIL') and app.config.get('ADMIN_PASSWORD'):
            from vote_server.cli import ensure_admin
            ensure_admin(services, app.config['ADMIN_EMAIL'], app.config['ADMIN_PASSWORD'])

    if app.config.get('SCHEDULER_ENABLED') and not app.config.get('TESTING'):
        services.scheduler.start()

    logger.info("vote server initialised (database: %s)", app.config['SQLALCHEMY_DATABASE_URI'].split('@')[-1])
    return app
