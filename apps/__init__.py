import logging
from importlib import import_module

from flask import Flask, session, g, jsonify, request
from flask_wtf.csrf import CSRFProtect, CSRFError
from werkzeug.exceptions import HTTPException

from apps.config import Config
from apps.db import get_db_connection

# Flask extensions
csrf = CSRFProtect()

logger = logging.getLogger(__name__)


def register_extensions(app):
    """CSRF protection for every state-changing request."""
    csrf.init_app(app)


def configure_logging(app):
    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )


def register_blueprints(app):
    """Import each API module's routes and register its blueprint."""
    modules = [
        'authentication', 'password_reset', 'statistics', 'hierarchy', 'submissions',
    ]

    for module_name in modules:
        module = import_module(f'apps.{module_name}.routes')
        app.register_blueprint(module.blueprint)


def register_error_handlers(app):
    @app.errorhandler(CSRFError)
    def handle_csrf_error(error):
        return jsonify({'success': False, 'error': error.description}), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        if not request.path.startswith('/api'):
            return error
        return jsonify({'success': False, 'error': error.description}), error.code


def create_app(config_class=Config):
    """Application factory; tests pass TestingConfig."""
    app = Flask(__name__)
    app.config.from_object(config_class)

    configure_logging(app)
    register_extensions(app)
    register_error_handlers(app)
    register_blueprints(app)

    @app.before_request
    def before_request():
        """Store user ID from session in the application context."""
        g.user_id = session.get('id')

    logger.info("Application created with %s", config_class.__name__)
    return app
