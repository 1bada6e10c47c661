"""
Rewards ledger for Shopify
Flask application factory
"""
import os
import re
import logging
from flask import Flask
from flask_cors import CORS

from .extensions import db, migrate
from .config import get_config, validate_config
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    # Setup logging before anything else
    setup_logging()

    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # The customer account extension calls the API cross-origin from
    # Shopify-hosted pages; the admin is embedded in admin.shopify.com
    cors_origins = [
        'https://admin.shopify.com',
        'https://extensions.shopifycdn.com',
        re.compile(r'https://.*\.myshopify\.com'),
        re.compile(r'https://.*\.account\.myshopify\.com'),
    ]
    if config_name != 'production':
        cors_origins.append(re.compile(r'http://localhost(:\d+)?'))
    CORS(
        app,
        resources={r'/api/*': {'origins': cors_origins}},
        allow_headers=['Content-Type', 'Authorization', 'Idempotency-Key'],
    )

    # Register blueprints
    register_blueprints(app)

    # Register CLI commands
    from .commands import init_app as init_commands
    init_commands(app)

    # Background expiry sweeps (production or ENABLE_SCHEDULER=true)
    from .utils.scheduler import init_scheduler
    init_scheduler(app)

    # Register error handlers
    register_error_handlers(app)

    # Health check endpoint
    @app.route('/health')
    def health_check():
        from .utils.scheduler import get_scheduler_status
        return {
            'status': 'healthy',
            'service': 'rewards',
            'scheduler': get_scheduler_status()['running'],
        }

    return app


def register_blueprints(app: Flask) -> None:
    """Register all API blueprints."""
    from .api.customer import customer_bp
    from .api.proxy import proxy_bp
    from .api.admin import admin_bp
    from .api.jobs import jobs_bp
    from .webhooks import webhooks_bp

    app.register_blueprint(customer_bp, url_prefix='/api/customer')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')
    app.register_blueprint(proxy_bp, url_prefix='/proxy')
    app.register_blueprint(jobs_bp, url_prefix='/jobs')
    app.register_blueprint(webhooks_bp, url_prefix='/webhook')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from .utils.errors import error_response, exception_response, ErrorCode
    from .utils.exceptions import RewardsError

    @app.errorhandler(RewardsError)
    def rewards_error(error):
        db.session.rollback()
        return exception_response(error)

    @app.errorhandler(400)
    def bad_request(error):
        return error_response('Bad request', ErrorCode.INVALID_REQUEST, 400, log_error=False)

    @app.errorhandler(404)
    def not_found(error):
        return error_response('Not found', ErrorCode.NOT_FOUND, 404, log_error=False)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return error_response('Method not allowed', ErrorCode.INVALID_REQUEST, 405, log_error=False)

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return error_response('Internal server error', ErrorCode.INTERNAL_ERROR, 500)
