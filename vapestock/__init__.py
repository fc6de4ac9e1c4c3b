"""Flask application factory."""
import os

from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException

from vapestock.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Initialize Sentry for error tracking in production
    if app.config.get('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=app.config['SENTRY_DSN'],
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Shopkeeper session registry (memory or Redis)
    from vapestock.services.session_service import init_session_registry
    init_session_registry(app)

    # Live update events
    from vapestock.services.event_service import init_events
    init_events(app)

    # Prometheus metrics instrumentation
    from vapestock.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Per-shop stores
    init_db(app)

    # Error Handlers
    from vapestock.exceptions import VapeStockError

    @app.errorhandler(VapeStockError)
    def handle_vapestock_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"VapeStockError [{error.status_code}]: {error.message}")
        elif error.status_code == 409 and 'Duplicate' in type(error).__name__:
            app.logger.error(f"{type(error).__name__} on {request.path}: {error.message}")
        else:
            app.logger.info(f"{type(error).__name__} [{error.status_code}] on {request.path}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from vapestock.blueprints.shop import shop_bp
    from vapestock.blueprints.admin import admin_bp
    from vapestock.blueprints.metrics import metrics_bp

    app.register_blueprint(shop_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(metrics_bp)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    # Register CLI commands
    from vapestock.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"SESSION_STORE_BACKEND={app.config.get('SESSION_STORE_BACKEND')}")

    return app
