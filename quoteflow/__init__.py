"""Flask application factory."""
from flask import Flask, request, jsonify
from flask_wtf.csrf import CSRFProtect, CSRFError
from werkzeug.exceptions import HTTPException
from quoteflow.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # CSRF protection for the buyer API (session cookie based)
    csrf = CSRFProtect(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF Error: {e.description}")
        return jsonify({'status': 'error', 'message': 'La sesión ha expirado. Recarga la página.'}), 400

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Flask-Mail for supplier invitations, deadline alerts and purchase orders
    from quoteflow.services.email_service import init_mail
    init_mail(app)

    # Prometheus metrics instrumentation
    from quoteflow.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: ProxyFix for HTTPS behind a reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Multi-Tenant: Load user and tenant context before each request
    from quoteflow.middleware import load_user_and_tenant

    @app.before_request
    def before_request_handler():
        """Load user and tenant context for each request."""
        load_user_and_tenant()

    # Error Handlers
    from quoteflow.exceptions import SaasError, ConsistencyViolationError

    @app.errorhandler(SaasError)
    def handle_saas_error(error):
        """Handle custom application exceptions."""
        if isinstance(error, ConsistencyViolationError):
            app.logger.critical(f"[CONSISTENCY] {error.message}")
        elif error.status_code >= 500:
            app.logger.error(f"SaasError [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"SaasError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(Exception)
    def internal_error(error):
        if isinstance(error, HTTPException):
            return jsonify({'status': 'error', 'message': error.description}), error.code
        app.logger.exception(f"Unhandled Exception on {request.method} {request.path}: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from quoteflow.blueprints.quotes import quotes_bp
    from quoteflow.blueprints.supplier_portal import supplier_portal_bp
    from quoteflow.blueprints.purchase_orders import purchase_orders_bp
    from quoteflow.blueprints.price_history import price_history_bp
    from quoteflow.blueprints.metrics import metrics_bp

    app.register_blueprint(quotes_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(price_history_bp)
    app.register_blueprint(metrics_bp)

    # The supplier portal authenticates by token, not by session cookie
    csrf.exempt(supplier_portal_bp)
    app.register_blueprint(supplier_portal_bp)

    # Register CLI commands
    from quoteflow.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"MAIL_SERVER={app.config.get('MAIL_SERVER')}")
    app.logger.info(f"PUBLIC_BASE_URL={app.config.get('PUBLIC_BASE_URL')}")

    return app
