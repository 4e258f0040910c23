"""Flask application factory."""
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException
from farm_tenancy.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            profiles_sample_rate=0.1,  # 10% for profiling
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Redis cache in front of the primary store
    from farm_tenancy.services.cache_service import init_cache
    init_cache(app)

    # Prometheus metrics instrumentation
    from farm_tenancy.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=1,      # Trust X-Forwarded-For with 1 proxy
            x_proto=1,    # Trust X-Forwarded-Proto
            x_host=1,     # Trust X-Forwarded-Host
            x_port=1,     # Trust X-Forwarded-Port
            x_prefix=0    # No prefix (not behind a URL prefix)
        )

    # Initialize database
    init_db(app)

    # Audit writer (uses its own sessions, so it needs the database first)
    from farm_tenancy.services.audit_service import init_audit
    init_audit(app)

    # Load caller identity and active tenant before each request
    from farm_tenancy.middleware import load_identity

    @app.before_request
    def before_request_handler():
        """Load user and tenant context for each request."""
        load_identity()

    # Error Handlers
    from farm_tenancy.exceptions import SaasError

    @app.errorhandler(SaasError)
    def handle_saas_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"SaaSError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"SaaSError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.name}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        import traceback
        app.logger.error(f"Unhandled Exception on {request.path}: {error}")
        app.logger.error(f"Traceback: {traceback.format_exc()}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from farm_tenancy.blueprints.main import main_bp
    from farm_tenancy.blueprints.metrics import metrics_bp
    from farm_tenancy.blueprints.applications import applications_bp
    from farm_tenancy.blueprints.tenants import tenants_bp
    from farm_tenancy.blueprints.admin import admin_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(metrics_bp)
    app.register_blueprint(applications_bp)
    app.register_blueprint(tenants_bp)
    app.register_blueprint(admin_bp)

    # Register CLI commands
    from farm_tenancy.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
