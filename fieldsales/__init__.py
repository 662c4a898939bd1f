"""Flask application factory."""
from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException
from fieldsales.database import init_db
import os


def create_app(config_object='config.Config', clients_factory=None):
    """
    Create and configure the Flask application.

    ``clients_factory`` returns ``(backend, gateway)`` for a new compose
    session; by default both are built from the app config.
    """
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Sentry error tracking in production only
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            profiles_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Redis cache (ERP session cookie, product packagings)
    from fieldsales.services.cache_service import init_cache
    init_cache(app)

    # Prometheus metrics instrumentation
    from fieldsales.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Remote clients and compose sessions
    if clients_factory is None:
        clients_factory = _default_clients_factory(app)

    from fieldsales.compose import ComposeSessionRegistry, WarehouseAssignmentOrchestrator
    app.extensions['compose_sessions'] = ComposeSessionRegistry(
        clients_factory, idle_ttl=app.config.get('COMPOSE_SESSION_TTL')
    )
    app.extensions['warehouse_assignment'] = WarehouseAssignmentOrchestrator(*clients_factory())

    # Error Handlers
    from fieldsales.exceptions import FieldSalesError, PartialCommitError

    @app.errorhandler(FieldSalesError)
    def handle_field_sales_error(error):
        """Render application exceptions as JSON."""
        if isinstance(error, PartialCommitError) or error.status_code >= 500:
            app.logger.error(f"FieldSalesError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"FieldSalesError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception on {request.method} {request.path}: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from fieldsales.blueprints.sales import sales_bp
    from fieldsales.blueprints.compose import compose_bp
    from fieldsales.blueprints.metrics import metrics_bp

    app.register_blueprint(sales_bp)
    app.register_blueprint(compose_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from fieldsales.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"API_BASE_URL={app.config.get('API_BASE_URL')}")
    app.logger.info(f"ODOO_URL={app.config.get('ODOO_URL')}")

    return app


def _default_clients_factory(app):
    from fieldsales.services.backend_client import BackendClient
    from fieldsales.services.erp_gateway_client import ErpGatewayClient

    def factory():
        cache = app.extensions.get('cache')
        backend = BackendClient.from_config(app.config, cache=cache)
        gateway = ErpGatewayClient.from_config(app.config, api=backend, cache=cache)
        return backend, gateway

    return factory
