"""
Flask application factory.

Creates and configures the app, registers the capture / sync / webhook /
health blueprints, and wires circuit breakers for every registered database.
"""
from flask import Flask


def create_app():
    """Create and configure the Flask application."""
    from command_center.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    # Register blueprints
    from command_center.routes.leads import bp as leads_bp
    from command_center.routes.sync import bp as sync_bp
    from command_center.routes.webhook import bp as webhook_bp
    from command_center.routes.health import bp as health_bp

    app.register_blueprint(leads_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(health_bp)

    # Registry is validated here so a broken sync_to chain fails at startup
    from command_center.extensions import redis_client
    from command_center.services.circuit_breaker import init_breakers
    from command_center.services.registry import get_registry
    init_breakers(redis_client, list(get_registry()))

    # No migrations for the retry table, create it if missing
    from command_center.database import init_db
    init_db()

    return app
