import os
import json
import logging

import click
from flask import Flask, jsonify
from sqlalchemy import event

from app.config import config_by_name
from app.extensions import db, migrate, login_manager, csrf, limiter


def create_app(config_name=None, payment_gateway=None):
    """Application factory.

    payment_gateway overrides the Stripe gateway built from config
    (tests pass a fake here).
    """

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from app import models  # noqa: F401

        if db.engine.dialect.name == "sqlite":
            _enable_sqlite_savepoints(db.engine)

    # --- Payment gateway ---
    from app.services.stripe_gateway import init_payment_gateway
    init_payment_gateway(app, payment_gateway)

    # --- Register blueprints ---
    from app.blueprints.webhooks import webhooks_bp
    from app.blueprints.purchases import purchases_bp

    app.register_blueprint(webhooks_bp)
    app.register_blueprint(purchases_bp)

    # Exempt webhooks from CSRF — raw body needed for Stripe signature verification
    csrf.exempt(webhooks_bp)

    # --- Raw body capture, upstream of any body parsing ---
    from app.middleware.raw_body import RawBodyMiddleware
    webhook_paths = [
        rule.rule for rule in app.url_map.iter_rules()
        if rule.endpoint == "webhooks.stripe_webhook"
    ]
    app.wsgi_app = RawBodyMiddleware(app.wsgi_app, webhook_paths)

    # --- Error handlers ---
    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify({"success": False, "error": "Authentication required"}), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"success": False, "error": "Forbidden"}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "error": "Not found"}), 404

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def _enable_sqlite_savepoints(engine):
    """Let SQLAlchemy own BEGIN so SAVEPOINTs work on pysqlite.

    Per-line-item processing relies on begin_nested(); the stock driver
    would otherwise commit on RELEASE of the first savepoint.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("scan-services")
    def scan_services():
        """Print the service catalog and its Stripe price links.

        Offerings without a price ID can never be matched to a purchase;
        they are flagged so an admin can fill them in.
        """
        from app.models.service import Service

        services = Service.query.order_by(Service.order.asc()).all()
        click.echo(f"Found {len(services)} services")

        unlinked = 0
        for index, service in enumerate(services, start=1):
            click.echo("")
            click.echo("=" * 60)
            click.echo(f"SERVICE {index}: {service.title}")
            click.echo("=" * 60)
            click.echo(f"  ID:       {service.id}")
            click.echo(f"  Category: {service.category or '(none)'}")

            for section in Service.SECTIONS:
                offerings = service.section_offerings(section)
                click.echo(f"  {section} ({len(offerings)} offerings):")
                for offering in offerings:
                    price = offering.get("price")
                    if not price:
                        unlinked += 1
                    click.echo(
                        f"    - {offering.get('title') or '(untitled)'}: "
                        f"price={price or 'NOT SET'}"
                    )

        click.echo("")
        click.echo(f"Offerings without a Stripe price ID: {unlinked}")

    @app.cli.command("import-services")
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    def import_services(path):
        """Load service catalog entries from a JSON file.

        The file holds a list of objects with title, category, icon,
        description, order and serviceDetails (leftSection / rightSection).

        Usage:
            flask import-services services.json
        """
        from app.models.service import Service

        with open(path, encoding="utf-8") as fh:
            entries = json.load(fh)

        for position, entry in enumerate(entries):
            service = Service(
                title=entry["title"],
                category=entry.get("category"),
                icon=entry.get("icon"),
                description=entry.get("description"),
                order=entry.get("order", position),
                service_details=entry.get("serviceDetails") or {},
            )
            db.session.add(service)
            click.echo(f"Imported service: {service.title} ({len(service.offerings())} offerings)")

        db.session.commit()
        click.echo(f"Imported {len(entries)} services")
