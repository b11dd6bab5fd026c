import os

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from config import Config
from extensions import db, init_extensions, login_manager
from ledger.exceptions import LedgerError
from logger import configure_logging
from models import Account


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.debug and not app.testing:
        app.config.update(
            SESSION_COOKIE_SECURE=True,
            SESSION_COOKIE_HTTPONLY=True,
            REMEMBER_COOKIE_SECURE=True,
            REMEMBER_COOKIE_HTTPONLY=True,
        )

    # ------------------------------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------------------------------
    configure_logging(app)

    # --------------------------------------------------------------------------------------------------------------------------
    # Initialize extensions
    # ----------------------------------------------------------------------------------------------------------------------------
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
        os.makedirs(os.path.join(app.root_path, "instance"), exist_ok=True)
    init_extensions(app)

    # ------------------------------------------------------------------------------------------------------------------------
    # Register blueprints
    # -----------------------------------------------------------------------------------------------------------------------
    register_blueprints(app)
    register_error_handlers(app)
    register_commands(app)

    # ------------------------------------------------------------------------------------------------------------------------
    # Flask-Login user_loader
    # ------------------------------------------------------------------------------------------------------------------------
    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(Account, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentication required", "code": "AuthRequired"}), 401

    @app.route("/healthz")
    def healthz():
        return {"status": "ok"}, 200

    return app


def register_blueprints(app):
    from blueprints.auth import bp as auth_bp
    from blueprints.accounts import bp as accounts_bp
    from blueprints.admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(accounts_bp)
    app.register_blueprint(admin_bp)


def register_error_handlers(app):

    @app.errorhandler(LedgerError)
    def handle_ledger_error(error):
        db.session.rollback()
        app.logger.warning(f"{error.code}: {error}")
        return jsonify({"error": str(error), "code": error.code}), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({"error": error.description, "code": error.name}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        app.logger.error(f"Unhandled error: {error}", exc_info=True)
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500


def register_commands(app):

    @app.cli.command("init-db")
    def init_db():
        """Create tables and seed system settings and VIP tiers."""
        from ledger.service import Ledger

        db.create_all()
        Ledger(db.session, app.config).settings.ensure_defaults()
        click.echo("Database initialised")

    @app.cli.command("settle-contracts")
    @click.option("--loop", is_flag=True, help="Keep polling instead of a single pass.")
    def settle_contracts(loop):
        """Flag (or auto-settle) contracts whose close time has passed."""
        from ledger.service import Ledger
        from ledger.settlement_worker import SettlementWorker

        worker = SettlementWorker(
            Ledger(db.session, app.config),
            auto_settle=app.config.get("AUTO_SETTLE_CONTRACTS", False),
        )
        if loop:
            worker.run_forever(app.config.get("SETTLEMENT_POLL_SECONDS", 5))
        else:
            result = worker.run_once()
            click.echo(f"Settled {result['settled']}, awaiting admin {result['expired']}")

    @app.cli.command("create-admin")
    @click.argument("email")
    @click.password_option()
    @click.option("--name", default="Administrator")
    def create_admin(email, password, name):
        """Create an administrator account or promote an existing one."""
        from make_admin import make_admin

        account = make_admin(app, email, password, name)
        click.echo(f"{account.email} ({account.uid}) is now admin")


# ----------------------
# Local development
# ----------------------
if __name__ == "__main__":
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    debug_mode = app.config.get("DEBUG", False)
    app.run(debug=debug_mode, host="0.0.0.0", port=port)
