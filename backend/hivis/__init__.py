# backend/hivis/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.intake import intake_bp  # Vending/POS sources
    from .routes.admin import admin_bp  # Unprocessed queue, claims, sync control
    from .routes.rewards import rewards_bp
    from .routes.leaderboard import leaderboard_bp
    from .routes.users import users_bp
    from .routes.machines import machines_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(intake_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(rewards_bp)
    app.register_blueprint(leaderboard_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(machines_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "capacitor://localhost",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-API-Key"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
