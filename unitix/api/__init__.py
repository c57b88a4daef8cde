from flask import Flask

from .auth import bp as auth_bp
from .dashboard import bp as dashboard_bp
from .events import bp as events_bp
from .payments import bp as payments_bp
from .tickets import bp as tickets_bp


def register_blueprints(app: Flask) -> None:
    for bp in (auth_bp, events_bp, tickets_bp, payments_bp, dashboard_bp):
        app.register_blueprint(bp)
