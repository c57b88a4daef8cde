"""Campus event ticketing API.

- Flask JSON API (app factory)
- Bearer-token auth through Flask-Login's request loader
- MongoDB via PyMongo
"""
from __future__ import annotations

import atexit
import logging
import random
import uuid
from datetime import timedelta
from typing import Optional

from flask import Flask, Response, request
from pymongo import MongoClient

from .config import Config, configure_logging
from .db import init_db
from .errors import register_error_handlers
from .extensions import Services, limiter, login_manager
from .security import TokenSigner
from .services.accounts import AccountService
from .services.checkin import CheckInService
from .services.dashboard import DashboardService
from .services.events import EventService
from .services.payments import PaymentService, RandomSettlementPolicy, SettlementPolicy, SettlementScheduler
from .services.tickets import TicketService

logger = logging.getLogger(__name__)


def create_app(
    config_class=Config,
    mongo_client: Optional[MongoClient] = None,
    settlement_policy: Optional[SettlementPolicy] = None,
    scheduler: Optional[SettlementScheduler] = None,
) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_logging(app.config["LOG_LEVEL"])

    login_manager.init_app(app)
    login_manager.session_protection = None
    limiter.init_app(app)
    register_error_handlers(app)

    database = init_db(app, mongo_client)
    tokens = TokenSigner(
        app.config["JWT_SECRET"],
        app.config["REFRESH_TOKEN_SECRET"],
        timedelta(hours=app.config["JWT_EXPIRE_HOURS"]),
        timedelta(days=app.config["REFRESH_TOKEN_EXPIRE_DAYS"]),
    )
    if settlement_policy is None:
        settlement_policy = RandomSettlementPolicy(
            {
                "card": app.config["CARD_SUCCESS_RATE"],
                "mobile-money": app.config["MOBILE_MONEY_SUCCESS_RATE"],
            },
            random.Random(),
        )
    if scheduler is None:
        scheduler = SettlementScheduler()

    accounts = AccountService(
        database, tokens, timedelta(minutes=app.config["RESET_TOKEN_TTL_MINUTES"]), app.config["APP_URL"]
    )
    app.extensions["unitix.services"] = Services(
        tokens=tokens,
        accounts=accounts,
        events=EventService(database),
        tickets=TicketService(database, app.config["MAX_TICKETS_PER_USER"]),
        payments=PaymentService(database, settlement_policy, scheduler, app.config["MOBILE_MONEY_DELAY_SECONDS"]),
        checkin=CheckInService(database),
        dashboard=DashboardService(database),
    )

    if app.config["SEED_DEFAULT_ADMIN"]:
        accounts.ensure_default_admin(app.config["DEFAULT_ADMIN_EMAIL"], app.config["DEFAULT_ADMIN_PASSWORD"])

    # Attach a request id for debugging/traceability.
    @app.before_request
    def attach_request_id():
        rid = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.environ["request_id"] = rid

    @app.after_request
    def add_security_headers(resp: Response):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Cache-Control"] = "no-store"
        resp.headers["X-Request-Id"] = request.environ.get("request_id", "")
        return resp

    from .api import register_blueprints

    register_blueprints(app)

    def shutdown() -> None:
        scheduler.shutdown()
        database.close()

    app.extensions["unitix.shutdown"] = shutdown
    atexit.register(shutdown)
    return app
