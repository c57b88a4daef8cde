from dataclasses import dataclass
from typing import TYPE_CHECKING

from flask import current_app
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager

if TYPE_CHECKING:
    from .security import TokenSigner
    from .services.accounts import AccountService
    from .services.checkin import CheckInService
    from .services.dashboard import DashboardService
    from .services.events import EventService
    from .services.payments import PaymentService
    from .services.tickets import TicketService

login_manager = LoginManager()
limiter = Limiter(key_func=get_remote_address)


@dataclass
class Services:
    tokens: "TokenSigner"
    accounts: "AccountService"
    events: "EventService"
    tickets: "TicketService"
    payments: "PaymentService"
    checkin: "CheckInService"
    dashboard: "DashboardService"


def services() -> Services:
    return current_app.extensions["unitix.services"]
