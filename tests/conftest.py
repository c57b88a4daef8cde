import mongomock
import pytest

from unitix import create_app
from unitix.config import Config
from unitix.services.payments import FixedSettlementPolicy

from tests.helpers import PASSWORD, create_event, login, publish, register


class _Config(Config):
    TESTING = True
    MONGO_DB = "unitix_test"
    JWT_SECRET = "test-access-secret"
    REFRESH_TOKEN_SECRET = "test-refresh-secret"
    SEED_DEFAULT_ADMIN = False
    RATELIMIT_ENABLED = False
    LOG_LEVEL = "WARNING"


class ManualScheduler:
    """Holds delayed settlements until a test fires them."""

    def __init__(self):
        self.jobs = {}
        self.delays = {}
        self.closed = False

    def schedule(self, key, delay, fn):
        self.jobs[key] = fn
        self.delays[key] = delay
        return key

    def cancel(self, key):
        return self.jobs.pop(key, None) is not None

    def pending(self):
        return list(self.jobs)

    def run_all(self):
        jobs, self.jobs = self.jobs, {}
        for fn in jobs.values():
            fn()

    def shutdown(self):
        self.closed = True
        self.jobs.clear()


@pytest.fixture()
def policy():
    return FixedSettlementPolicy(approve=True)


@pytest.fixture()
def scheduler():
    return ManualScheduler()


@pytest.fixture()
def app(policy, scheduler):
    app = create_app(_Config, mongo_client=mongomock.MongoClient(), settlement_policy=policy, scheduler=scheduler)
    yield app
    app.extensions["unitix.shutdown"]()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def db(app):
    return app.extensions["unitix.db"]


@pytest.fixture()
def student(client):
    return register(client, "Alice Student", "alice@uni.test", role="student", university_id="S-1001")


@pytest.fixture()
def other_student(client):
    return register(client, "Bob Student", "bob@uni.test", role="student", university_id="S-1002")


@pytest.fixture()
def staff(client):
    return register(client, "Sam Staff", "sam@uni.test", role="staff")


@pytest.fixture()
def admin(app, client):
    # admins cannot self-register
    app.extensions["unitix.services"].accounts.ensure_default_admin("ada@uni.test", PASSWORD)
    return login(client, "ada@uni.test")


@pytest.fixture()
def published_event(client, staff):
    event = create_event(client, staff, ticket_types=[{"type": "general", "price": 25.0, "quantity": 5}])
    return publish(client, staff, event["id"])
