"""MongoDB handle.

One ``Database`` is created per application at startup and handed to every
service. Nothing in the package reaches for a module-level client.
"""
import logging
from typing import Optional

from flask import Flask, current_app
from pymongo import ASCENDING, DESCENDING, MongoClient

logger = logging.getLogger(__name__)


class Database:
    def __init__(self, client: MongoClient, name: str):
        self.client = client
        self.db = client[name]
        self.users = self.db["users"]
        self.events = self.db["events"]
        self.tickets = self.db["tickets"]
        self.transactions = self.db["transactions"]
        self.notifications = self.db["notifications"]

    def ensure_indexes(self) -> None:
        self.users.create_index([("email", ASCENDING)], unique=True)
        self.users.create_index([("university_id", ASCENDING)])
        self.users.create_index([("role", ASCENDING)])
        self.events.create_index([("status", ASCENDING), ("date", ASCENDING)])
        self.events.create_index([("organizer_id", ASCENDING)])
        self.events.create_index([("category", ASCENDING)])
        self.tickets.create_index([("qr_code", ASCENDING)], unique=True)
        self.tickets.create_index([("buyer_id", ASCENDING), ("event_id", ASCENDING)])
        self.tickets.create_index([("transaction_id", ASCENDING)])
        self.transactions.create_index([("merchant_request_id", ASCENDING)])
        self.transactions.create_index([("status", ASCENDING), ("payment_date", DESCENDING)])
        self.notifications.create_index([("recipient_id", ASCENDING), ("is_read", ASCENDING)])

    def ping(self) -> None:
        self.client.admin.command("ping")

    def close(self) -> None:
        self.client.close()


def init_db(app: Flask, client: Optional[MongoClient] = None) -> Database:
    if client is None:
        client = MongoClient(
            app.config["MONGO_URI"],
            serverSelectionTimeoutMS=3000,
            connectTimeoutMS=3000,
            socketTimeoutMS=5000,
            retryWrites=True,
        )

    database = Database(client, app.config["MONGO_DB"])
    if not app.testing:
        try:
            database.ping()
        except Exception as e:
            logger.exception("MongoDB connection failed")
            raise RuntimeError(f"MongoDB connection failed: {e}") from e
    database.ensure_indexes()
    app.extensions["unitix.db"] = database
    return database


def get_db() -> Database:
    return current_app.extensions["unitix.db"]
