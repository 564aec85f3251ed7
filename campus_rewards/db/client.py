import logging
from typing import Any, Callable, Optional
from fastapi import Request
from pymongo import MongoClient
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError
from campus_rewards.utils.config import Settings
from campus_rewards.utils.errors import DatabaseError

logger = logging.getLogger(__name__)

USERS_COLL = "users"
POINTS_COLL = "points"
REWARDS_COLL = "rewards"
REDEMPTIONS_COLL = "redemptions"
POINTS_HISTORY_COLL = "pointsHistory"
LEADERBOARD_COLL = "leaderboard"

# users without the flag predate soft deletion and count as active
ACTIVE_USER = {"active": {"$ne": False}}


class DataStore:
    """Connection handle shared by the routers, built once at startup."""

    def __init__(self, client: MongoClient, db_name: str, transactions: bool = True):
        self.client = client
        self.db: Database = client[db_name]
        self.transactions = transactions

    def collection(self, coll_name: str) -> Collection:
        return self.db[coll_name]

    @property
    def users(self) -> Collection:
        return self.db[USERS_COLL]

    @property
    def points(self) -> Collection:
        return self.db[POINTS_COLL]

    @property
    def rewards(self) -> Collection:
        return self.db[REWARDS_COLL]

    @property
    def redemptions(self) -> Collection:
        return self.db[REDEMPTIONS_COLL]

    @property
    def points_history(self) -> Collection:
        return self.db[POINTS_HISTORY_COLL]

    @property
    def leaderboard(self) -> Collection:
        return self.db[LEADERBOARD_COLL]

    def run_atomic(self, operation: Callable[[Optional[ClientSession]], Any]) -> Any:
        '''
        Runs `operation(session)` inside a transaction when they are enabled,
        otherwise calls it with session=None and relies on single-document atomicity.
        '''
        if not self.transactions:
            return operation(None)
        try:
            with self.client.start_session() as session:
                return session.with_transaction(operation)
        except PyMongoError as e:
            raise DatabaseError(f"Transaction failed: {e}") from e

    def ping(self) -> bool:
        try:
            self.client.admin.command("ping")
            return True
        except PyMongoError:
            return False

    def close(self) -> None:
        self.client.close()


def connect(settings: Settings) -> DataStore:
    client = MongoClient(settings.mongo_uri, serverSelectionTimeoutMS=settings.timeout_ms)
    logger.info("Document store configured for database '%s'.", settings.mongo_db)
    return DataStore(client, settings.mongo_db, transactions=settings.transactions)


def get_store(request: Request) -> DataStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise DatabaseError("DB unavailable")
    return store
