import logging
from typing import Optional
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError
from campus_rewards.db import utility
from campus_rewards.db.client import (
    DataStore,
    LEADERBOARD_COLL,
    POINTS_COLL,
    POINTS_HISTORY_COLL,
    REDEMPTIONS_COLL,
    REWARDS_COLL,
    USERS_COLL,
)
from campus_rewards.utils.errors import DatabaseError

logger = logging.getLogger(__name__)


def _session_kwargs(session: Optional[ClientSession]) -> dict:
    return {"session": session} if session is not None else {}

def _ensure_index(collection: Collection, keys: list[tuple[str, int]], **kwargs) -> None:
    existing = collection.index_information()
    for info in existing.values():
        if info.get("key") == keys:
            return
    collection.create_index(keys, **kwargs)

def insert(store: DataStore, table_name: str, record: dict, session: Optional[ClientSession] = None):
    if not utility.check_primary_keys(table_name, record):
        raise ValueError(f"The primary keys {utility.table_primary_keys_dict[table_name]} of '{table_name}' are required in the record field")
    try:
        return store.collection(table_name).insert_one(record, **_session_kwargs(session))
    except DuplicateKeyError:
        raise
    except PyMongoError as e:
        raise DatabaseError(str(e)) from e

def update_one(store: DataStore, table_name: str, keys_dict: dict, values_dict: dict, upsert: bool = False, session: Optional[ClientSession] = None):
    try:
        return store.collection(table_name).update_one(keys_dict, values_dict, upsert=upsert, **_session_kwargs(session))
    except PyMongoError as e:
        raise DatabaseError(str(e)) from e

def delete_one(store: DataStore, table_name: str, keys_dict: dict):
    try:
        return store.collection(table_name).delete_one(keys_dict)
    except PyMongoError as e:
        raise DatabaseError(str(e)) from e

def delete_many(store: DataStore, table_name: str, keys_dict: dict):
    try:
        return store.collection(table_name).delete_many(keys_dict)
    except PyMongoError as e:
        raise DatabaseError(str(e)) from e

def find_one(store: DataStore, table_name: str, filters: Optional[dict] = None, projection: Optional[dict] = None, session: Optional[ClientSession] = None) -> Optional[dict]:
    try:
        return store.collection(table_name).find_one(filters or {}, projection, **_session_kwargs(session))
    except PyMongoError as e:
        raise DatabaseError(str(e)) from e

def find_many(
    store: DataStore,
    table_name: str,
    filters: Optional[dict] = None,
    projection: Optional[dict] = None,
    sort: Optional[list[tuple[str, int]]] = None,
    limit: int = 0,
) -> list[dict]:
    try:
        cursor = store.collection(table_name).find(filters or {}, projection)
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)
    except PyMongoError as e:
        raise DatabaseError(str(e)) from e

def count(store: DataStore, table_name: str, filters: Optional[dict] = None) -> int:
    try:
        return store.collection(table_name).count_documents(filters or {})
    except PyMongoError as e:
        raise DatabaseError(str(e)) from e

def aggregate(store: DataStore, table_name: str, pipeline: list[dict]) -> list[dict]:
    try:
        return list(store.collection(table_name).aggregate(pipeline))
    except PyMongoError as e:
        raise DatabaseError(str(e)) from e

def find_one_and_update(
    store: DataStore,
    table_name: str,
    keys_dict: dict,
    values_dict: dict,
    projection: Optional[dict] = None,
    return_policy=ReturnDocument.AFTER,
    session: Optional[ClientSession] = None,
) -> Optional[dict]:
    try:
        return store.collection(table_name).find_one_and_update(
            keys_dict,
            values_dict,
            projection=projection,
            return_document=return_policy,
            **_session_kwargs(session),
        )
    except PyMongoError as e:
        raise DatabaseError(str(e)) from e

def create_indexes(store: Optional[DataStore]) -> None:
    if store is None:
        return
    db = store.db
    _ensure_index(db[USERS_COLL], [("user_id", ASCENDING)], unique=True, name="users_index")
    _ensure_index(db[REWARDS_COLL], [("reward_id", ASCENDING)], unique=True, name="rewards_index")
    _ensure_index(db[REDEMPTIONS_COLL], [("redemption_id", ASCENDING)], unique=True, name="redemptions_index")
    _ensure_index(db[REDEMPTIONS_COLL], [("user_id", ASCENDING), ("created_at", DESCENDING)], name="redemptions_user_index")
    _ensure_index(db[POINTS_HISTORY_COLL], [("entry_id", ASCENDING)], unique=True, name="points_history_index")
    _ensure_index(db[POINTS_HISTORY_COLL], [("user_id", ASCENDING), ("event_id", ASCENDING)], name="points_history_event_index")
    _ensure_index(db[POINTS_COLL], [("user_id", ASCENDING)], name="points_ledger_index")
    _ensure_index(
        db[LEADERBOARD_COLL],
        [("total_points", DESCENDING), ("reached_at", ASCENDING), ("_id", ASCENDING)],
        name="leaderboard_rank_index",
    )
    logger.info("Indexes ensured on database '%s'.", db.name)
