import logging
from typing import Optional
from pymongo import ASCENDING, DESCENDING
import campus_rewards.db.database as db
from campus_rewards.db.client import ACTIVE_USER, DataStore, LEADERBOARD_COLL, POINTS_HISTORY_COLL, USERS_COLL

logger = logging.getLogger(__name__)

# total order: score, then who got there first, then id
RANK_SORT = [("total_points", DESCENDING), ("reached_at", ASCENDING), ("_id", ASCENDING)]


def _history_totals(store: DataStore, user_id: Optional[str] = None) -> list[dict]:
    pipeline: list[dict] = []
    if user_id is not None:
        pipeline.append({"$match": {"user_id": user_id}})
    pipeline.append(
        {
            "$group": {
                "_id": "$user_id",
                "total_points": {"$sum": "$points"},
                "awards": {"$sum": 1},
                "reached_at": {"$max": "$awarded_at"},
            }
        }
    )
    return db.aggregate(store, POINTS_HISTORY_COLL, pipeline)


def _write_entry(store: DataStore, user: dict, totals: Optional[dict]) -> dict:
    entry = {
        "name": user.get("name"),
        "total_points": int(totals["total_points"]) if totals else 0,
        "awards": int(totals["awards"]) if totals else 0,
        "reached_at": totals["reached_at"] if totals else None,
    }
    db.update_one(
        store,
        table_name=LEADERBOARD_COLL,
        keys_dict={"_id": user["user_id"]},
        values_dict={"$set": entry},
        upsert=True,
    )
    return {"user_id": user["user_id"], **entry}


def refresh_user(store: DataStore, user_id: str) -> Optional[dict]:
    """Recomputes one user's entry from pointsHistory; inactive or unknown users are dropped."""
    user = db.find_one(
        store,
        table_name=USERS_COLL,
        filters={"user_id": user_id},
        projection={"_id": False, "user_id": True, "name": True, "active": True},
    )
    if user is None or user.get("active") is False:
        db.delete_one(store, table_name=LEADERBOARD_COLL, keys_dict={"_id": user_id})
        return None
    totals = _history_totals(store, user_id)
    return _write_entry(store, user, totals[0] if totals else None)


def rebuild(store: DataStore) -> int:
    '''
    Recomputes the whole leaderboard from pointsHistory.

    Returns
    -------
    Number of entries written.
    '''
    totals = {row["_id"]: row for row in _history_totals(store)}
    users = db.find_many(
        store,
        table_name=USERS_COLL,
        filters=ACTIVE_USER,
        projection={"_id": False, "user_id": True, "name": True, "active": True},
    )
    kept = []
    for user in users:
        _write_entry(store, user, totals.get(user["user_id"]))
        kept.append(user["user_id"])
    db.delete_many(store, table_name=LEADERBOARD_COLL, keys_dict={"_id": {"$nin": kept}})
    logger.info("Leaderboard rebuilt with %d entries.", len(kept))
    return len(kept)


def _public(entry: dict, rank: int) -> dict:
    return {
        "rank": rank,
        "user_id": entry["_id"],
        "name": entry.get("name"),
        "total_points": entry.get("total_points", 0),
    }


def ranked(store: DataStore, limit: int) -> list[dict]:
    entries = db.find_many(store, table_name=LEADERBOARD_COLL, sort=RANK_SORT, limit=limit)
    return [_public(entry, idx + 1) for idx, entry in enumerate(entries)]


def user_rank(store: DataStore, user_id: str) -> Optional[dict]:
    entry = db.find_one(store, table_name=LEADERBOARD_COLL, filters={"_id": user_id})
    if entry is None:
        return None
    total = entry.get("total_points", 0)
    reached_at = entry.get("reached_at")
    ahead: list[dict] = [{"total_points": {"$gt": total}}]
    if reached_at is None:
        # null sorts first, so only a null reached_at with a smaller id can tie ahead
        ahead.append({"total_points": total, "reached_at": None, "_id": {"$lt": user_id}})
    else:
        ahead.append({"total_points": total, "reached_at": None})
        ahead.append({"total_points": total, "reached_at": {"$lt": reached_at}})
        ahead.append({"total_points": total, "reached_at": reached_at, "_id": {"$lt": user_id}})
    position = db.count(store, table_name=LEADERBOARD_COLL, filters={"$or": ahead})
    return _public(entry, position + 1)
