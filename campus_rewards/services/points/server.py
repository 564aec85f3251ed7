import logging
import uuid
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pymongo import DESCENDING
import campus_rewards.db.database as db
import campus_rewards.utils.timing as timing
from campus_rewards.db.client import DataStore, POINTS_COLL, POINTS_HISTORY_COLL, USERS_COLL, get_store
from campus_rewards.services.leaderboard import aggregator
from campus_rewards.services.points import calculator
from campus_rewards.services.users.server import load_user
from campus_rewards.utils import config
from campus_rewards.utils.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


# ==============================
#        Payload Classes
# ==============================
class Award(BaseModel):
    user_id: str = Field(..., description="User attending the event.")
    event_id: str = Field(..., description="Identifier of the attended event.")
    category: str = Field(..., description=f"Event category, one of {config.POINTS_CATEGORIES}.")


class StatusResponse(BaseModel):
    status: bool = Field(..., description="Outcome of the request.")


class AwardResponse(StatusResponse):
    entry_id: str = Field(..., description="Identifier of the pointsHistory entry.")
    user_id: str = Field(..., description="Awarded user.")
    event_id: str = Field(..., description="Attended event.")
    category: str = Field(..., description="Normalized category.")
    points_awarded: int = Field(..., description="Points granted by this award.")
    new_category: bool = Field(..., description="True when the category was attended for the first time.")
    repeat: bool = Field(..., description="True when the user already attended this event.")
    balance: int = Field(..., description="Balance after the award.")


class BalanceResponse(StatusResponse):
    user_id: str = Field(..., description="User identifier.")
    balance: int = Field(..., description="Current balance.")
    earned: int = Field(..., description="Lifetime awarded points.")
    spent: int = Field(..., description="Points spent on redemptions.")
    ledger_balance: int = Field(..., description="Sum of the user's points ledger entries.")
    attended_categories: List[str] = Field(..., description="Categories attended so far.")


class HistoryResponse(StatusResponse):
    model_config = ConfigDict(extra="allow")
    user_id: str = Field(..., description="User identifier.")
    history: List[dict] = Field(..., description="Award entries, newest first.")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error detail.")
    reason: str = Field(..., description="Machine-readable error code.")


# ===============================
#        Fast API Router
# ===============================
router = APIRouter(prefix="/services/points", tags=["Points"])


def _required(value: str, label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{label} is required", reason="invalid_identifier")
    return value


def ledger_balance(store: DataStore, user_id: str) -> int:
    rows = db.aggregate(
        store,
        POINTS_COLL,
        [{"$match": {"user_id": user_id}}, {"$group": {"_id": "$user_id", "total": {"$sum": "$delta"}}}],
    )
    return int(rows[0]["total"]) if rows else 0


# ==============================================
# ================== ROUTES ====================
# ==============================================

# ==========================
#          award
# ==========================
@router.post(
    "/award",
    status_code=200,
    summary="Award points for an attended event",
    description=(
        "Computes the award for the event category against the user's attendance history.  \n"
        "- Appends one pointsHistory entry and one ledger entry.  \n"
        "- Updates balance and attended categories in a single write.  \n"
        "- Refreshes the user's leaderboard entry."
    ),
    operation_id="awardPoints",
    response_model=AwardResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Blank identifiers or unknown category."},
        404: {"model": ErrorResponse, "description": "User not found or inactive."},
        503: {"model": ErrorResponse, "description": "Database unavailable."},
    },
)
def award_points(payload: Award, store: DataStore = Depends(get_store)) -> dict:
    user_id = _required(payload.user_id, "User ID")
    event_id = _required(payload.event_id, "Event ID")
    try:
        category = calculator.normalize_category(payload.category)
    except ValueError as exc:
        raise ValidationError(str(exc), reason="invalid_category")

    # 1. Load user and attendance
    user = load_user(store, user_id)
    attended = user.get("attended_categories") or []
    repeat = db.find_one(
        store,
        table_name=POINTS_HISTORY_COLL,
        filters={"user_id": user_id, "event_id": event_id},
        projection={"_id": True},
    ) is not None
    points = calculator.calculate_points(category, attended, repeat)

    # 2. Append history and ledger
    now = timing.now_iso()
    entry = {
        "entry_id": str(uuid.uuid4()),
        "user_id": user_id,
        "event_id": event_id,
        "category": category,
        "points": points,
        "repeat": repeat,
        "new_category": category not in attended,
        "awarded_at": now,
    }
    db.insert(store, table_name=POINTS_HISTORY_COLL, record=entry)
    db.insert(
        store,
        table_name=POINTS_COLL,
        record={
            "user_id": user_id,
            "delta": points,
            "kind": "award",
            "ref": entry["entry_id"],
            "created_at": now,
        },
    )

    # 3. Update user balance
    updated = db.find_one_and_update(
        store,
        table_name=USERS_COLL,
        keys_dict={"user_id": user_id},
        values_dict={
            "$inc": {"points": points, "earned": points},
            "$addToSet": {"attended_categories": category},
            "$set": {"updated_at": now},
        },
        projection={"_id": False, "points": True},
    )
    if updated is None:
        raise NotFoundError("User not found after update", reason="user_not_found")

    # 4. Update leaderboard
    try:
        aggregator.refresh_user(store, user_id)
    except Exception as exc:
        logger.error("Failed to update leaderboard for user %s: %s", user_id, exc)

    logger.info("Awarded %d points to %s for event %s (%s).", points, user_id, event_id, category)
    return {
        "status": True,
        "entry_id": entry["entry_id"],
        "user_id": user_id,
        "event_id": event_id,
        "category": category,
        "points_awarded": points,
        "new_category": entry["new_category"],
        "repeat": repeat,
        "balance": updated["points"],
    }


# ==========================
#         balance
# ==========================
@router.get(
    "/{user_id}",
    status_code=200,
    summary="Get a user's balance",
    operation_id="getBalance",
    response_model=BalanceResponse,
    responses={404: {"model": ErrorResponse, "description": "User not found."}},
)
def get_balance(user_id: str, store: DataStore = Depends(get_store)) -> dict:
    user = load_user(store, user_id, active_only=False)
    return {
        "status": True,
        "user_id": user["user_id"],
        "balance": user.get("points", 0),
        "earned": user.get("earned", 0),
        "spent": user.get("spent", 0),
        "ledger_balance": ledger_balance(store, user["user_id"]),
        "attended_categories": user.get("attended_categories") or [],
    }


# ==========================
#         history
# ==========================
@router.get(
    "/{user_id}/history",
    status_code=200,
    summary="List a user's awards",
    operation_id="getPointsHistory",
    response_model=HistoryResponse,
    responses={404: {"model": ErrorResponse, "description": "User not found."}},
)
def get_history(
    user_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    store: DataStore = Depends(get_store),
) -> dict:
    user = load_user(store, user_id, active_only=False)
    history = db.find_many(
        store,
        table_name=POINTS_HISTORY_COLL,
        filters={"user_id": user["user_id"]},
        projection={"_id": False},
        sort=[("awarded_at", DESCENDING)],
        limit=limit or config.HISTORY_DEFAULT_LIMIT,
    )
    return {"status": True, "user_id": user["user_id"], "history": history}
