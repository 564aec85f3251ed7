import logging
import re
import uuid
from typing import List, Literal, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pymongo import ASCENDING, DESCENDING
from pymongo.client_session import ClientSession
from pymongo.errors import DuplicateKeyError
import campus_rewards.db.database as db
import campus_rewards.utils.timing as timing
from campus_rewards.db.client import (
    ACTIVE_USER,
    DataStore,
    POINTS_COLL,
    REDEMPTIONS_COLL,
    REWARDS_COLL,
    USERS_COLL,
    get_store,
)
from campus_rewards.services.users.server import load_user
from campus_rewards.utils.errors import DomainError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

REWARD_PROJECTION = {
    "_id": False,
    "reward_id": True,
    "name": True,
    "description": True,
    "cost": True,
    "available": True,
}
REDEMPTION_PROJECTION = {"_id": False}


# ==============================
#        Payload Classes
# ==============================
class NewReward(BaseModel):
    reward_id: Optional[str] = Field(None, description="Slug identifier; derived from the name when omitted.")
    name: str = Field(..., min_length=1, description="Reward name.")
    description: Optional[str] = Field(None, description="Free text shown in the catalogue.")
    cost: int = Field(..., gt=0, description="Points needed to redeem the reward.")
    available: bool = Field(True, description="Whether the reward can be redeemed.")

class Availability(BaseModel):
    available: bool = Field(..., description="New availability flag.")

class Redeem(BaseModel):
    user_id: str = Field(..., description="User spending the points.")
    reward_id: str = Field(..., description="Reward being redeemed.")

class RedemptionStatus(BaseModel):
    status: Literal["fulfilled", "cancelled"] = Field(..., description="Target status of a pending redemption.")


class StatusResponse(BaseModel):
    status: bool = Field(..., description="Outcome of the request.")


class RewardResponse(StatusResponse):
    reward: dict = Field(..., description="Reward document.")


class RewardListResponse(StatusResponse):
    rewards: List[dict] = Field(..., description="Rewards, cheapest first.")


class RedemptionResponse(StatusResponse):
    model_config = ConfigDict(extra="allow")
    redemption: dict = Field(..., description="Redemption record.")
    balance: int = Field(..., description="User balance after the operation.")


class RedemptionListResponse(StatusResponse):
    user_id: str = Field(..., description="User identifier.")
    redemptions: List[dict] = Field(..., description="Redemptions, newest first.")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error detail.")
    reason: str = Field(..., description="Machine-readable error code.")


# ===============================
#        Fast API Router
# ===============================
router = APIRouter(prefix="/services/rewards", tags=["Rewards"])


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")


def create_reward(store: DataStore, reward_id: str, name: str, cost: int, description: Optional[str] = None, available: bool = True) -> dict:
    reward = {
        "reward_id": reward_id,
        "name": name,
        "description": description,
        "cost": int(cost),
        "available": available,
        "created_at": timing.now_iso(),
    }
    try:
        db.insert(store, table_name=REWARDS_COLL, record=reward)
    except DuplicateKeyError:
        raise DomainError("Reward already exists", reason="reward_exists")
    reward.pop("_id", None)
    return reward


def _load_reward(store: DataStore, reward_id: str, session: Optional[ClientSession] = None) -> dict:
    reward = db.find_one(
        store,
        table_name=REWARDS_COLL,
        filters={"reward_id": (reward_id or "").strip()},
        projection=REWARD_PROJECTION,
        session=session,
    )
    if reward is None:
        raise NotFoundError("Reward not found", reason="reward_not_found")
    return reward


# ==============================================
# ================== ROUTES ====================
# ==============================================

# ==========================
#          list
# ==========================
@router.get(
    "",
    status_code=200,
    summary="List rewards",
    operation_id="listRewards",
    response_model=RewardListResponse,
)
def list_rewards(
    include_unavailable: bool = Query(False, description="Also list rewards that cannot be redeemed."),
    store: DataStore = Depends(get_store),
) -> dict:
    filters = {} if include_unavailable else {"available": True}
    rewards = db.find_many(
        store,
        table_name=REWARDS_COLL,
        filters=filters,
        projection=REWARD_PROJECTION,
        sort=[("cost", ASCENDING), ("reward_id", ASCENDING)],
    )
    return {"status": True, "rewards": rewards}


# ==========================
#         create
# ==========================
@router.post(
    "",
    status_code=201,
    summary="Create a reward",
    operation_id="createReward",
    response_model=RewardResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Blank name or identifier."},
        409: {"model": ErrorResponse, "description": "Reward ID already used."},
    },
)
def post_reward(payload: NewReward, store: DataStore = Depends(get_store)) -> dict:
    name = payload.name.strip()
    reward_id = (payload.reward_id or "").strip() or _slug(name)
    if not name or not reward_id:
        raise ValidationError("Reward name and ID are required", reason="invalid_identifier")
    reward = create_reward(store, reward_id, name, payload.cost, payload.description, payload.available)
    logger.info("Created reward %s (%d points).", reward_id, payload.cost)
    return {"status": True, "reward": reward}


# ==========================
#          redeem
# ==========================
@router.post(
    "/redeem",
    status_code=200,
    summary="Redeem a reward",
    description=(
        "Exchanges points for a reward.  \n"
        "- Rejects unavailable rewards and insufficient balances without touching the balance.  \n"
        "- Deducts the cost, records the redemption and the ledger entry together."
    ),
    operation_id="redeemReward",
    response_model=RedemptionResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Blank identifiers."},
        404: {"model": ErrorResponse, "description": "User or reward not found."},
        409: {"model": ErrorResponse, "description": "Reward unavailable or insufficient points."},
        503: {"model": ErrorResponse, "description": "Database unavailable."},
    },
)
def redeem(payload: Redeem, store: DataStore = Depends(get_store)) -> dict:
    user = load_user(store, payload.user_id)
    user_id = user["user_id"]

    def _apply(session: Optional[ClientSession]) -> tuple[dict, int]:
        reward = _load_reward(store, payload.reward_id, session=session)
        if not reward.get("available", False):
            raise DomainError("Reward not available", reason="reward_unavailable")
        cost = int(reward["cost"])
        now = timing.now_iso()
        # 1. Conditional deduction, atomic on the user document
        updated = db.find_one_and_update(
            store,
            table_name=USERS_COLL,
            keys_dict={"user_id": user_id, **ACTIVE_USER, "points": {"$gte": cost}},
            values_dict={"$inc": {"points": -cost, "spent": cost}, "$set": {"updated_at": now}},
            session=session,
        )
        if updated is None:
            raise DomainError("Insufficient points", reason="insufficient_points")
        # 2. Redemption record and ledger entry
        redemption = {
            "redemption_id": str(uuid.uuid4()),
            "user_id": user_id,
            "reward_id": reward["reward_id"],
            "reward_name": reward.get("name"),
            "cost": cost,
            "status": "pending",
            "created_at": now,
            "updated_at": now,
        }
        db.insert(store, table_name=REDEMPTIONS_COLL, record=redemption, session=session)
        db.insert(
            store,
            table_name=POINTS_COLL,
            record={
                "user_id": user_id,
                "delta": -cost,
                "kind": "redemption",
                "ref": redemption["redemption_id"],
                "created_at": now,
            },
            session=session,
        )
        redemption.pop("_id", None)
        return redemption, updated["points"]

    redemption, balance = store.run_atomic(_apply)
    logger.info("User %s redeemed %s for %d points.", user_id, redemption["reward_id"], redemption["cost"])
    return {"status": True, "redemption": redemption, "balance": balance}


# ==========================
#       redemptions
# ==========================
@router.get(
    "/redemptions/{user_id}",
    status_code=200,
    summary="List a user's redemptions",
    operation_id="listRedemptions",
    response_model=RedemptionListResponse,
    responses={404: {"model": ErrorResponse, "description": "User not found."}},
)
def list_redemptions(user_id: str, store: DataStore = Depends(get_store)) -> dict:
    user = load_user(store, user_id, active_only=False)
    redemptions = db.find_many(
        store,
        table_name=REDEMPTIONS_COLL,
        filters={"user_id": user["user_id"]},
        projection=REDEMPTION_PROJECTION,
        sort=[("created_at", DESCENDING)],
    )
    return {"status": True, "user_id": user["user_id"], "redemptions": redemptions}


# ==========================
#     redemption status
# ==========================
@router.post(
    "/redemptions/{redemption_id}/status",
    status_code=200,
    summary="Fulfil or cancel a redemption",
    description=(
        "Moves a pending redemption to fulfilled or cancelled.  \n"
        "Cancelling refunds the cost to the user."
    ),
    operation_id="updateRedemptionStatus",
    response_model=RedemptionResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Redemption not found."},
        409: {"model": ErrorResponse, "description": "Redemption is not pending."},
    },
)
def update_redemption_status(redemption_id: str, payload: RedemptionStatus, store: DataStore = Depends(get_store)) -> dict:
    redemption_id = redemption_id.strip()

    def _apply(session: Optional[ClientSession]) -> tuple[dict, int]:
        now = timing.now_iso()
        redemption = db.find_one_and_update(
            store,
            table_name=REDEMPTIONS_COLL,
            keys_dict={"redemption_id": redemption_id, "status": "pending"},
            values_dict={"$set": {"status": payload.status, "updated_at": now}},
            session=session,
        )
        if redemption is None:
            existing = db.find_one(
                store,
                table_name=REDEMPTIONS_COLL,
                filters={"redemption_id": redemption_id},
                projection={"_id": False, "status": True},
                session=session,
            )
            if existing is None:
                raise NotFoundError("Redemption not found", reason="redemption_not_found")
            raise DomainError(
                f"Cannot move a {existing['status']} redemption to {payload.status}",
                reason="invalid_status_transition",
            )
        values_dict: dict = {"$set": {"updated_at": now}}
        if payload.status == "cancelled":
            values_dict["$inc"] = {"points": redemption["cost"], "spent": -redemption["cost"]}
        user = db.find_one_and_update(
            store,
            table_name=USERS_COLL,
            keys_dict={"user_id": redemption["user_id"]},
            values_dict=values_dict,
            projection={"_id": False, "points": True},
            session=session,
        )
        if user is None:
            raise NotFoundError("User not found", reason="user_not_found")
        if payload.status == "cancelled":
            db.insert(
                store,
                table_name=POINTS_COLL,
                record={
                    "user_id": redemption["user_id"],
                    "delta": redemption["cost"],
                    "kind": "refund",
                    "ref": redemption_id,
                    "created_at": now,
                },
                session=session,
            )
        redemption.pop("_id", None)
        return redemption, user["points"]

    redemption, balance = store.run_atomic(_apply)
    logger.info("Redemption %s marked %s.", redemption_id, redemption["status"])
    return {"status": True, "redemption": redemption, "balance": balance}


# ==========================
#          get
# ==========================
@router.get(
    "/{reward_id}",
    status_code=200,
    summary="Get a reward",
    operation_id="getReward",
    response_model=RewardResponse,
    responses={404: {"model": ErrorResponse, "description": "Reward not found."}},
)
def get_reward(reward_id: str, store: DataStore = Depends(get_store)) -> dict:
    return {"status": True, "reward": _load_reward(store, reward_id)}


# ==========================
#       availability
# ==========================
@router.post(
    "/{reward_id}/availability",
    status_code=200,
    summary="Change reward availability",
    operation_id="setRewardAvailability",
    response_model=RewardResponse,
    responses={404: {"model": ErrorResponse, "description": "Reward not found."}},
)
def set_availability(reward_id: str, payload: Availability, store: DataStore = Depends(get_store)) -> dict:
    reward = db.find_one_and_update(
        store,
        table_name=REWARDS_COLL,
        keys_dict={"reward_id": reward_id.strip()},
        values_dict={"$set": {"available": payload.available}},
        projection=REWARD_PROJECTION,
    )
    if reward is None:
        raise NotFoundError("Reward not found", reason="reward_not_found")
    logger.info("Reward %s availability set to %s.", reward["reward_id"], payload.available)
    return {"status": True, "reward": reward}
