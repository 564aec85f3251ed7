import logging
import uuid
from typing import List, Optional
from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pymongo.errors import DuplicateKeyError
import campus_rewards.db.database as db
import campus_rewards.utils.timing as timing
from campus_rewards.db.client import ACTIVE_USER, DataStore, USERS_COLL, get_store
from campus_rewards.services.leaderboard import aggregator
from campus_rewards.utils.errors import DomainError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

USER_PROJECTION = {
    "_id": False,
    "user_id": True,
    "name": True,
    "email": True,
    "points": True,
    "earned": True,
    "spent": True,
    "attended_categories": True,
    "active": True,
    "created_at": True,
}


# ==============================
#        Payload Classes
# ==============================
class Register(BaseModel):
    user_id: Optional[str] = Field(None, description="Campus identifier; generated when omitted.")
    name: str = Field(..., min_length=1, description="Display name shown on the leaderboard.")
    email: Optional[str] = Field(None, description="Contact email, syntax checked only.")


class UserResponse(BaseModel):
    model_config = ConfigDict(extra="allow")
    status: bool = Field(..., description="Outcome of the request.")
    user_id: str = Field(..., description="Identifier of the user.")
    name: Optional[str] = Field(None, description="Display name.")
    email: Optional[str] = Field(None, description="Contact email.")
    points: int = Field(0, description="Current balance.")
    earned: int = Field(0, description="Lifetime awarded points.")
    spent: int = Field(0, description="Points spent on redemptions.")
    attended_categories: List[str] = Field(default_factory=list, description="Categories attended so far.")
    active: bool = Field(True, description="False once the account is deactivated.")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error detail.")
    reason: str = Field(..., description="Machine-readable error code.")


# ===============================
#        Fast API Router
# ===============================
router = APIRouter(prefix="/services/users", tags=["Users"])


def load_user(store: DataStore, user_id: str, active_only: bool = True) -> dict:
    user_id = (user_id or "").strip()
    if not user_id:
        raise ValidationError("User ID is required", reason="invalid_identifier")
    filters = {"user_id": user_id}
    if active_only:
        filters.update(ACTIVE_USER)
    user = db.find_one(store, table_name=USERS_COLL, filters=filters, projection=USER_PROJECTION)
    if user is None:
        raise NotFoundError("User not found", reason="user_not_found")
    return user


# ==============================================
# ================== ROUTES ====================
# ==============================================

# ==========================
#         register
# ==========================
@router.post(
    "/register",
    status_code=201,
    summary="Register a user",
    description=(
        "Creates a campus user with an empty balance and attendance history.  \n"
        "- Generates the user ID when it is not provided.  \n"
        "- Validates the email syntax when given."
    ),
    operation_id="registerUser",
    response_model=UserResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Blank name, blank user ID or invalid email."},
        409: {"model": ErrorResponse, "description": "User ID already registered."},
        503: {"model": ErrorResponse, "description": "Database unavailable."},
    },
)
def register(payload: Register, store: DataStore = Depends(get_store)) -> dict:
    name = payload.name.strip()
    if not name:
        raise ValidationError("Name is required", reason="invalid_name")
    email = None
    if payload.email:
        try:
            email = validate_email(payload.email.strip(), check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise ValidationError(f"Invalid email: {exc}", reason="invalid_email")
    if payload.user_id is None:
        user_id = str(uuid.uuid4())
    else:
        user_id = payload.user_id.strip()
        if not user_id:
            raise ValidationError("User ID is required", reason="invalid_identifier")
    if db.find_one(store, table_name=USERS_COLL, filters={"user_id": user_id}, projection={"_id": True}):
        raise DomainError("User already exists", reason="user_exists")
    now = timing.now_iso()
    user = {
        "user_id": user_id,
        "name": name,
        "email": email,
        "points": 0,
        "earned": 0,
        "spent": 0,
        "attended_categories": [],
        "active": True,
        "created_at": now,
        "updated_at": now,
    }
    try:
        db.insert(store, table_name=USERS_COLL, record=user)
    except DuplicateKeyError:
        raise DomainError("User already exists", reason="user_exists")
    aggregator.refresh_user(store, user_id)
    logger.info("Registered user %s.", user_id)
    user.pop("_id", None)
    user.pop("updated_at", None)
    return {"status": True, **user}


# ==========================
#           get
# ==========================
@router.get(
    "/{user_id}",
    status_code=200,
    summary="Get a user",
    operation_id="getUser",
    response_model=UserResponse,
    responses={404: {"model": ErrorResponse, "description": "User not found."}},
)
def get_user(user_id: str, store: DataStore = Depends(get_store)) -> dict:
    return {"status": True, **load_user(store, user_id, active_only=False)}


# ==========================
#        deactivate
# ==========================
@router.post(
    "/{user_id}/deactivate",
    status_code=200,
    summary="Deactivate a user",
    description=(
        "Soft-deletes the user: the record stays, further awards and redemptions are refused  \n"
        "and the user leaves the leaderboard."
    ),
    operation_id="deactivateUser",
    response_model=UserResponse,
    responses={404: {"model": ErrorResponse, "description": "User not found."}},
)
def deactivate(user_id: str, store: DataStore = Depends(get_store)) -> dict:
    user = db.find_one_and_update(
        store,
        table_name=USERS_COLL,
        keys_dict={"user_id": user_id.strip()},
        values_dict={"$set": {"active": False, "updated_at": timing.now_iso()}},
        projection=USER_PROJECTION,
    )
    if user is None:
        raise NotFoundError("User not found", reason="user_not_found")
    aggregator.refresh_user(store, user["user_id"])
    logger.info("Deactivated user %s.", user["user_id"])
    return {"status": True, **user}
