from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from campus_rewards.db.client import DataStore, get_store
from campus_rewards.services.leaderboard import aggregator
from campus_rewards.utils import config
from campus_rewards.utils.errors import NotFoundError


# ==============================
#        Payload Classes
# ==============================
class Standing(BaseModel):
    rank: int = Field(..., description="1-based position.")
    user_id: str = Field(..., description="User identifier.")
    name: Optional[str] = Field(None, description="Display name.")
    total_points: int = Field(..., description="Lifetime awarded points.")


class LeaderboardResponse(BaseModel):
    status: bool = Field(..., description="Outcome of the request.")
    leaderboard: List[Standing] = Field(..., description="Entries sorted by rank.")


class StandingResponse(BaseModel):
    status: bool = Field(..., description="Outcome of the request.")
    standing: Standing = Field(..., description="The user's position.")


class RebuildResponse(BaseModel):
    status: bool = Field(..., description="Outcome of the request.")
    entries: int = Field(..., description="Number of recomputed entries.")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error detail.")
    reason: str = Field(..., description="Machine-readable error code.")


# ===============================
#        Fast API Router
# ===============================
router = APIRouter(prefix="/services/leaderboard", tags=["Leaderboard"])



# ==============================================
# ================== ROUTES ====================
# ==============================================

# ==========================
#        leaderboard
# ==========================
@router.get(
    "",
    status_code=200,
    summary="Ranked standings",
    description=(
        "Users ranked by lifetime awarded points.  \n"
        "Ties go to whoever reached the score first, then to the smaller user ID."
    ),
    operation_id="getLeaderboard",
    response_model=LeaderboardResponse,
)
def get_leaderboard(
    limit: Optional[int] = Query(None, ge=1, description="Number of entries, capped by the server."),
    store: DataStore = Depends(get_store),
) -> dict:
    size = min(limit or config.LEADERBOARD_DEFAULT_LIMIT, config.LEADERBOARD_MAX_LIMIT)
    return {"status": True, "leaderboard": aggregator.ranked(store, size)}


# ==========================
#         rebuild
# ==========================
@router.post(
    "/rebuild",
    status_code=200,
    summary="Recompute the leaderboard",
    operation_id="rebuildLeaderboard",
    response_model=RebuildResponse,
)
def rebuild_leaderboard(store: DataStore = Depends(get_store)) -> dict:
    return {"status": True, "entries": aggregator.rebuild(store)}


# ==========================
#        user rank
# ==========================
@router.get(
    "/{user_id}",
    status_code=200,
    summary="A user's standing",
    operation_id="getUserStanding",
    response_model=StandingResponse,
    responses={404: {"model": ErrorResponse, "description": "User not on the leaderboard."}},
)
def get_user_standing(user_id: str, store: DataStore = Depends(get_store)) -> dict:
    standing = aggregator.user_rank(store, user_id.strip())
    if standing is None:
        raise NotFoundError("User not on the leaderboard", reason="user_not_found")
    return {"status": True, "standing": standing}
