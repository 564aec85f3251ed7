import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

import campus_rewards.db.client as client
from campus_rewards.db.database import create_indexes
from campus_rewards.services.leaderboard.server import router as leaderboard_router
from campus_rewards.services.points.server import router as points_router
from campus_rewards.services.rewards.server import router as rewards_router
from campus_rewards.services.users.server import router as users_router
from campus_rewards.utils.config import load_settings
from campus_rewards.utils.errors import ServiceError

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)


class ValidationErrorResponse(BaseModel):
    detail: List[Dict[str, Any]] = Field(..., description="Field errors reported by request validation.")
    reason: str = Field(..., description="Always `validation_error`.")


VALIDATION_RESPONSES = {422: {"model": ValidationErrorResponse, "description": "Malformed request body or parameters."}}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # a missing service account aborts startup
    settings = load_settings()
    store = client.connect(settings)
    try:
        create_indexes(store)
    except PyMongoError as exc:
        logger.warning("MongoDB not reachable at startup (%s); requests will fail until it is.", exc)
    app.state.store = store
    try:
        yield
    finally:
        app.state.store = None
        store.close()

app = FastAPI(title = "Campus Rewards", lifespan=lifespan)


@app.exception_handler(ServiceError)
async def service_error_handler(_: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "reason": exc.reason})


@app.exception_handler(PyMongoError)
async def database_error_handler(_: Request, exc: PyMongoError) -> JSONResponse:
    logger.error("Database error: %s", exc)
    return JSONResponse(status_code=503, content={"detail": "Database unavailable", "reason": "database_unavailable"})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors()), "reason": "validation_error"},
    )


@app.get("/health", tags=["Health"])
def health(request: Request) -> dict:
    store = getattr(request.app.state, "store", None)
    return {"status": True, "database": bool(store and store.ping())}


app.include_router(users_router, responses=VALIDATION_RESPONSES)
app.include_router(points_router, responses=VALIDATION_RESPONSES)
app.include_router(rewards_router, responses=VALIDATION_RESPONSES)
app.include_router(leaderboard_router, responses=VALIDATION_RESPONSES)

if __name__ == "__main__":
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    reload = os.getenv("RELOAD", "false").lower() in {"1", "true", "yes"}

    uvicorn.run("campus_rewards.main:app", host=host, port=port, reload=reload)
