import json
import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


# ==============================
#         Load Variables
# ==============================
CONFIG_PATH = Path(__file__).resolve().parent / "env.json"
with CONFIG_PATH.open("r", encoding="utf-8") as f:
    _cfg = json.load(f)

POINTS_CATEGORIES: list[str] = [c.strip().lower() for c in _cfg.get("POINTS_CATEGORIES", [])]
POINTS_NEW_CATEGORY = int(_cfg.get("POINTS_NEW_CATEGORY", 15))
POINTS_KNOWN_CATEGORY = int(_cfg.get("POINTS_KNOWN_CATEGORY", 10))
POINTS_REPEAT_EVENT = int(_cfg.get("POINTS_REPEAT_EVENT", 5))
LEADERBOARD_DEFAULT_LIMIT = int(_cfg.get("LEADERBOARD_DEFAULT_LIMIT", 10))
LEADERBOARD_MAX_LIMIT = int(_cfg.get("LEADERBOARD_MAX_LIMIT", 100))
HISTORY_DEFAULT_LIMIT = int(_cfg.get("HISTORY_DEFAULT_LIMIT", 50))
DEFAULT_REWARDS: list[dict] = _cfg.get("DEFAULT_REWARDS", [])

DEFAULT_SERVICE_ACCOUNT_PATH = str(Path(__file__).resolve().parents[1] / "service_account.json")


class Settings(BaseModel):
    mongo_uri: str = Field(..., description="Connection string, credentials included.")
    mongo_db: str = Field(..., description="Database holding the campus collections.")
    transactions: bool = Field(True, description="Wrap redemptions in a multi-document transaction.")
    timeout_ms: int = Field(3000, description="Server selection timeout.")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


def load_service_account(path: Optional[str] = None) -> dict:
    '''
    Reads the service-account file granting access to the document database.

    Parameters
    ----------
    - path (str): location of the JSON file, defaults to SERVICE_ACCOUNT_PATH.

    Returns
    -------
    - dict: the parsed file, holding at least a "uri" key.
    '''
    credentials_path = Path(path or os.getenv("SERVICE_ACCOUNT_PATH", DEFAULT_SERVICE_ACCOUNT_PATH))
    if not credentials_path.exists():
        raise RuntimeError(f"Service account file not found at {credentials_path}")
    try:
        with credentials_path.open("r", encoding="utf-8") as handle:
            account = json.load(handle)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"Invalid service account file: {exc}") from exc
    if not isinstance(account, dict) or not account.get("uri"):
        raise RuntimeError(f"Service account file {credentials_path} has no 'uri' entry")
    return account


def load_settings(path: Optional[str] = None) -> Settings:
    account = load_service_account(path)
    database = os.getenv("MONGO_DB") or account.get("database") or account.get("project_id") or "campus"
    return Settings(
        mongo_uri=os.getenv("MONGO_URI") or account["uri"],
        mongo_db=database,
        transactions=_env_flag("MONGO_TRANSACTIONS", True),
        timeout_ms=int(os.getenv("MONGO_TIMEOUT_MS", "3000")),
    )
