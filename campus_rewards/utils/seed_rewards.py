"""
Seed the reward catalogue from env.json (DEFAULT_REWARDS).

Usage (from repo root):
    python -m campus_rewards.utils.seed_rewards [--replace]
"""

import argparse

from campus_rewards.db import client as db_client
from campus_rewards.db import database as db
from campus_rewards.db.client import DataStore, REWARDS_COLL
from campus_rewards.services.rewards.server import create_reward
from campus_rewards.utils import config
from campus_rewards.utils.errors import DomainError


def seed_rewards(store: DataStore, rewards: list[dict], replace: bool = False) -> list[str]:
    created = []
    for spec in rewards:
        if replace:
            db.delete_one(store, table_name=REWARDS_COLL, keys_dict={"reward_id": spec["reward_id"]})
        try:
            create_reward(
                store,
                reward_id=spec["reward_id"],
                name=spec["name"],
                cost=spec["cost"],
                description=spec.get("description"),
                available=spec.get("available", True),
            )
        except DomainError:
            continue
        created.append(spec["reward_id"])
    return created


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Load the default campus rewards into the database.")
    parser.add_argument("--replace", action="store_true", help="Overwrite rewards that already exist.")
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    store = db_client.connect(config.load_settings())
    try:
        db.create_indexes(store)
        created = seed_rewards(store, config.DEFAULT_REWARDS, replace=args.replace)
    except Exception as exc:
        raise SystemExit(f"Failed to seed rewards: {exc}") from exc
    finally:
        store.close()
    print(f"Seeded {len(created)} reward(s).")
    for reward_id in created:
        print(f"  - {reward_id}")
