from dataclasses import dataclass
from typing import Iterable
from campus_rewards.utils import config


@dataclass(frozen=True)
class PointsRules:
    new_category: int = config.POINTS_NEW_CATEGORY
    known_category: int = config.POINTS_KNOWN_CATEGORY
    repeat_event: int = config.POINTS_REPEAT_EVENT


DEFAULT_RULES = PointsRules()


def normalize_category(raw: str, allowed: Iterable[str] = config.POINTS_CATEGORIES) -> str:
    '''
    Parameters
    ----------
    - raw (str): category as sent by the client.
    - allowed (Iterable[str]): lower-case category names accepted by the service.

    Returns
    -------
    The stripped, lower-case category. Raises ValueError when empty or unknown.
    '''
    category = (raw or "").strip().lower()
    if not category:
        raise ValueError("Category is required")
    if category not in set(allowed):
        raise ValueError(f"Unknown category '{category}'")
    return category


def calculate_points(
    category: str,
    attended: Iterable[str],
    repeat: bool = False,
    rules: PointsRules = DEFAULT_RULES,
) -> int:
    '''
    Award for attending an event of `category`.

    A category the user never attended earns `new_category`, whatever `repeat` says.
    A known category earns `repeat_event` when the user already attended this very
    event, `known_category` otherwise.
    '''
    if category not in set(attended):
        return rules.new_category
    if repeat:
        return rules.repeat_event
    return rules.known_category
