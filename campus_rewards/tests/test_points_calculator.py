import pytest

from campus_rewards.services.points.calculator import (
    DEFAULT_RULES,
    PointsRules,
    calculate_points,
    normalize_category,
)
from campus_rewards.utils import config


def test_new_category_earns_new_category_award():
    assert calculate_points("academic", ["social"], False) == 15


@pytest.mark.parametrize("category", config.POINTS_CATEGORIES)
@pytest.mark.parametrize("repeat", [False, True])
def test_unseen_category_always_earns_new_category_award(category, repeat):
    attended = [c for c in config.POINTS_CATEGORIES if c != category]
    assert calculate_points(category, attended, repeat) == DEFAULT_RULES.new_category


@pytest.mark.parametrize("category", config.POINTS_CATEGORIES)
def test_repeat_of_attended_category_earns_repeat_award(category):
    assert calculate_points(category, [category], True) == DEFAULT_RULES.repeat_event


def test_attended_category_new_event_earns_known_category_award():
    assert calculate_points("sports", {"sports", "social"}, False) == DEFAULT_RULES.known_category


def test_award_ordering():
    assert DEFAULT_RULES.new_category > DEFAULT_RULES.known_category > DEFAULT_RULES.repeat_event > 0


def test_custom_rules_are_used():
    rules = PointsRules(new_category=100, known_category=7, repeat_event=1)
    assert calculate_points("career", [], False, rules) == 100
    assert calculate_points("career", ["career"], False, rules) == 7
    assert calculate_points("career", ["career"], True, rules) == 1


def test_empty_history_counts_as_new_category():
    assert calculate_points("wellness", [], True) == 15


def test_normalize_category_strips_and_lowercases():
    assert normalize_category("  Academic ") == "academic"


@pytest.mark.parametrize("raw", ["", "   ", "partying", None])
def test_normalize_category_rejects_blank_or_unknown(raw):
    with pytest.raises(ValueError):
        normalize_category(raw)


def test_normalize_category_honours_allowed_list():
    assert normalize_category("Chess", allowed=["chess"]) == "chess"
    with pytest.raises(ValueError):
        normalize_category("academic", allowed=["chess"])
