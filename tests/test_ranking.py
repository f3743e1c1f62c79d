import copy
import math
import random
from datetime import datetime, timedelta, timezone

import pytest

from todo_api.ranking import (
    ScoringAlgorithm,
    age_hours,
    clamp_priority,
    compute_score,
    rank,
    score_linear,
    score_nonlinear,
)
from todo_api.schemas import SortSettings

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
DEFAULT = SortSettings(age_weight=0.5, priority_weight=0.5)

WEIGHTS = [
    (0.0, 0.0),
    (0.0, 1.0),
    (1.0, 0.0),
    (0.5, 0.5),
    (0.1, 0.5),
    (1.0, 1.0),
    (0.37, 0.83),
]
AGES = [0.0, 0.5, 1.0, 24.0, 100.0, 720.0, 5000.0, 1e6]


def settings_for(age_weight, priority_weight):
    return SortSettings(age_weight=age_weight, priority_weight=priority_weight)


def todo(id, priority, hours_old, **extra):
    item = {"id": id, "priority": priority, "created_at": NOW - timedelta(hours=hours_old), "title": f"t{id}"}
    item.update(extra)
    return item


def random_todos(seed=42, count=60):
    rnd = random.Random(seed)
    items = []
    for i in range(1, count + 1):
        # Few distinct ages so that exact score ties actually happen
        hours = rnd.choice([0, 1, 5, 48, 720])
        items.append(todo(i, rnd.randint(1, 10), hours, archived=rnd.random() < 0.2, tags=[]))
    return items


class TestScoringEngine:
    def test_canonical_values(self):
        assert score_nonlinear(10, 0, DEFAULT) == pytest.approx(600.0)
        # 1^2 * 6 + 10 * (0.5 * 0.6)
        assert score_nonlinear(1, 720, DEFAULT) == pytest.approx(9.0)

    def test_new_item_scores_priority_only(self):
        for p in range(1, 11):
            assert score_nonlinear(p, 0, DEFAULT) == pytest.approx(p * p * 6)

    def test_zero_age_weight_ignores_age(self):
        s = settings_for(0.0, 0.5)
        assert score_nonlinear(4, 0, s) == score_nonlinear(4, 10_000, s)

    def test_zero_priority_weight_keeps_priority_squared(self):
        s = settings_for(0.5, 0.0)
        assert score_nonlinear(3, 0, s) == pytest.approx(9.0)
        assert score_nonlinear(7, 0, s) > score_nonlinear(6, 0, s)

    def test_age_still_counts_at_zero_priority_weight(self):
        s = settings_for(1.0, 0.0)
        assert score_nonlinear(5, 100, s) > score_nonlinear(5, 1, s)

    def test_age_growth_is_sublinear_past_a_month(self):
        s = settings_for(1.0, 1.0)
        month = score_nonlinear(1, 720, s) - score_nonlinear(1, 0, s)
        year = score_nonlinear(1, 24 * 365, s) - score_nonlinear(1, 0, s)
        assert year < 2 * month

    @pytest.mark.parametrize("age_weight,priority_weight", WEIGHTS)
    @pytest.mark.parametrize("hours", AGES)
    def test_monotonic_in_priority(self, age_weight, priority_weight, hours):
        s = settings_for(age_weight, priority_weight)
        scores = [score_nonlinear(p, hours, s) for p in range(1, 11)]
        assert all(a <= b for a, b in zip(scores, scores[1:]))

    @pytest.mark.parametrize("age_weight,priority_weight", WEIGHTS)
    @pytest.mark.parametrize("priority", [1, 2, 5, 9, 10])
    def test_monotonic_in_age(self, age_weight, priority_weight, priority):
        s = settings_for(age_weight, priority_weight)
        scores = [score_nonlinear(priority, h, s) for h in AGES]
        assert all(a <= b for a, b in zip(scores, scores[1:]))

    @pytest.mark.parametrize("age_weight,priority_weight", WEIGHTS)
    def test_linear_variant_is_monotonic_too(self, age_weight, priority_weight):
        s = settings_for(age_weight, priority_weight)
        by_priority = [score_linear(p, 24, s) for p in range(1, 11)]
        by_age = [score_linear(5, h, s) for h in AGES]
        assert all(a <= b for a, b in zip(by_priority, by_priority[1:]))
        assert all(a <= b for a, b in zip(by_age, by_age[1:]))

    def test_linear_variant_lets_old_low_priority_win(self):
        assert score_linear(1, 720, DEFAULT) > score_linear(10, 0, DEFAULT)

    def test_compute_score_dispatch(self):
        assert compute_score(3, 10, DEFAULT) == score_nonlinear(3, 10, DEFAULT)
        assert compute_score(3, 10, DEFAULT, "linear") == score_linear(3, 10, DEFAULT)
        with pytest.raises(ValueError):
            compute_score(3, 10, DEFAULT, "quadratic")

    @pytest.mark.parametrize(
        "raw,expected",
        [(None, 1.0), ("abc", 1.0), (float("nan"), 1.0), (-3, 1.0), (0, 1.0), (42, 10.0), ("7", 7.0), (5, 5.0)],
    )
    def test_clamp_priority(self, raw, expected):
        assert clamp_priority(raw) == expected

    @pytest.mark.parametrize("hours", [float("inf"), float("nan"), -5, None, "x", 1e300])
    def test_scores_stay_finite(self, hours):
        assert math.isfinite(score_nonlinear(10, hours, settings_for(1.0, 1.0)))
        assert math.isfinite(score_linear(10, hours, settings_for(1.0, 1.0)))


class TestAgeHours:
    def test_aware_datetimes(self):
        assert age_hours(NOW - timedelta(hours=36), NOW) == pytest.approx(36.0)

    def test_naive_values_are_utc(self):
        created = (NOW - timedelta(hours=2)).replace(tzinfo=None)
        assert age_hours(created, NOW) == pytest.approx(2.0)
        assert age_hours(created, NOW.replace(tzinfo=None)) == pytest.approx(2.0)

    def test_iso_strings(self):
        assert age_hours("2025-06-01T00:00:00Z", NOW) == pytest.approx(12.0)
        assert age_hours("2025-06-01T10:00:00+00:00", "2025-06-01T12:00:00+00:00") == pytest.approx(2.0)

    @pytest.mark.parametrize("created", [None, "", "not-a-date", 12345, NOW + timedelta(days=3)])
    def test_unusable_or_future_created_at_is_zero(self, created):
        assert age_hours(created, NOW) == 0.0


class TestRankingPipeline:
    def test_empty_collection(self):
        assert rank([], DEFAULT, NOW) == []

    def test_scenario_priority_dominates_age(self):
        fresh_urgent = todo(1, 10, 0)
        month_old_low = todo(2, 1, 720)
        ranked = rank([month_old_low, fresh_urgent], DEFAULT, NOW)
        assert [t["id"] for t in ranked] == [1, 2]

    @pytest.mark.parametrize("age_weight", [0.1, 0.5, 1.0])
    @pytest.mark.parametrize("priority_weight", [0.0, 0.5, 1.0])
    def test_scenario_older_wins_within_same_priority(self, age_weight, priority_weight):
        newer = todo(1, 5, 1)
        older = todo(2, 5, 100)
        ranked = rank([newer, older], settings_for(age_weight, priority_weight), NOW)
        assert [t["id"] for t in ranked] == [2, 1]

    def test_scenario_zero_age_weight_ties_break_on_created_at(self):
        s = settings_for(0.0, 0.5)
        newer = todo(1, 5, 1)
        older = todo(2, 5, 100)
        ranked = rank([newer, older], s, NOW)
        assert ranked[0]["score"] == ranked[1]["score"]
        assert [t["id"] for t in ranked] == [2, 1]

    def test_identical_created_at_ties_break_on_id(self):
        items = [todo(3, 5, 10), todo(1, 5, 10), todo(2, 5, 10)]
        assert [t["id"] for t in rank(items, DEFAULT, NOW)] == [1, 2, 3]

    def test_string_ids_tie_break(self):
        items = [todo("b", 5, 10), todo("a", 5, 10)]
        assert [t["id"] for t in rank(items, DEFAULT, NOW)] == ["a", "b"]

    def test_sorted_by_descending_score(self):
        ranked = rank(random_todos(), DEFAULT, NOW)
        scores = [t["score"] for t in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_completeness(self):
        items = random_todos()
        ranked = rank(items, DEFAULT, NOW)
        assert len(ranked) == len(items)
        assert sorted(t["id"] for t in ranked) == sorted(t["id"] for t in items)

    def test_idempotent(self):
        once = rank(random_todos(), DEFAULT, NOW)
        twice = rank(once, DEFAULT, NOW)
        assert [t["id"] for t in twice] == [t["id"] for t in once]

    @pytest.mark.parametrize("seed", [1, 2, 3])
    def test_deterministic_regardless_of_input_order(self, seed):
        items = random_todos()
        shuffled = items[:]
        random.Random(seed).shuffle(shuffled)
        expected = rank(items, DEFAULT, NOW)
        assert rank(shuffled, DEFAULT, NOW) == expected
        assert rank(items, DEFAULT, NOW) == expected

    def test_inputs_are_not_mutated(self):
        items = random_todos()
        snapshot = copy.deepcopy(items)
        ranked = rank(items, DEFAULT, NOW)
        assert items == snapshot
        assert all("score" not in t for t in items)
        # Other fields pass through unchanged
        by_id = {t["id"]: t for t in snapshot}
        for r in ranked:
            assert {k: v for k, v in r.items() if k != "score"} == by_id[r["id"]]

    def test_malformed_todos_do_not_raise(self):
        items = [
            {"id": 1, "priority": None, "created_at": None},
            {"id": 2, "priority": -4, "created_at": "garbage"},
            {"id": 3, "priority": 99},
            {"id": 4, "priority": "9", "created_at": (NOW - timedelta(days=2)).isoformat()},
            {"id": 5, "priority": 5, "created_at": NOW + timedelta(days=1)},
        ]
        ranked = rank(items, DEFAULT, NOW)
        assert [t["id"] for t in ranked] == [3, 4, 5, 1, 2]
        assert all(math.isfinite(t["score"]) for t in ranked)

    def test_out_of_range_priority_ranks_like_bounds(self):
        over = rank([todo(1, 42, 0)], DEFAULT, NOW)[0]["score"]
        top = rank([todo(1, 10, 0)], DEFAULT, NOW)[0]["score"]
        assert over == top

    @pytest.mark.parametrize("now", [None, "garbage", 12345])
    def test_unusable_now_scores_every_item_at_age_zero(self, now):
        items = [todo(1, 5, 1), todo(2, 5, 50), todo(3, 9, 0), {"id": 4, "priority": 5}]
        ranked = rank(items, DEFAULT, now)
        assert [t["id"] for t in ranked] == [3, 2, 1, 4]
        assert [t["score"] for t in ranked] == [score_nonlinear(9, 0, DEFAULT)] + [score_nonlinear(5, 0, DEFAULT)] * 3

    def test_naive_now_accepted(self):
        ranked = rank([todo(1, 5, 1), todo(2, 5, 50)], DEFAULT, NOW.replace(tzinfo=None))
        assert [t["id"] for t in ranked] == [2, 1]

    def test_linear_algorithm(self):
        fresh_urgent = todo(1, 10, 0)
        month_old_low = todo(2, 1, 720)
        ranked = rank([fresh_urgent, month_old_low], DEFAULT, NOW, ScoringAlgorithm.LINEAR)
        assert [t["id"] for t in ranked] == [2, 1]

    def test_ranking_depends_on_now(self):
        items = [todo(1, 5, 0), todo(2, 5, 0)]
        items[1]["created_at"] = NOW - timedelta(hours=1)
        later = rank(items, DEFAULT, NOW + timedelta(days=10))
        assert later[0]["score"] > rank(items, DEFAULT, NOW)[0]["score"]
