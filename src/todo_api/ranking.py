"""
Relevance ranking for todos.

The score combines priority and age:

    priority_score = priority^2 * (priority_weight * 10 + 1)
    normalized_age = ln(age_hours + 1) / ln(24 * 30 + 1) * 10
    age_score      = normalized_age * age_weight * (priority_weight + 0.1)
    score          = priority_score + age_score

Squaring priority keeps large priority gaps ahead of any realistic age, so age
only reorders items inside similar priority bands. The log scale maps about a
month of age onto 0..10 and grows slowly after that.

`rank` is pure: the clock is a parameter and todos are copied, never mutated.
Ties on score are broken by created_at ascending, then id ascending.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .models import RankedTodo
from .schemas import SortSettings

MIN_PRIORITY = 1
MAX_PRIORITY = 10

# Age at which normalized_age reaches 10.
AGE_HORIZON_HOURS = 24 * 30
_AGE_LOG_SCALE = math.log(AGE_HORIZON_HOURS + 1)

# Keeps log1p finite for absurd inputs; roughly 100k years.
MAX_AGE_HOURS = 1e9

# Tie-break stand-in for a missing created_at when `now` is unusable too.
_LATEST = datetime.max.replace(tzinfo=timezone.utc)


# PUBLIC_INTERFACE
class ScoringAlgorithm(str, Enum):
    """Available score formulas. NONLINEAR is the default; LINEAR is kept for compatibility."""

    NONLINEAR = "nonlinear"
    LINEAR = "linear"


# PUBLIC_INTERFACE
def clamp_priority(value: Any) -> float:
    """
    Coerce a stored priority into [1, 10].

    Missing, non-numeric and NaN priorities rank as the lowest priority.
    """
    try:
        p = float(value)
    except (TypeError, ValueError):
        return float(MIN_PRIORITY)
    if math.isnan(p):
        return float(MIN_PRIORITY)
    return float(max(MIN_PRIORITY, min(MAX_PRIORITY, p)))


# PUBLIC_INTERFACE
def clamp_age(hours: Any) -> float:
    """Coerce an age in hours into [0, MAX_AGE_HOURS]; NaN and garbage become 0."""
    try:
        h = float(hours)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(h) or h <= 0:
        return 0.0
    return min(h, MAX_AGE_HOURS)


def _as_utc(value: Any) -> Optional[datetime]:
    """Return an aware datetime for datetimes and ISO strings; naive values are taken as UTC."""
    if isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(s)
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# PUBLIC_INTERFACE
def age_hours(created_at: Any, now: Union[datetime, str]) -> float:
    """
    Hours elapsed between `created_at` and `now`.

    Missing or unparseable timestamps, and creation times in the future, give 0.
    """
    created = _as_utc(created_at)
    current = _as_utc(now)
    if created is None or current is None:
        return 0.0
    return clamp_age((current - created).total_seconds() / 3600.0)


# PUBLIC_INTERFACE
def score_nonlinear(priority: Any, hours: Any, settings: SortSettings) -> float:
    """Priority-dominant score with logarithmic age tie-breaking."""
    p = clamp_priority(priority)
    a = clamp_age(hours)
    priority_score = p * p * (settings.priority_weight * 10 + 1)
    normalized_age = math.log1p(a) / _AGE_LOG_SCALE * 10
    # +0.1 keeps age contributing whenever age_weight > 0, even at priority_weight 0.
    age_score = normalized_age * (settings.age_weight * (settings.priority_weight + 0.1))
    return priority_score + age_score


# PUBLIC_INTERFACE
def score_linear(priority: Any, hours: Any, settings: SortSettings) -> float:
    """
    Legacy weighted sum: hours * age_weight + priority * priority_weight.

    Raw hours grow without bound, so old low-priority items eventually outrank
    new high-priority ones.
    """
    p = clamp_priority(priority)
    a = clamp_age(hours)
    return a * settings.age_weight + p * settings.priority_weight


_SCORERS: Dict[ScoringAlgorithm, Callable[[Any, Any, SortSettings], float]] = {
    ScoringAlgorithm.NONLINEAR: score_nonlinear,
    ScoringAlgorithm.LINEAR: score_linear,
}


# PUBLIC_INTERFACE
def compute_score(
    priority: Any,
    hours: Any,
    settings: SortSettings,
    algorithm: Union[ScoringAlgorithm, str] = ScoringAlgorithm.NONLINEAR,
) -> float:
    """Score one item with the selected algorithm. Always returns a finite float."""
    return _SCORERS[ScoringAlgorithm(algorithm)](priority, hours, settings)


def _id_key(value: Any) -> Tuple[int, float, str]:
    # Numeric ids compare numerically, anything else by its string form.
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, float(value), "")
    if value is None:
        return (2, 0.0, "")
    return (1, 0.0, str(value))


# PUBLIC_INTERFACE
def rank(
    todos: Iterable[Mapping[str, Any]],
    settings: SortSettings,
    now: Union[datetime, str],
    algorithm: Union[ScoringAlgorithm, str] = ScoringAlgorithm.NONLINEAR,
) -> List[RankedTodo]:
    """
    Order todos by descending score.

    Args:
        todos: Any iterable of todo mappings; only `priority`, `created_at` and
            `id` are read.
        settings: Validated weights.
        now: Reference instant used to compute ages.
        algorithm: Score formula to use.

    Returns:
        New dicts (input items are not modified), each a copy of the input with
        a `score` key, ordered by (score desc, created_at asc, id asc). Items
        without a usable created_at count as age 0 and tie-break as if created
        at `now`. An unusable `now` scores every item at age 0, so the order
        falls back to priority, then created_at, then id.
    """
    scorer = _SCORERS[ScoringAlgorithm(algorithm)]
    current = _as_utc(now)
    latest = current or _LATEST

    keyed: List[Tuple[Tuple[float, datetime, Tuple[int, float, str]], Dict[str, Any]]] = []
    for todo in todos:
        created = _as_utc(todo.get("created_at"))
        ranked = dict(todo)
        ranked["score"] = scorer(todo.get("priority"), age_hours(created, current), settings)
        keyed.append(((-ranked["score"], created or latest, _id_key(todo.get("id"))), ranked))

    keyed.sort(key=lambda pair: pair[0])
    return [ranked for _, ranked in keyed]  # type: ignore[misc]
