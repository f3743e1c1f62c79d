from __future__ import annotations

from typing import Any, Mapping, Optional

from loguru import logger
from pydantic import ValidationError

from .errors import InvalidSortSettings
from .repositories import Repository
from .schemas import SortSettings

# An older settings form defaulted ageWeight to 0.1; 0.5/0.5 is the current default.
DEFAULT_SORT_SETTINGS = SortSettings(age_weight=0.5, priority_weight=0.5)

_WEIGHT_KEYS = {"age_weight", "ageWeight", "priority_weight", "priorityWeight"}


# PUBLIC_INTERFACE
def parse_sort_settings(data: Any) -> SortSettings:
    """
    Validate raw input into SortSettings.

    Accepts a SortSettings instance or a mapping with camelCase or snake_case
    keys. Raises InvalidSortSettings for missing, non-numeric or out-of-range
    weights.
    """
    if isinstance(data, SortSettings):
        return data
    if not isinstance(data, Mapping):
        raise InvalidSortSettings(errors=[{"msg": "settings must be a JSON object"}])
    try:
        return SortSettings.model_validate(dict(data))
    except ValidationError as e:
        raise InvalidSortSettings(errors=e.errors(include_url=False, include_context=False)) from e


# PUBLIC_INTERFACE
def get_settings(repo: Repository, user_id: str) -> SortSettings:
    """Return the user's stored settings, or the defaults when none are stored. Never writes."""
    stored = repo.get_sort_settings(user_id)
    return stored if stored is not None else DEFAULT_SORT_SETTINGS


# PUBLIC_INTERFACE
def set_settings(repo: Repository, user_id: str, data: Any) -> SortSettings:
    """
    Validate and store settings for a user (insert or update).

    Invalid input raises InvalidSortSettings before the store is touched, so
    the previously stored value stays in place.
    """
    try:
        settings = parse_sort_settings(data)
    except InvalidSortSettings:
        logger.warning(f"[settings] rejected invalid settings for user={user_id}: {data!r}")
        raise
    saved = repo.save_sort_settings(user_id, settings)
    logger.info(
        f"[settings] saved user={user_id} age_weight={saved.age_weight} priority_weight={saved.priority_weight}"
    )
    return saved


# PUBLIC_INTERFACE
def update_settings(repo: Repository, user_id: str, changes: Optional[Mapping[str, Any]]) -> SortSettings:
    """Merge a partial change (either weight, either naming style) into the current settings and store it."""
    if changes is not None and not isinstance(changes, Mapping):
        raise InvalidSortSettings(errors=[{"msg": "settings must be a JSON object"}])
    if not any(key in _WEIGHT_KEYS for key in (changes or {})):
        logger.warning(f"[settings] rejected update without weights for user={user_id}: {changes!r}")
        raise InvalidSortSettings(errors=[{"msg": "at least one of ageWeight, priorityWeight is required"}])
    merged = get_settings(repo, user_id).model_dump(by_alias=True)
    for key, value in (changes or {}).items():
        if key in ("age_weight", "ageWeight"):
            merged["ageWeight"] = value
        elif key in ("priority_weight", "priorityWeight"):
            merged["priorityWeight"] = value
    return set_settings(repo, user_id, merged)


# PUBLIC_INTERFACE
def reset_settings(repo: Repository, user_id: str) -> SortSettings:
    """Delete stored settings; subsequent reads return the defaults."""
    removed = repo.delete_sort_settings(user_id)
    logger.info(f"[settings] reset user={user_id} removed={removed}")
    return DEFAULT_SORT_SETTINGS
