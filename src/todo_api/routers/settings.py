from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from .. import sort_settings
from ..auth import get_current_user
from ..dependencies import get_repo
from ..repositories import Repository
from ..schemas import SortSettings

router = APIRouter(
    prefix="/api/v1/settings",
    tags=["settings"],
)

_INVALID = {400: {"description": "Invalid settings values"}}


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=SortSettings,
    summary="Get Sort Settings",
    description="Return the caller's ranking weights, or the defaults when none were saved.",
)
def read_settings(repo: Repository = Depends(get_repo), user_id: str = Depends(get_current_user)) -> SortSettings:
    return sort_settings.get_settings(repo, user_id)


# PUBLIC_INTERFACE
@router.put(
    "",
    response_model=SortSettings,
    summary="Save Sort Settings",
    description="Store both ranking weights (each between 0 and 1). Invalid values are rejected with 400.",
    responses=_INVALID,
)
def write_settings(
    payload: Any = Body(..., examples=[{"ageWeight": 0.5, "priorityWeight": 0.5}]),
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> SortSettings:
    # Validated here rather than by FastAPI so bad weights answer 400, not 422.
    return sort_settings.set_settings(repo, user_id, payload)


# PUBLIC_INTERFACE
@router.patch(
    "",
    response_model=SortSettings,
    summary="Update Sort Settings",
    description="Change one or both weights, keeping the current value of the other.",
    responses=_INVALID,
)
def patch_settings(
    payload: Any = Body(..., examples=[{"ageWeight": 0.2}]),
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> SortSettings:
    return sort_settings.update_settings(repo, user_id, payload)


# PUBLIC_INTERFACE
@router.delete(
    "",
    response_model=SortSettings,
    summary="Reset Sort Settings",
    description="Delete saved weights and return the defaults.",
)
def delete_settings(repo: Repository = Depends(get_repo), user_id: str = Depends(get_current_user)) -> SortSettings:
    return sort_settings.reset_settings(repo, user_id)
