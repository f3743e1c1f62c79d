from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from ..auth import get_current_user
from ..dependencies import get_repo
from ..errors import DuplicateTag
from ..repositories import Repository
from ..schemas import TagCreate, TagOut, TagUpdate

router = APIRouter(
    prefix="/api/v1/tags",
    tags=["tags"],
)


# PUBLIC_INTERFACE
@router.get("/", response_model=List[TagOut], summary="List Tags", description="List the caller's tags ordered by name.")
def list_tags(repo: Repository = Depends(get_repo), user_id: str = Depends(get_current_user)) -> List[TagOut]:
    return [TagOut(**t) for t in repo.list_tags(user_id)]  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TagOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Tag",
    responses={409: {"description": "Tag name already exists"}},
)
def create_tag(
    payload: TagCreate,
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> TagOut:
    try:
        created = repo.create_tag(user_id, payload)
    except DuplicateTag as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    logger.info(f"[tags] created id={created['id']} name={created['name']!r} user={user_id}")
    return TagOut(**created)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.patch(
    "/{tag_id}",
    response_model=TagOut,
    summary="Rename Tag",
    responses={404: {"description": "Tag not found"}, 409: {"description": "Tag name already exists"}},
)
def update_tag(
    tag_id: int,
    payload: TagUpdate,
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> TagOut:
    try:
        updated = repo.update_tag(user_id, tag_id, payload)
    except DuplicateTag as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tag not found")
    return TagOut(**updated)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.delete(
    "/{tag_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Tag",
    description="Delete a tag; it is removed from every todo that carried it.",
    responses={404: {"description": "Tag not found"}},
)
def delete_tag(
    tag_id: int,
    repo: Repository = Depends(get_repo),
    user_id: str = Depends(get_current_user),
) -> None:
    if not repo.delete_tag(user_id, tag_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tag not found")
    logger.info(f"[tags] deleted id={tag_id} user={user_id}")
    return None
