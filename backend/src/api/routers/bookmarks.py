"""Bookmark list/add/delete endpoints over the live collection."""
from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_view_controller, require_identity
from schemas.bookmark import BookmarkCreate
from services.view_controller import ViewController, ViewState

router = APIRouter(prefix="/bookmarks", tags=["bookmarks"])


@router.get("/", response_model=ViewState)
async def get_view_state(
    controller: ViewController = Depends(get_view_controller),
) -> ViewState:
    """Current identity, bookmarks (newest first) and pending form input."""
    return controller.render()


@router.post("/", response_model=ViewState, status_code=202)
async def add_bookmark(
    data: BookmarkCreate,
    controller: ViewController = Depends(require_identity),
) -> ViewState:
    """
    Add a bookmark.

    Returns 202: the bookmark shows up in the collection once its insert
    event arrives from the Change Feed.
    """
    controller.set_form(title=data.title, url=data.url)
    if not await controller.submit():
        raise HTTPException(status_code=502, detail=controller.error)
    return controller.render()


@router.delete("/{bookmark_id}", status_code=202)
async def delete_bookmark(
    bookmark_id: str,
    controller: ViewController = Depends(require_identity),
) -> None:
    """Delete a bookmark; it leaves the collection when its delete event arrives."""
    if not controller.has_bookmark(bookmark_id):
        raise HTTPException(status_code=404, detail="Bookmark not found")
    if not await controller.delete(bookmark_id):
        raise HTTPException(status_code=502, detail=controller.error)
