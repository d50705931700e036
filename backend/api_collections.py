from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

import crud
from api_auth import validate
from auth import SessionUser, require_user
from database import get_db
from errors import BadRequest
from schemas import (
    CollectionCreate,
    CollectionMovieAdd,
    CollectionMovieRemove,
    CollectionMovieRow,
    CollectionRename,
    CollectionResponse,
)

router = APIRouter(prefix="/api/collections", tags=["collections"])


@router.get("", response_model=List[CollectionResponse], summary="List my collections")
def list_collections(db: Session = Depends(get_db), user: SessionUser = Depends(require_user)):
    """Collections owned by the signed-in user with their movie counts, by name descending."""
    return crud.list_collections(db, user.userId)


@router.post("", response_model=CollectionResponse, status_code=status.HTTP_201_CREATED, summary="Create a collection")
def create_collection(
    body: CollectionCreate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_user),
):
    collection = crud.create_collection(db, user.userId, body.name)
    print(f"Collection created: ID={collection['collectionId']} for user {user.userId}")
    return collection


@router.patch("/{collection_id}", summary="Rename a collection")
def rename_collection(
    collection_id: int,
    body: CollectionRename,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_user),
):
    return crud.rename_collection(db, user.userId, collection_id, body.name)


@router.delete("/{collection_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a collection")
def delete_collection(
    collection_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_user),
):
    """Deletes the collection and its memberships. Someone else's collection is reported as missing."""
    crud.delete_collection(db, user.userId, collection_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Membership ---

@router.get("/{collection_id}/movie", response_model=List[CollectionMovieRow], summary="Movies in a collection")
def list_collection_movies(
    collection_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_user),
):
    return crud.list_collection_movies(db, user.userId, collection_id)


@router.post("/{collection_id}/movie", status_code=status.HTTP_201_CREATED, summary="Add a movie to a collection")
def add_collection_movie(
    collection_id: int,
    body: CollectionMovieAdd,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_user),
):
    """
    Add by movUid, or by title (optionally narrowed by release year).
    An ambiguous title answers 409 with the candidate movies in `choices`.
    Adding a movie that is already a member succeeds without a duplicate row.
    """
    return crud.add_movie_to_collection(
        db, user.userId, collection_id, mov_uid=body.movUid, title=body.title, year=body.year
    )


async def removal_target(request: Request, movUid: Optional[int] = Query(None)) -> int:
    """movUid from the query string, else from a JSON body."""
    if movUid is not None:
        return movUid
    if not await request.body():
        raise BadRequest("movUid is required")
    try:
        data = await request.json()
    except ValueError:
        raise BadRequest("Invalid JSON body")
    return validate(CollectionMovieRemove, data if isinstance(data, dict) else {}).movUid


@router.delete("/{collection_id}/movie", status_code=status.HTTP_204_NO_CONTENT, summary="Remove a movie from a collection")
def remove_collection_movie(
    collection_id: int,
    user: SessionUser = Depends(require_user),
    mov_uid: int = Depends(removal_target),
    db: Session = Depends(get_db),
):
    crud.remove_movie_from_collection(db, user.userId, collection_id, mov_uid)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
