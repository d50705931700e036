from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

import crud
from auth import SessionUser, optional_user, require_user
from database import get_db
from schemas import RateRequest, TopSort, WatchRequest

router = APIRouter(prefix="/api", tags=["movies"])


@router.get("/genres", summary="All genres")
def list_genres(db: Session = Depends(get_db)):
    return crud.list_genres(db)


# Declared before /movie/{mov_uid} so "top" is not parsed as an id
@router.get("/movie/top", summary="My top movies")
def top_movies(
    sort: TopSort = Query("combo", description="rating, plays, or combo (rating*10 + plays)"),
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_user),
):
    """The signed-in user's ten best movies by their own rating, play count, or both."""
    return {"sort": sort, "movies": crud.top_movies(db, user.userId, sort)}


@router.get("/movie/{mov_uid}", summary="Get movie by ID")
def get_movie(
    mov_uid: int,
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    """Movie detail with credits and aggregate rating; includes the caller's own activity when signed in."""
    return crud.get_movie_detail(db, mov_uid, user.userId if user else None)


@router.put("/movie/{mov_uid}/rate", summary="Rate a movie")
def rate_movie(
    mov_uid: int,
    body: RateRequest,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_user),
):
    """Creates or replaces the caller's rating (1-5) for the movie."""
    crud.rate_movie(db, user.userId, mov_uid, body.rating_value, body.rated_at)
    print(f"Rating saved for user {user.userId}, movie {mov_uid}: {body.rating_value}")
    return {"ok": True, "mov_uid": mov_uid, "rating_value": body.rating_value}


@router.delete("/movie/{mov_uid}/rate", status_code=status.HTTP_204_NO_CONTENT, summary="Remove my rating")
def unrate_movie(
    mov_uid: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_user),
):
    crud.unrate_movie(db, user.userId, mov_uid)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/movie/{mov_uid}/watch", summary="Mark a movie watched")
def watch_movie(
    mov_uid: int,
    body: Optional[WatchRequest] = None,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_user),
):
    """Records one viewing. Every call adds a row; the date defaults to now."""
    crud.watch_movie(db, user.userId, mov_uid, body.date if body else None)
    return {"ok": True, "mov_uid": mov_uid}
