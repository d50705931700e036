from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

import crud
from auth import SessionUser, optional_user
from database import get_db
from schemas import DEFAULT_PAGE_SIZE, ExplorePage, ExploreParams

router = APIRouter(prefix="/api", tags=["explore"])


def explore_params(
    q: str = Query("", description="Matches title, cast, director, genre, or studio"),
    genre: str = "",
    cast: str = "",
    director: str = "",
    studio: str = "",
    released_from: Optional[date] = None,
    released_to: Optional[date] = None,
    sort: str = Query("title", description="title, avg_rating, duration, genre, studio, or release_date"),
    order: str = "asc",
    page: int = 1,
    pageSize: int = DEFAULT_PAGE_SIZE,
) -> ExploreParams:
    return ExploreParams(
        q=q,
        genre=genre,
        cast=cast,
        director=director,
        studio=studio,
        released_from=released_from,
        released_to=released_to,
        sort=sort,
        order=order,
        page=page,
        pageSize=pageSize,
    )


@router.get("/explore", response_model=ExplorePage, summary="Search and browse movies")
def explore(
    params: ExploreParams = Depends(explore_params),
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    """
    Filtered, sorted, paginated catalogue. `total` counts every match regardless of
    page; unknown sort keys fall back to title and paging values are clamped.
    """
    return crud.explore(db, params, user.userId if user else None)
