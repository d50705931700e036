from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

import crud
from auth import SessionUser, require_user
from database import get_db

router = APIRouter(prefix="/api", tags=["recommendations"])


def feed_sort(sortBy: str = Query("watches", description="rating, or anything else for watches")) -> str:
    return "rating" if sortBy == "rating" else "watches"


@router.get("/recommendations/new-releases", summary="Released this month")
def new_releases(sort_by: str = Depends(feed_sort), db: Session = Depends(get_db)):
    """Top five movies with a platform release in the current calendar month."""
    return {"movies": crud.new_releases(db, sort_by)}


@router.get("/recommendations/popular-recent", summary="Popular in the last 90 days")
def popular_recent(sort_by: str = Depends(feed_sort), db: Session = Depends(get_db)):
    return {"movies": crud.popular_recent(db, sort_by)}


@router.get("/recommendations/popular-following", summary="Popular among people I follow")
def popular_following(
    sort_by: str = Depends(feed_sort),
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_user),
):
    """
    Movies the followed users watched, with how many of them watched it, their total
    plays, and their average rating. `hasFollowing` tells an empty feed apart from
    not following anyone.
    """
    return crud.popular_following(db, user.userId, sort_by)


@router.get("/recommendations/personalized", summary="Personalized recommendations")
def personalized(db: Session = Depends(get_db), user: SessionUser = Depends(require_user)):
    """Unwatched movies ranked by the caller's taste profile and similar users' approval."""
    print(f"Getting recommendations for user_id: {user.userId}")
    recs = crud.personalized(db, user.userId)
    print(f"Returning {len(recs)} recommendations.")
    return {"movies": recs}


@router.get("/rankings/popular-following", summary="Ranking by plays among people I follow")
def ranking_popular_following(db: Session = Depends(get_db), user: SessionUser = Depends(require_user)):
    return {"movies": crud.ranking_popular_following(db, user.userId)}
