from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

import crud
from auth import SessionUser, require_user
from database import get_db
from schemas import FollowRequest, FollowUser

router = APIRouter(prefix="/api/follows", tags=["follows"])


@router.post("", status_code=status.HTTP_201_CREATED, summary="Follow a user by email")
def follow(body: FollowRequest, db: Session = Depends(get_db), user: SessionUser = Depends(require_user)):
    """Following someone twice is not an error. You cannot follow yourself."""
    target_id = crud.follow(db, user.userId, body.email)
    print(f"User {user.userId} now follows user {target_id}")
    return {"ok": True, "followingUserId": target_id}


@router.delete("", status_code=status.HTTP_204_NO_CONTENT, summary="Unfollow a user by email")
def unfollow(body: FollowRequest, db: Session = Depends(get_db), user: SessionUser = Depends(require_user)):
    crud.unfollow(db, user.userId, body.email)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/following", response_model=List[FollowUser], summary="Users I follow")
def following(db: Session = Depends(get_db), user: SessionUser = Depends(require_user)):
    return crud.list_following(db, user.userId)


@router.get("/followers", response_model=List[FollowUser], summary="Users following me")
def followers(db: Session = Depends(get_db), user: SessionUser = Depends(require_user)):
    return crud.list_followers(db, user.userId)
