"""
Server-rendered pages.

Pages call the same query layer as the JSON API. Mutations are plain form posts
answered with a redirect back to the page (POST/redirect/GET); a failed mutation
renders the page again from the database with the error message shown.
"""

import os
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from sqlalchemy.orm import Session

import auth
import crud
from api_explore import explore_params
from auth import SessionUser, optional_user
from database import get_db
from errors import AppError, BadRequest
from models import utcnow
from schemas import ExploreParams, SignUpRequest

TEMPLATES_DIR = os.path.join(os.path.dirname(__file__), "templates")
templates = Jinja2Templates(directory=TEMPLATES_DIR)

router = APIRouter(include_in_schema=False)


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


def _render(request: Request, name: str, user: Optional[SessionUser], status_code: int = 200, **context):
    context.setdefault("error", None)
    context["user"] = user
    return templates.TemplateResponse(request, name, context, status_code=status_code)


def _sign_in_required():
    return _redirect("/sign-in")


def _int_or_none(value: str) -> Optional[int]:
    value = (value or "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        raise BadRequest(f"Not a number: {value}")


def _validation_message(e: ValidationError) -> str:
    first = e.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ()))
    return f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid input")


# --- Landing / Auth ---

@router.get("/")
def landing(request: Request, user: Optional[SessionUser] = Depends(optional_user)):
    return _render(request, "landing.html", user)


@router.get("/sign-in")
def sign_in_page(request: Request, user: Optional[SessionUser] = Depends(optional_user)):
    if user is not None:
        return _redirect("/home")
    return _render(request, "sign_in.html", None, registered=request.query_params.get("registered"))


@router.post("/sign-in")
def sign_in(
    request: Request,
    id: str = Form(""),
    password: str = Form(""),
    db: Session = Depends(get_db),
):
    found = crud.authenticate(db, id.strip(), password) if id.strip() and password else None
    if found is None:
        print(f"Login failed for: {id}")
        return _render(request, "sign_in.html", None, status.HTTP_401_UNAUTHORIZED, error="Invalid credentials", ident=id)
    response = _redirect("/home")
    auth.create_session(response, crud.session_user(found))
    return response


@router.get("/sign-up")
def sign_up_page(request: Request, user: Optional[SessionUser] = Depends(optional_user)):
    if user is not None:
        return _redirect("/home")
    return _render(request, "sign_up.html", None, form={})


@router.post("/sign-up")
def sign_up(
    request: Request,
    firstName: str = Form(""),
    lastName: str = Form(""),
    email: str = Form(""),
    username: str = Form(""),
    password: str = Form(""),
    db: Session = Depends(get_db),
):
    form = {"firstName": firstName, "lastName": lastName, "email": email, "username": username}
    try:
        data = SignUpRequest.model_validate({**form, "password": password})
        crud.create_user(db, data)
    except ValidationError as e:
        return _render(request, "sign_up.html", None, status.HTTP_400_BAD_REQUEST, error=_validation_message(e), form=form)
    except AppError as e:
        return _render(request, "sign_up.html", None, e.status_code, error=e.message, form=form)
    return _redirect("/sign-in?registered=1")


@router.get("/sign-out")
def sign_out():
    response = _redirect("/")
    auth.clear_session(response)
    return response


# --- Collections ---

def _home(request: Request, db: Session, user: SessionUser, error: Optional[str] = None, status_code: int = 200):
    collections = crud.list_collections(db, user.userId)
    return _render(request, "home.html", user, status_code, collections=collections, error=error)


@router.get("/home")
def home(request: Request, db: Session = Depends(get_db), user: Optional[SessionUser] = Depends(optional_user)):
    if user is None:
        return _sign_in_required()
    return _home(request, db, user)


@router.post("/home/collections")
def home_create(
    request: Request,
    name: str = Form(""),
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    if user is None:
        return _sign_in_required()
    try:
        if not name.strip():
            raise BadRequest("Collection name is required")
        crud.create_collection(db, user.userId, name.strip())
    except AppError as e:
        return _home(request, db, user, e.message, e.status_code)
    return _redirect("/home")


@router.post("/home/collections/{collection_id}/rename")
def home_rename(
    request: Request,
    collection_id: int,
    name: str = Form(""),
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    if user is None:
        return _sign_in_required()
    try:
        if not name.strip():
            raise BadRequest("Collection name is required")
        crud.rename_collection(db, user.userId, collection_id, name.strip())
    except AppError as e:
        return _home(request, db, user, e.message, e.status_code)
    return _redirect("/home")


@router.post("/home/collections/{collection_id}/delete")
def home_delete(
    request: Request,
    collection_id: int,
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    if user is None:
        return _sign_in_required()
    try:
        crud.delete_collection(db, user.userId, collection_id)
    except AppError as e:
        return _home(request, db, user, e.message, e.status_code)
    return _redirect("/home")


def _collection(request, db, user, collection_id, error=None, status_code=200, choices=None):
    collection = crud.get_owned_collection(db, user.userId, collection_id)
    movies = crud.list_collection_movies(db, user.userId, collection_id)
    return _render(
        request,
        "collection.html",
        user,
        status_code,
        collection=collection,
        movies=movies,
        choices=choices or [],
        error=error,
    )


@router.get("/home/{collection_id}")
def collection_page(
    request: Request,
    collection_id: int,
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    if user is None:
        return _sign_in_required()
    try:
        return _collection(request, db, user, collection_id)
    except AppError as e:
        return _home(request, db, user, e.message, e.status_code)


@router.post("/home/{collection_id}/add")
def collection_add(
    request: Request,
    collection_id: int,
    movUid: str = Form(""),
    title: str = Form(""),
    year: str = Form(""),
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    if user is None:
        return _sign_in_required()
    try:
        mov_uid = _int_or_none(movUid)
        if mov_uid is None and not title.strip():
            raise BadRequest("Provide a movie id or title")
        crud.add_movie_to_collection(
            db, user.userId, collection_id, mov_uid=mov_uid, title=title.strip(), year=_int_or_none(year)
        )
    except AppError as e:
        try:
            return _collection(
                request, db, user, collection_id, e.message, e.status_code, choices=e.extra.get("choices")
            )
        except AppError as missing:
            return _home(request, db, user, missing.message, missing.status_code)
    return _redirect(f"/home/{collection_id}")


@router.post("/home/{collection_id}/remove")
def collection_remove(
    request: Request,
    collection_id: int,
    movUid: int = Form(...),
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    if user is None:
        return _sign_in_required()
    try:
        crud.remove_movie_from_collection(db, user.userId, collection_id, movUid)
    except AppError as e:
        try:
            return _collection(request, db, user, collection_id, e.message, e.status_code)
        except AppError as missing:
            return _home(request, db, user, missing.message, missing.status_code)
    return _redirect(f"/home/{collection_id}")


# --- Explore ---

@router.get("/explore")
def explore_page(
    request: Request,
    params: ExploreParams = Depends(explore_params),
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    result = crud.explore(db, params, user.userId if user else None)
    pages = max(1, -(-result["total"] // params.pageSize))
    return _render(
        request,
        "explore.html",
        user,
        params=params,
        result=result,
        pages=pages,
        genres=crud.list_genres(db),
    )


def _movie(request, db, user, mov_uid, error=None, status_code=200):
    movie = crud.get_movie_detail(db, mov_uid, user.userId if user else None)
    collections = crud.list_collections(db, user.userId) if user else []
    return _render(request, "movie.html", user, status_code, movie=movie, collections=collections, error=error)


@router.get("/explore/{mov_uid}")
def movie_page(
    request: Request,
    mov_uid: int,
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    try:
        return _movie(request, db, user, mov_uid)
    except AppError as e:
        return _render(request, "not_found.html", user, e.status_code, error=e.message)


@router.post("/explore/{mov_uid}/rate")
def movie_rate(
    request: Request,
    mov_uid: int,
    rating_value: str = Form(""),
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    if user is None:
        return _sign_in_required()
    try:
        value = _int_or_none(rating_value)
        if value is None:
            crud.unrate_movie(db, user.userId, mov_uid)
        else:
            crud.rate_movie(db, user.userId, mov_uid, value)
    except AppError as e:
        return _movie_error(request, db, user, mov_uid, e)
    return _redirect(f"/explore/{mov_uid}")


@router.post("/explore/{mov_uid}/watch")
def movie_watch(
    request: Request,
    mov_uid: int,
    watched_on: Optional[date] = Form(None),
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    if user is None:
        return _sign_in_required()
    try:
        when = None
        if watched_on is not None:
            when = utcnow().replace(year=watched_on.year, month=watched_on.month, day=watched_on.day)
        crud.watch_movie(db, user.userId, mov_uid, when)
    except AppError as e:
        return _movie_error(request, db, user, mov_uid, e)
    return _redirect(f"/explore/{mov_uid}")


@router.post("/explore/{mov_uid}/collect")
def movie_collect(
    request: Request,
    mov_uid: int,
    collectionId: int = Form(...),
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    if user is None:
        return _sign_in_required()
    try:
        crud.add_movie_to_collection(db, user.userId, collectionId, mov_uid=mov_uid)
    except AppError as e:
        return _movie_error(request, db, user, mov_uid, e)
    return _redirect(f"/explore/{mov_uid}")


def _movie_error(request, db, user, mov_uid, e: AppError):
    try:
        return _movie(request, db, user, mov_uid, e.message, e.status_code)
    except AppError as missing:
        return _render(request, "not_found.html", user, missing.status_code, error=missing.message)


# --- Community ---

def _community(request, db, user, error=None, status_code=200, email=""):
    return _render(
        request,
        "community.html",
        user,
        status_code,
        following=crud.list_following(db, user.userId),
        followers=crud.list_followers(db, user.userId),
        error=error,
        email=email,
    )


@router.get("/community")
def community(request: Request, db: Session = Depends(get_db), user: Optional[SessionUser] = Depends(optional_user)):
    if user is None:
        return _sign_in_required()
    return _community(request, db, user)


@router.post("/community/follow")
def community_follow(
    request: Request,
    email: str = Form(""),
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    if user is None:
        return _sign_in_required()
    try:
        if not email.strip():
            raise BadRequest("Email is required")
        crud.follow(db, user.userId, email.strip())
    except AppError as e:
        return _community(request, db, user, e.message, e.status_code, email)
    return _redirect("/community")


@router.post("/community/unfollow")
def community_unfollow(
    request: Request,
    email: str = Form(""),
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    if user is None:
        return _sign_in_required()
    try:
        crud.unfollow(db, user.userId, email.strip())
    except AppError as e:
        return _community(request, db, user, e.message, e.status_code)
    return _redirect("/community")


# --- Recommendations / Profile ---

@router.get("/recommendations")
def recommendations(
    request: Request,
    sortBy: str = "watches",
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    if user is None:
        return _sign_in_required()
    sort_by = "rating" if sortBy == "rating" else "watches"
    following = crud.popular_following(db, user.userId, sort_by)
    return _render(
        request,
        "recommendations.html",
        user,
        sort_by=sort_by,
        new_releases=crud.new_releases(db, sort_by),
        popular_recent=crud.popular_recent(db, sort_by),
        popular_following=following["movies"],
        has_following=following["hasFollowing"],
        personalized=crud.personalized(db, user.userId),
    )


@router.get("/profile")
def profile(
    request: Request,
    sort: str = "combo",
    db: Session = Depends(get_db),
    user: Optional[SessionUser] = Depends(optional_user),
):
    if user is None:
        return _sign_in_required()
    sort = sort if sort in ("rating", "plays", "combo") else "combo"
    return _render(
        request,
        "profile.html",
        user,
        sort=sort,
        top=crud.top_movies(db, user.userId, sort),
        collections=crud.list_collections(db, user.userId),
        following=crud.list_following(db, user.userId),
        followers=crud.list_followers(db, user.userId),
    )
