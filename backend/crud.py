"""
Query layer shared by the JSON API and the server-rendered pages.

Functions take an ORM session plus plain arguments, return plain dicts/lists
ready for JSON, and raise errors.AppError subclasses for expected failures.
Unexpected database errors propagate to the caller.
"""

from collections import defaultdict
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import auth
import recommender
from errors import (
    CHECK_VIOLATION,
    FOREIGN_KEY_VIOLATION,
    UNIQUE_VIOLATION,
    AppError,
    BadRequest,
    Conflict,
    NotFound,
    error_detail,
    hint_for,
    log_db_error,
    sqlstate,
)
from models import (
    CastsIn,
    Collection,
    CollectionMovie,
    DirectsIn,
    FilmContributor,
    Follow,
    Genre,
    Movie,
    MovieGenre,
    PlatformRelease,
    Produces,
    Rating,
    User,
    Watch,
    utcnow,
)
from schemas import ExploreParams, SignUpRequest

TITLE_CHOICES_LIMIT = 10
CAST_PREVIEW_LIMIT = 10
FEED_LIMIT = 20
NEW_RELEASES_LIMIT = 5
TOP_MOVIES_LIMIT = 10
RECENT_WINDOW_DAYS = 90


# --- Helpers ---

def _insert(db: Session, model):
    """INSERT with ON CONFLICT support for the bound dialect."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upserts are not supported on {dialect}")


@contextmanager
def _writing(db: Session, where: str, unique_message: str = "Duplicate value"):
    """Commit on success; translate constraint violations into 409/400 and roll back."""
    try:
        yield
        db.commit()
    except IntegrityError as e:
        db.rollback()
        log_db_error(where, e)
        code = sqlstate(e)
        if code == UNIQUE_VIOLATION:
            raise Conflict(unique_message)
        if code == FOREIGN_KEY_VIOLATION:
            raise Conflict("Foreign key violation (referenced row missing)")
        if code == CHECK_VIOLATION:
            raise BadRequest("Value out of range")
        raise
    except (AppError, SQLAlchemyError):
        db.rollback()
        raise


def _float(value) -> float:
    return float(value) if value is not None else 0.0


def _movie_exists(db: Session, mov_uid: int) -> bool:
    return db.execute(select(Movie.mov_uid).where(Movie.mov_uid == mov_uid)).first() is not None


def _require_movie(db: Session, mov_uid: int) -> None:
    if not _movie_exists(db, mov_uid):
        raise NotFound("Movie not found")


def _earliest_release():
    """Correlated MIN(release_date) for the enclosing Movie row."""
    return (
        select(func.min(PlatformRelease.release_date))
        .where(PlatformRelease.mov_uid == Movie.mov_uid)
        .correlate(Movie)
        .scalar_subquery()
    )


def _avg_rating():
    return (
        select(func.coalesce(func.avg(Rating.rating_value), 0))
        .where(Rating.mov_uid == Movie.mov_uid)
        .correlate(Movie)
        .scalar_subquery()
    )


def _rating_count():
    return (
        select(func.count())
        .select_from(Rating)
        .where(Rating.mov_uid == Movie.mov_uid)
        .correlate(Movie)
        .scalar_subquery()
    )


def _names_by_movie(db: Session, assoc, ids: Iterable[int]) -> Dict[int, List[str]]:
    """Contributor (or genre) names per movie id, alphabetical and distinct."""
    ids = list(ids)
    if not ids:
        return {}
    if assoc is MovieGenre:
        stmt = (
            select(MovieGenre.mov_uid, Genre.name)
            .join(Genre, Genre.genre_uid == MovieGenre.genre_uid)
            .where(MovieGenre.mov_uid.in_(ids))
            .order_by(Genre.name)
        )
    else:
        stmt = (
            select(assoc.mov_uid, FilmContributor.name)
            .join(FilmContributor, FilmContributor.fc_uid == assoc.fc_uid)
            .where(assoc.mov_uid.in_(ids))
            .order_by(FilmContributor.name)
        )
    names: Dict[int, List[str]] = defaultdict(list)
    for mov_uid, name in db.execute(stmt.distinct()):
        if name not in names[mov_uid]:
            names[mov_uid].append(name)
    return names


def _earliest_releases(db: Session, ids: Iterable[int]) -> Dict[int, date]:
    ids = list(ids)
    if not ids:
        return {}
    stmt = (
        select(PlatformRelease.mov_uid, func.min(PlatformRelease.release_date))
        .where(PlatformRelease.mov_uid.in_(ids))
        .group_by(PlatformRelease.mov_uid)
    )
    return {mov_uid: released for mov_uid, released in db.execute(stmt)}


# --- Users / Auth ---

def public_user(user: User) -> Dict[str, Any]:
    return {
        "userId": user.user_id,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "email": user.email,
        "username": user.username,
    }


def session_user(user: User) -> auth.SessionUser:
    return auth.SessionUser(**public_user(user))


def create_user(db: Session, data: SignUpRequest) -> User:
    taken = db.execute(
        select(User.email, User.username).where(
            or_(
                func.lower(User.email) == data.email.lower(),
                func.lower(User.username) == data.username.lower(),
            )
        )
    ).first()
    if taken:
        if taken.email.lower() == data.email.lower():
            raise Conflict("Email already in use")
        raise Conflict("Username already taken")

    now = utcnow()
    user = User(
        first_name=data.firstName,
        last_name=data.lastName,
        email=data.email,
        username=data.username,
        password_hash=auth.get_password_hash(data.password),
        account_creation_date=now,
        last_access_date=now,
    )
    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except IntegrityError as e:
        db.rollback()
        log_db_error("POST /api/auth/signup", e)
        if sqlstate(e) == UNIQUE_VIOLATION:
            detail = error_detail(e)
            if "email" in detail:
                raise Conflict("Email already in use")
            if "username" in detail:
                raise Conflict("Username already taken")
            raise Conflict("Duplicate value")
        raise AppError(hint_for(e))
    except SQLAlchemyError as e:
        db.rollback()
        log_db_error("POST /api/auth/signup", e)
        raise AppError(hint_for(e))
    print(f"User registered successfully: ID={user.user_id}")
    return user


def authenticate(db: Session, identifier: str, password: str) -> Optional[User]:
    """Email or username (case-insensitive) plus password. None on any mismatch."""
    ident = identifier.lower()
    user = db.execute(
        select(User)
        .where(or_(func.lower(User.email) == ident, func.lower(User.username) == ident))
        .limit(1)
    ).scalar_one_or_none()
    if user is None or not auth.verify_password(password, user.password_hash):
        return None

    user.last_access_date = utcnow()
    db.commit()
    db.refresh(user)
    return user


def find_user_id_by_email(db: Session, email: str) -> Optional[int]:
    return db.execute(
        select(User.user_id).where(func.lower(User.email) == email.lower())
    ).scalar_one_or_none()


# --- Collections ---

def list_collections(db: Session, user_id: int) -> List[Dict[str, Any]]:
    stmt = (
        select(
            Collection.collection_id,
            Collection.name,
            Collection.user_id,
            func.count(CollectionMovie.mov_uid).label("movie_count"),
        )
        .outerjoin(CollectionMovie, CollectionMovie.collection_id == Collection.collection_id)
        .where(Collection.user_id == user_id)
        .group_by(Collection.collection_id, Collection.name, Collection.user_id)
        .order_by(Collection.name.desc())
    )
    return [
        {
            "collectionId": row.collection_id,
            "name": row.name,
            "userId": row.user_id,
            "movieCount": int(row.movie_count or 0),
        }
        for row in db.execute(stmt)
    ]


def create_collection(db: Session, user_id: int, name: str) -> Dict[str, Any]:
    collection = Collection(name=name, user_id=user_id)
    with _writing(db, "POST /api/collections", "Collection name already exists for this user"):
        db.add(collection)
        db.flush()
    return {"collectionId": collection.collection_id, "name": name, "userId": user_id, "movieCount": 0}


def rename_collection(db: Session, user_id: int, collection_id: int, name: str) -> Dict[str, Any]:
    with _writing(db, "PATCH /api/collections/{id}", "A collection with this name already exists for this user"):
        result = db.execute(
            update(Collection)
            .where(Collection.collection_id == collection_id, Collection.user_id == user_id)
            .values(name=name)
        )
        if result.rowcount == 0:
            raise NotFound("Collection not found for this user")
    return {"ok": True, "collectionId": collection_id, "name": name}


def delete_collection(db: Session, user_id: int, collection_id: int) -> None:
    with _writing(db, "DELETE /api/collections/{id}"):
        result = db.execute(
            delete(Collection).where(Collection.collection_id == collection_id, Collection.user_id == user_id)
        )
        if result.rowcount == 0:
            raise NotFound("Collection not found for this user")


def get_owned_collection(db: Session, user_id: int, collection_id: int) -> Collection:
    """404 rather than 403 for someone else's collection, so existence is not confirmed."""
    collection = db.execute(
        select(Collection).where(Collection.collection_id == collection_id, Collection.user_id == user_id)
    ).scalar_one_or_none()
    if collection is None:
        raise NotFound("Collection not found for this user")
    return collection


def list_collection_movies(db: Session, user_id: int, collection_id: int) -> List[Dict[str, Any]]:
    get_owned_collection(db, user_id, collection_id)
    rows = db.execute(
        select(Movie.mov_uid, Movie.title, Movie.duration)
        .join(CollectionMovie, CollectionMovie.mov_uid == Movie.mov_uid)
        .where(CollectionMovie.collection_id == collection_id)
        .order_by(Movie.title.asc(), Movie.mov_uid.asc())
    ).all()
    ids = [r.mov_uid for r in rows]
    genres = _names_by_movie(db, MovieGenre, ids)
    released = _earliest_releases(db, ids)
    return [
        {
            "id": r.mov_uid,
            "title": r.title or "(Untitled)",
            "genre": ", ".join(genres.get(r.mov_uid, [])) or "—",
            "duration": f"{r.duration}m" if r.duration is not None else "—",
            "year": released[r.mov_uid].year if r.mov_uid in released else None,
        }
        for r in rows
    ]


def find_movies_by_title(db: Session, title: str, year: Optional[int] = None) -> List[Dict[str, Any]]:
    """Exact case-insensitive title matches, or substring matches when there is no exact one."""
    conditions = []
    if year is not None:
        conditions.append(
            select(PlatformRelease.mov_uid)
            .where(
                PlatformRelease.mov_uid == Movie.mov_uid,
                PlatformRelease.release_date >= date(year, 1, 1),
                PlatformRelease.release_date <= date(year, 12, 31),
            )
            .exists()
        )

    def lookup(match):
        stmt = (
            select(Movie.mov_uid, Movie.title)
            .where(match, *conditions)
            .order_by(Movie.title, Movie.mov_uid)
            .limit(TITLE_CHOICES_LIMIT)
        )
        return db.execute(stmt).all()

    rows = lookup(func.lower(Movie.title) == title.lower())
    if not rows:
        rows = lookup(Movie.title.ilike(f"%{title}%"))

    released = _earliest_releases(db, [r.mov_uid for r in rows])
    return [
        {
            "movUid": r.mov_uid,
            "title": r.title,
            "year": released[r.mov_uid].year if r.mov_uid in released else None,
        }
        for r in rows
    ]


def add_movie_to_collection(
    db: Session,
    user_id: int,
    collection_id: int,
    mov_uid: Optional[int] = None,
    title: Optional[str] = None,
    year: Optional[int] = None,
) -> Dict[str, Any]:
    get_owned_collection(db, user_id, collection_id)

    if mov_uid is None:
        choices = find_movies_by_title(db, title or "", year)
        if not choices:
            raise NotFound("Movie not found")
        if len(choices) > 1:
            raise Conflict("Multiple movies match this title", choices=choices)
        mov_uid = choices[0]["movUid"]
    else:
        _require_movie(db, mov_uid)

    stmt = _insert(db, CollectionMovie).values(collection_id=collection_id, mov_uid=mov_uid)
    with _writing(db, "POST /api/collections/{id}/movie"):
        db.execute(stmt.on_conflict_do_nothing(index_elements=["collection_id", "mov_uid"]))
    return {"ok": True, "collectionId": collection_id, "movUid": mov_uid}


def remove_movie_from_collection(db: Session, user_id: int, collection_id: int, mov_uid: int) -> None:
    get_owned_collection(db, user_id, collection_id)
    with _writing(db, "DELETE /api/collections/{id}/movie"):
        result = db.execute(
            delete(CollectionMovie).where(
                CollectionMovie.collection_id == collection_id, CollectionMovie.mov_uid == mov_uid
            )
        )
        if result.rowcount == 0:
            raise NotFound("Movie not in this collection")


# --- Movies ---

def get_movie_detail(db: Session, mov_uid: int, user_id: Optional[int] = None) -> Dict[str, Any]:
    row = db.execute(
        select(
            Movie.mov_uid,
            Movie.title,
            Movie.duration,
            Movie.age_rating,
            _avg_rating().label("avg_rating"),
            _rating_count().label("rating_count"),
            _earliest_release().label("earliest_release_date"),
        ).where(Movie.mov_uid == mov_uid)
    ).first()
    if row is None:
        raise NotFound("Movie not found")

    cast = _names_by_movie(db, CastsIn, [mov_uid]).get(mov_uid, [])[:CAST_PREVIEW_LIMIT]
    detail = {
        "mov_uid": row.mov_uid,
        "title": row.title,
        "duration": row.duration,
        "age_rating": row.age_rating,
        "avg_rating": _float(row.avg_rating),
        "rating_count": int(row.rating_count or 0),
        "earliest_release_date": row.earliest_release_date,
        "genres": _names_by_movie(db, MovieGenre, [mov_uid]).get(mov_uid, []),
        "cast": [{"name": name, "character": None} for name in cast],
        "directors": _names_by_movie(db, DirectsIn, [mov_uid]).get(mov_uid, []),
        "studios": _names_by_movie(db, Produces, [mov_uid]).get(mov_uid, []),
        "user": None,
    }

    if user_id is not None:
        watched_at = db.execute(
            select(func.max(Watch.date)).where(Watch.user_id == user_id, Watch.mov_uid == mov_uid)
        ).scalar()
        rating = db.execute(
            select(Rating.rating_value, Rating.rated_at).where(Rating.user_id == user_id, Rating.mov_uid == mov_uid)
        ).first()
        detail["user"] = {
            "watched": watched_at is not None,
            "watched_at": watched_at,
            "rating_value": rating.rating_value if rating else None,
            "rated_at": rating.rated_at if rating else None,
        }
    return detail


def rate_movie(db: Session, user_id: int, mov_uid: int, rating_value: int, rated_at: Optional[datetime] = None) -> None:
    """One rating per (user, movie): rating again overwrites value and timestamp."""
    if not 1 <= rating_value <= 5:
        raise BadRequest("Rating must be between 1 and 5")
    _require_movie(db, mov_uid)
    stmt = _insert(db, Rating).values(
        user_id=user_id, mov_uid=mov_uid, rating_value=rating_value, rated_at=rated_at or utcnow()
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "mov_uid"],
        set_={"rating_value": stmt.excluded.rating_value, "rated_at": stmt.excluded.rated_at},
    )
    with _writing(db, "PUT /api/movie/{id}/rate"):
        db.execute(stmt)


def unrate_movie(db: Session, user_id: int, mov_uid: int) -> None:
    with _writing(db, "DELETE /api/movie/{id}/rate"):
        db.execute(delete(Rating).where(Rating.user_id == user_id, Rating.mov_uid == mov_uid))


def watch_movie(db: Session, user_id: int, mov_uid: int, when: Optional[datetime] = None) -> None:
    """Append a viewing. Repeat viewings are kept as separate rows."""
    _require_movie(db, mov_uid)
    with _writing(db, "PUT /api/movie/{id}/watch"):
        db.add(Watch(user_id=user_id, mov_uid=mov_uid, date=when or utcnow()))


def top_movies(db: Session, user_id: int, sort: str = "combo") -> List[Dict[str, Any]]:
    """The user's own top movies by rating, play count, or rating*10 + plays."""
    my_ratings = (
        select(Rating.mov_uid, Rating.rating_value, Rating.rated_at).where(Rating.user_id == user_id).subquery()
    )
    my_watches = (
        select(
            Watch.mov_uid,
            func.count().label("watch_count"),
            func.max(Watch.date).label("last_watched"),
        )
        .where(Watch.user_id == user_id)
        .group_by(Watch.mov_uid)
        .subquery()
    )
    rating = func.coalesce(my_ratings.c.rating_value, 0)
    plays = func.coalesce(my_watches.c.watch_count, 0)
    if sort == "rating":
        score = rating
    elif sort == "plays":
        score = plays
    elif sort == "combo":
        score = rating * 10 + plays
    else:
        raise BadRequest("Invalid sort mode. Use rating, plays, or combo.")

    stmt = (
        select(
            Movie.mov_uid,
            Movie.title,
            Movie.duration,
            Movie.age_rating,
            my_ratings.c.rating_value,
            my_ratings.c.rated_at,
            plays.label("watch_count"),
            my_watches.c.last_watched,
            score.label("score"),
        )
        .outerjoin(my_ratings, my_ratings.c.mov_uid == Movie.mov_uid)
        .outerjoin(my_watches, my_watches.c.mov_uid == Movie.mov_uid)
        .where(or_(my_ratings.c.mov_uid.isnot(None), my_watches.c.mov_uid.isnot(None)))
        .order_by(
            score.desc(),
            func.coalesce(my_watches.c.last_watched, my_ratings.c.rated_at).desc().nulls_last(),
            Movie.title,
        )
        .limit(TOP_MOVIES_LIMIT)
    )
    return [
        {
            "mov_uid": r.mov_uid,
            "title": r.title,
            "duration": r.duration,
            "age_rating": r.age_rating,
            "rating_value": r.rating_value,
            "rated_at": r.rated_at,
            "watch_count": int(r.watch_count or 0),
            "last_watched": r.last_watched,
            "score": float(r.score or 0),
        }
        for r in db.execute(stmt)
    ]


def list_genres(db: Session) -> List[Dict[str, Any]]:
    return [
        {"genre_uid": g.genre_uid, "name": g.name}
        for g in db.execute(select(Genre.genre_uid, Genre.name).order_by(Genre.name))
    ]


# --- Explore ---

def _genre_match(pattern: str):
    return (
        select(MovieGenre.mov_uid)
        .join(Genre, Genre.genre_uid == MovieGenre.genre_uid)
        .where(MovieGenre.mov_uid == Movie.mov_uid, Genre.name.ilike(pattern))
        .exists()
    )


def _contributor_match(assoc, pattern: str):
    return (
        select(assoc.mov_uid)
        .join(FilmContributor, FilmContributor.fc_uid == assoc.fc_uid)
        .where(assoc.mov_uid == Movie.mov_uid, FilmContributor.name.ilike(pattern))
        .exists()
    )


def _explore_filters(params: ExploreParams) -> list:
    where = []
    if params.q:
        pattern = f"%{params.q}%"
        where.append(
            or_(
                Movie.title.ilike(pattern),
                _contributor_match(CastsIn, pattern),
                _contributor_match(DirectsIn, pattern),
                _genre_match(pattern),
                _contributor_match(Produces, pattern),
            )
        )
    if params.genre:
        where.append(_genre_match(f"%{params.genre}%"))
    if params.cast:
        where.append(_contributor_match(CastsIn, f"%{params.cast}%"))
    if params.director:
        where.append(_contributor_match(DirectsIn, f"%{params.director}%"))
    if params.studio:
        where.append(_contributor_match(Produces, f"%{params.studio}%"))
    if params.released_from:
        where.append(_earliest_release() >= params.released_from)
    if params.released_to:
        where.append(_earliest_release() <= params.released_to)
    return where


def _first_name(assoc):
    if assoc is MovieGenre:
        return (
            select(func.min(Genre.name))
            .join(MovieGenre, MovieGenre.genre_uid == Genre.genre_uid)
            .where(MovieGenre.mov_uid == Movie.mov_uid)
            .correlate(Movie)
            .scalar_subquery()
        )
    return (
        select(func.min(FilmContributor.name))
        .join(assoc, assoc.fc_uid == FilmContributor.fc_uid)
        .where(assoc.mov_uid == Movie.mov_uid)
        .correlate(Movie)
        .scalar_subquery()
    )


def _explore_order(params: ExploreParams, avg_rating):
    desc = params.order == "desc"

    def directed(expr, nulls_last=False):
        ordered = expr.desc() if desc else expr.asc()
        return ordered.nulls_last() if nulls_last else ordered

    if params.sort == "avg_rating":
        primary = [directed(avg_rating)]
    elif params.sort == "duration":
        primary = [directed(Movie.duration, nulls_last=True)]
    elif params.sort == "genre":
        primary = [directed(_first_name(MovieGenre), nulls_last=True)]
    elif params.sort == "studio":
        primary = [directed(_first_name(Produces), nulls_last=True)]
    elif params.sort == "release_date":
        primary = [directed(_earliest_release(), nulls_last=True)]
    else:
        primary = [directed(Movie.title)]
    # Stable tie-breakers keep pages disjoint
    return primary + [Movie.title.asc(), Movie.mov_uid.asc()]


def explore(db: Session, params: ExploreParams, user_id: Optional[int] = None) -> Dict[str, Any]:
    where = _explore_filters(params)

    total = db.execute(select(func.count()).select_from(Movie).where(*where)).scalar_one()

    avg_rating = _avg_rating()
    rows = db.execute(
        select(
            Movie.mov_uid,
            Movie.title,
            Movie.duration,
            Movie.age_rating,
            avg_rating.label("avg_rating"),
            _rating_count().label("rating_count"),
            _earliest_release().label("earliest_release_date"),
        )
        .where(*where)
        .order_by(*_explore_order(params, avg_rating))
        .limit(params.pageSize)
        .offset(params.offset)
    ).all()

    ids = [r.mov_uid for r in rows]
    genres = _names_by_movie(db, MovieGenre, ids)
    directors = _names_by_movie(db, DirectsIn, ids)
    cast = _names_by_movie(db, CastsIn, ids)
    studios = _names_by_movie(db, Produces, ids)
    mine: Dict[int, int] = {}
    if user_id is not None and ids:
        mine = dict(
            db.execute(
                select(Rating.mov_uid, Rating.rating_value).where(Rating.user_id == user_id, Rating.mov_uid.in_(ids))
            ).all()
        )

    items = [
        {
            "mov_uid": r.mov_uid,
            "title": r.title,
            "duration": r.duration,
            "age_rating": r.age_rating,
            "avg_rating": _float(r.avg_rating),
            "rating_count": int(r.rating_count or 0),
            "earliest_release_date": r.earliest_release_date,
            "genres": genres.get(r.mov_uid, []),
            "directors": directors.get(r.mov_uid, []),
            "cast": cast.get(r.mov_uid, []),
            "studios": studios.get(r.mov_uid, []),
            "my_rating": mine.get(r.mov_uid),
        }
        for r in rows
    ]
    return {"total": int(total), "page": params.page, "pageSize": params.pageSize, "items": items}


# --- Follows ---

def follow(db: Session, follower_id: int, email: str) -> int:
    target_id = find_user_id_by_email(db, email)
    if target_id is None:
        raise NotFound("User not found")
    if target_id == follower_id:
        raise BadRequest("You cannot follow yourself")
    stmt = _insert(db, Follow).values(user_id=target_id, follower_id=follower_id)
    with _writing(db, "POST /api/follows"):
        db.execute(stmt.on_conflict_do_nothing(index_elements=["user_id", "follower_id"]))
    return target_id


def unfollow(db: Session, follower_id: int, email: str) -> None:
    """Removing an edge that does not exist is a no-op."""
    target_id = find_user_id_by_email(db, email)
    if target_id is None:
        raise NotFound("User not found")
    with _writing(db, "DELETE /api/follows"):
        db.execute(delete(Follow).where(Follow.user_id == target_id, Follow.follower_id == follower_id))


def _follow_rows(db: Session, stmt) -> List[Dict[str, Any]]:
    return [
        {
            "user_id": u.user_id,
            "first_name": u.first_name,
            "last_name": u.last_name,
            "username": u.username,
            "email": u.email,
        }
        for u in db.execute(stmt)
    ]


def list_following(db: Session, user_id: int) -> List[Dict[str, Any]]:
    stmt = (
        select(User.user_id, User.first_name, User.last_name, User.username, User.email)
        .join(Follow, Follow.user_id == User.user_id)
        .where(Follow.follower_id == user_id)
        .order_by(User.username, User.last_name, User.first_name)
    )
    return _follow_rows(db, stmt)


def list_followers(db: Session, user_id: int) -> List[Dict[str, Any]]:
    stmt = (
        select(User.user_id, User.first_name, User.last_name, User.username, User.email)
        .join(Follow, Follow.follower_id == User.user_id)
        .where(Follow.user_id == user_id)
        .order_by(User.username, User.last_name, User.first_name)
    )
    return _follow_rows(db, stmt)


def following_count(db: Session, user_id: int) -> int:
    return db.execute(
        select(func.count()).select_from(Follow).where(Follow.follower_id == user_id)
    ).scalar_one()


# --- Recommendations / rankings ---

def _ratings_avg_subquery(*conditions):
    return (
        select(Rating.mov_uid, func.avg(Rating.rating_value).label("avg_rating"))
        .where(*conditions)
        .group_by(Rating.mov_uid)
        .subquery()
    )


def _feed_row(row, **extra) -> Dict[str, Any]:
    item = {
        "mov_uid": row.mov_uid,
        "title": row.title,
        "duration": row.duration,
        "age_rating": row.age_rating,
        "watch_count": int(row.watch_count or 0),
        "avg_rating": _float(row.avg_rating),
    }
    item.update(extra)
    return item


def _feed_order(sort_by: str, watches, rating):
    if sort_by == "rating":
        return [rating.desc(), watches.desc()]
    return [watches.desc(), rating.desc()]


def new_releases(db: Session, sort_by: str = "watches", today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Movies with a platform release in the current calendar month."""
    today = today or utcnow().date()
    month_start = today.replace(day=1)
    next_month = (month_start + timedelta(days=32)).replace(day=1)

    released = (
        select(PlatformRelease.mov_uid, func.min(PlatformRelease.release_date).label("earliest_release"))
        .where(PlatformRelease.release_date >= month_start, PlatformRelease.release_date < next_month)
        .group_by(PlatformRelease.mov_uid)
        .subquery()
    )
    watchers = (
        select(Watch.mov_uid, func.count(func.distinct(Watch.user_id)).label("watch_count"))
        .group_by(Watch.mov_uid)
        .subquery()
    )
    ratings = _ratings_avg_subquery()
    watch_count = func.coalesce(watchers.c.watch_count, 0)
    avg_rating = func.coalesce(ratings.c.avg_rating, 0)

    stmt = (
        select(
            Movie.mov_uid,
            Movie.title,
            Movie.duration,
            Movie.age_rating,
            released.c.earliest_release,
            watch_count.label("watch_count"),
            avg_rating.label("avg_rating"),
        )
        .join(released, released.c.mov_uid == Movie.mov_uid)
        .outerjoin(watchers, watchers.c.mov_uid == Movie.mov_uid)
        .outerjoin(ratings, ratings.c.mov_uid == Movie.mov_uid)
        .order_by(*_feed_order(sort_by, watch_count, avg_rating), released.c.earliest_release.asc(), Movie.title)
        .limit(NEW_RELEASES_LIMIT)
    )
    return [_feed_row(r, earliest_release=r.earliest_release) for r in db.execute(stmt)]


def popular_recent(db: Session, sort_by: str = "watches", now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Most watched over the last 90 days."""
    cutoff = (now or utcnow()) - timedelta(days=RECENT_WINDOW_DAYS)
    watches = (
        select(Watch.mov_uid, func.count().label("watch_count"))
        .where(Watch.date >= cutoff)
        .group_by(Watch.mov_uid)
        .subquery()
    )
    ratings = _ratings_avg_subquery()
    avg_rating = func.coalesce(ratings.c.avg_rating, 0)

    stmt = (
        select(
            Movie.mov_uid,
            Movie.title,
            Movie.duration,
            Movie.age_rating,
            watches.c.watch_count,
            avg_rating.label("avg_rating"),
        )
        .join(watches, watches.c.mov_uid == Movie.mov_uid)
        .outerjoin(ratings, ratings.c.mov_uid == Movie.mov_uid)
        .order_by(*_feed_order(sort_by, watches.c.watch_count, avg_rating), Movie.title)
        .limit(FEED_LIMIT)
    )
    return [_feed_row(r) for r in db.execute(stmt)]


def popular_following(db: Session, user_id: int, sort_by: str = "watches") -> Dict[str, Any]:
    """What the people I follow watch, with their own average rating of it."""
    followed = select(Follow.user_id).where(Follow.follower_id == user_id)
    watches = (
        select(
            Watch.mov_uid,
            func.count(func.distinct(Watch.user_id)).label("friend_count"),
            func.count().label("total_watches"),
        )
        .where(Watch.user_id.in_(followed))
        .group_by(Watch.mov_uid)
        .subquery()
    )
    ratings = _ratings_avg_subquery(Rating.user_id.in_(followed))
    avg_rating = func.coalesce(ratings.c.avg_rating, 0)

    stmt = (
        select(
            Movie.mov_uid,
            Movie.title,
            Movie.duration,
            Movie.age_rating,
            watches.c.friend_count,
            watches.c.total_watches,
            avg_rating.label("avg_rating"),
        )
        .join(watches, watches.c.mov_uid == Movie.mov_uid)
        .outerjoin(ratings, ratings.c.mov_uid == Movie.mov_uid)
        .order_by(*_feed_order(sort_by, watches.c.total_watches, avg_rating), Movie.title)
        .limit(FEED_LIMIT)
    )
    movies = [
        {
            "mov_uid": r.mov_uid,
            "title": r.title,
            "duration": r.duration,
            "age_rating": r.age_rating,
            "friend_count": int(r.friend_count),
            "total_watches": int(r.total_watches),
            "avg_rating": _float(r.avg_rating),
        }
        for r in db.execute(stmt)
    ]
    return {"movies": movies, "hasFollowing": following_count(db, user_id) > 0}


def ranking_popular_following(db: Session, user_id: int) -> List[Dict[str, Any]]:
    """Movies ranked by how often followed users watched them; rating is the overall average."""
    followed = select(Follow.user_id).where(Follow.follower_id == user_id)
    watches = (
        select(Watch.mov_uid, func.count().label("watch_count"))
        .where(Watch.user_id.in_(followed))
        .group_by(Watch.mov_uid)
        .subquery()
    )
    ratings = _ratings_avg_subquery()
    avg_rating = func.coalesce(ratings.c.avg_rating, 0)
    stmt = (
        select(
            Movie.mov_uid,
            Movie.title,
            Movie.duration,
            Movie.age_rating,
            watches.c.watch_count,
            avg_rating.label("avg_rating"),
        )
        .join(watches, watches.c.mov_uid == Movie.mov_uid)
        .outerjoin(ratings, ratings.c.mov_uid == Movie.mov_uid)
        .order_by(watches.c.watch_count.desc(), Movie.title)
        .limit(FEED_LIMIT)
    )
    return [_feed_row(r) for r in db.execute(stmt)]


def personalized(db: Session, user_id: int, limit: int = FEED_LIMIT) -> List[Dict[str, Any]]:
    ranked = recommender.personalized_ranking(db, user_id, limit)
    if not ranked:
        return []
    ids = [mov_uid for mov_uid, _ in ranked]
    watches = (
        select(Watch.mov_uid, func.count().label("watch_count"))
        .where(Watch.mov_uid.in_(ids))
        .group_by(Watch.mov_uid)
        .subquery()
    )
    ratings = _ratings_avg_subquery(Rating.mov_uid.in_(ids))
    stmt = (
        select(
            Movie.mov_uid,
            Movie.title,
            Movie.duration,
            Movie.age_rating,
            func.coalesce(watches.c.watch_count, 0).label("watch_count"),
            func.coalesce(ratings.c.avg_rating, 0).label("avg_rating"),
        )
        .outerjoin(watches, watches.c.mov_uid == Movie.mov_uid)
        .outerjoin(ratings, ratings.c.mov_uid == Movie.mov_uid)
        .where(Movie.mov_uid.in_(ids))
    )
    rows = {r.mov_uid: r for r in db.execute(stmt)}
    return [_feed_row(rows[mov_uid], score=score) for mov_uid, score in ranked if mov_uid in rows]
