from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Users ---
class User(Base):
    __tablename__ = "users"
    user_id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(254), unique=True, index=True, nullable=False)
    username = Column(String(32), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=True)
    account_creation_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_access_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    collections = relationship("Collection", back_populates="owner", cascade="all, delete-orphan")


# --- Catalogue ---
class Movie(Base):
    __tablename__ = "movie"
    mov_uid = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(300), index=True, nullable=False)
    duration = Column(Integer, nullable=True)  # minutes
    age_rating = Column(String(16), nullable=True)

    genres = relationship("Genre", secondary="movie_genre", order_by="Genre.name", viewonly=True)
    cast = relationship("FilmContributor", secondary="casts_in", order_by="FilmContributor.name", viewonly=True)
    directors = relationship("FilmContributor", secondary="directs_in", order_by="FilmContributor.name", viewonly=True)
    studios = relationship("FilmContributor", secondary="produces", order_by="FilmContributor.name", viewonly=True)
    releases = relationship("PlatformRelease", cascade="all, delete-orphan")


class Genre(Base):
    __tablename__ = "genre"
    genre_uid = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)


class MovieGenre(Base):
    __tablename__ = "movie_genre"
    mov_uid = Column(Integer, ForeignKey("movie.mov_uid", ondelete="CASCADE"), primary_key=True)
    genre_uid = Column(Integer, ForeignKey("genre.genre_uid", ondelete="CASCADE"), primary_key=True)


class FilmContributor(Base):
    __tablename__ = "film_contributor"
    fc_uid = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), index=True, nullable=False)


class CastsIn(Base):
    __tablename__ = "casts_in"
    mov_uid = Column(Integer, ForeignKey("movie.mov_uid", ondelete="CASCADE"), primary_key=True)
    fc_uid = Column(Integer, ForeignKey("film_contributor.fc_uid", ondelete="CASCADE"), primary_key=True)


class DirectsIn(Base):
    __tablename__ = "directs_in"
    mov_uid = Column(Integer, ForeignKey("movie.mov_uid", ondelete="CASCADE"), primary_key=True)
    fc_uid = Column(Integer, ForeignKey("film_contributor.fc_uid", ondelete="CASCADE"), primary_key=True)


class Produces(Base):
    """Studio role."""
    __tablename__ = "produces"
    mov_uid = Column(Integer, ForeignKey("movie.mov_uid", ondelete="CASCADE"), primary_key=True)
    fc_uid = Column(Integer, ForeignKey("film_contributor.fc_uid", ondelete="CASCADE"), primary_key=True)


class Platform(Base):
    __tablename__ = "platform"
    platform_uid = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)


class PlatformRelease(Base):
    __tablename__ = "platform_release"
    mov_uid = Column(Integer, ForeignKey("movie.mov_uid", ondelete="CASCADE"), primary_key=True)
    platform_uid = Column(Integer, ForeignKey("platform.platform_uid", ondelete="CASCADE"), primary_key=True)
    release_date = Column(Date, nullable=False)


# --- Collections ---
class Collection(Base):
    __tablename__ = "collection"
    collection_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)

    owner = relationship("User", back_populates="collections")

    __table_args__ = (UniqueConstraint("user_id", "name", name="collection_user_name_uc"),)


class CollectionMovie(Base):
    __tablename__ = "collection_movies"
    collection_id = Column(
        Integer, ForeignKey("collection.collection_id", ondelete="CASCADE"), primary_key=True
    )
    mov_uid = Column(Integer, ForeignKey("movie.mov_uid", ondelete="CASCADE"), primary_key=True)


# --- Activity ---
class Rating(Base):
    __tablename__ = "rates"
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)
    mov_uid = Column(Integer, ForeignKey("movie.mov_uid", ondelete="CASCADE"), primary_key=True)
    rating_value = Column(Integer, nullable=False)
    rated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("rating_value BETWEEN 1 AND 5", name="rates_value_range"),
    )


class Watch(Base):
    """Append-only: every viewing is its own row."""
    __tablename__ = "watches"
    watch_id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    mov_uid = Column(Integer, ForeignKey("movie.mov_uid", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Follow(Base):
    __tablename__ = "follows"
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)  # followee
    follower_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        CheckConstraint("user_id <> follower_id", name="follows_no_self_follow"),
    )
