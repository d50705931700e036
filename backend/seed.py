"""
Development catalogue loader.

    python seed.py [DATA_DIR] [--yes]

Reads from DATA_DIR (default: backend/data):

  movies.csv   movieId, title, duration, age_rating, genres, directors, cast,
               studios, platform, release_date
               (genres/directors/cast/studios are "|"-separated)
  ratings.csv  optional: userId, movieId, rating, timestamp
               each row becomes a demo user (user_<id>, password "password123"),
               a watch and a rating rounded into 1..5
"""

import os
import sys
import time
from datetime import datetime, timezone
from typing import Dict, List

import pandas as pd
from sqlalchemy import MetaData

import auth
import database
import models
from database import Base, SessionLocal

DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")
DEMO_PASSWORD = "password123"
BATCH_SIZE = 5000


def _split(value) -> List[str]:
    if pd.isna(value):
        return []
    return [part.strip() for part in str(value).split("|") if part.strip() and part.strip() != "(no genres listed)"]


def _optional_int(value):
    return int(value) if pd.notna(value) else None


def _star_rating(value: float) -> int:
    """Half-star ratings (0.5..5.0) to whole stars 1..5."""
    return min(5, max(1, int(round(float(value)))))


def read_movies(path: str) -> pd.DataFrame:
    movies_df = pd.read_csv(path)
    movies_df = movies_df[pd.to_numeric(movies_df["movieId"], errors="coerce").notnull()].copy()
    movies_df["movieId"] = movies_df["movieId"].astype(int)
    movies_df["title"] = movies_df["title"].fillna("").astype(str).str.strip()
    movies_df = movies_df[movies_df["title"] != ""].copy()
    for col in ("duration", "age_rating", "genres", "directors", "cast", "studios", "platform", "release_date"):
        if col not in movies_df.columns:
            movies_df[col] = None
    movies_df["duration"] = pd.to_numeric(movies_df["duration"], errors="coerce")
    movies_df["release_date"] = pd.to_datetime(movies_df["release_date"], errors="coerce").dt.date
    return movies_df.drop_duplicates(subset="movieId")


def read_ratings(path: str, movie_ids) -> pd.DataFrame:
    ratings_df = pd.read_csv(path)
    for col in ("userId", "movieId", "rating"):
        ratings_df = ratings_df[pd.to_numeric(ratings_df[col], errors="coerce").notnull()].copy()
    ratings_df["userId"] = ratings_df["userId"].astype(int)
    ratings_df["movieId"] = ratings_df["movieId"].astype(int)
    ratings_df = ratings_df[ratings_df["movieId"].isin(movie_ids)].copy()
    if "timestamp" in ratings_df.columns:
        ratings_df["when"] = pd.to_datetime(ratings_df["timestamp"], unit="s", utc=True, errors="coerce")
    else:
        ratings_df["when"] = pd.NaT
    return ratings_df.drop_duplicates(subset=["userId", "movieId"], keep="last")


def _lookup(db, model, names, cache: Dict[str, int], key: str) -> None:
    """Insert any names not yet in `cache`; fills cache name -> primary key."""
    for name in names:
        if name not in cache:
            row = model(name=name)
            db.add(row)
            db.flush()
            cache[name] = getattr(row, key)


def load_catalogue(db, movies_df: pd.DataFrame) -> int:
    genres: Dict[str, int] = {}
    people: Dict[str, int] = {}
    platforms: Dict[str, int] = {}
    added = 0
    start_time = time.time()

    for index, row in enumerate(movies_df.itertuples(index=False)):
        movie = models.Movie(
            mov_uid=int(row.movieId),
            title=row.title,
            duration=_optional_int(row.duration),
            age_rating=row.age_rating if pd.notna(row.age_rating) else None,
        )
        db.add(movie)
        # association rows reference the movie row
        db.flush()

        genre_names = list(dict.fromkeys(_split(row.genres)))
        _lookup(db, models.Genre, genre_names, genres, "genre_uid")
        db.add_all(models.MovieGenre(mov_uid=movie.mov_uid, genre_uid=genres[g]) for g in genre_names)

        for assoc, column in ((models.DirectsIn, row.directors), (models.CastsIn, row.cast), (models.Produces, row.studios)):
            names = _split(column)
            _lookup(db, models.FilmContributor, names, people, "fc_uid")
            db.add_all(assoc(mov_uid=movie.mov_uid, fc_uid=people[n]) for n in dict.fromkeys(names))

        if pd.notna(row.platform) and pd.notna(row.release_date):
            platform = str(row.platform).strip()
            _lookup(db, models.Platform, [platform], platforms, "platform_uid")
            db.add(models.PlatformRelease(
                mov_uid=movie.mov_uid, platform_uid=platforms[platform], release_date=row.release_date
            ))

        added += 1
        if (index + 1) % 500 == 0 or index == len(movies_df) - 1:
            db.commit()
            print(f"Processed {index + 1}/{len(movies_df)} movies... ({time.time() - start_time:.2f} seconds elapsed)")
            sys.stdout.flush()
    return added


def load_activity(db, ratings_df: pd.DataFrame) -> int:
    user_ids = sorted(ratings_df["userId"].unique())
    print(f"Found {len(user_ids)} unique users. Creating user objects...")
    hashed_password = auth.get_password_hash(DEMO_PASSWORD)
    now = datetime.now(timezone.utc)
    db.add_all(
        models.User(
            user_id=int(user_id),
            first_name="Demo",
            last_name=f"User {int(user_id)}",
            username=f"user_{int(user_id)}",
            email=f"user_{int(user_id)}@example.com",
            password_hash=hashed_password,
            account_creation_date=now,
            last_access_date=now,
        )
        for user_id in user_ids
    )
    db.commit()

    added = 0
    batch = []
    for row in ratings_df.itertuples(index=False):
        when = row.when.to_pydatetime() if pd.notna(row.when) else now
        batch.append(models.Rating(
            user_id=int(row.userId), mov_uid=int(row.movieId), rating_value=_star_rating(row.rating), rated_at=when
        ))
        batch.append(models.Watch(user_id=int(row.userId), mov_uid=int(row.movieId), date=when))
        if len(batch) >= BATCH_SIZE:
            db.add_all(batch)
            db.commit()
            added += len(batch) // 2
            print(f"Committed batch. Total ratings added: {added}.")
            sys.stdout.flush()
            batch = []
    if batch:
        db.add_all(batch)
        db.commit()
        added += len(batch) // 2
    return added


def seed_database(data_dir: str = DATA_DIR, assume_yes: bool = False) -> None:
    """Drops every table, recreates the schema and loads the CSV catalogue."""
    print("\n--- Starting Database Seeding ---")
    movies_csv = os.path.join(data_dir, "movies.csv")
    ratings_csv = os.path.join(data_dir, "ratings.csv")
    if not os.path.exists(movies_csv):
        print(f"ERROR: movies.csv not found at {movies_csv}.")
        sys.exit(1)

    if not assume_yes and sys.stdout.isatty():
        print("!! WARNING: This script WILL FIRST DROP ALL EXISTING TABLES and then reload them.")
        if input("ARE YOU SURE YOU WANT TO CONTINUE? (y/n): ").lower() != "y":
            print("Seeding aborted.")
            return

    engine = database.get_engine()
    print("\nDropping existing tables (if they exist)...")
    meta = MetaData()
    meta.reflect(bind=engine)
    meta.drop_all(bind=engine)
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("Tables created successfully.")
    sys.stdout.flush()

    db = SessionLocal()
    try:
        print(f"\nLoading movies from {movies_csv}...")
        movies_df = read_movies(movies_csv)
        print(f"Successfully added {load_catalogue(db, movies_df)} movies.")

        if os.path.exists(ratings_csv):
            print(f"\nLoading ratings from {ratings_csv}...")
            ratings_df = read_ratings(ratings_csv, set(movies_df["movieId"]))
            print(f"Successfully added {load_activity(db, ratings_df)} ratings and watches.")
        else:
            print("No ratings.csv found; skipping demo users.")

        if engine.dialect.name == "postgresql":
            # Explicit ids were inserted; move the sequences past them
            for table, column in (("movie", "mov_uid"), ("users", "user_id")):
                database.query(
                    f"SELECT setval(pg_get_serial_sequence('{table}', '{column}'), "
                    f"COALESCE((SELECT MAX({column}) FROM {table}), 1))"
                )
        print("\nDatabase seeding complete!")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
        print("Database session closed.")
        sys.stdout.flush()


# --- Run the Seeder ---
if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if not a.startswith("-")]
    seed_database(args[0] if args else DATA_DIR, assume_yes="--yes" in sys.argv)
